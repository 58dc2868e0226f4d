# Infrastructure routes (unversioned); application routes live in v1/
from . import prometheus as prometheus
