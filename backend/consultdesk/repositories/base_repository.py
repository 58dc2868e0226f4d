# backend/consultdesk/repositories/base_repository.py
"""
Base Repository Pattern.

Every repository wraps one model and one session. Repositories flush but
never commit; the service layer owns the unit of work. SQLAlchemy errors
surface as RepositoryException with the driver error chained as the cause.

State transitions go through ``_guarded_update``: the expected current
state is part of the WHERE clause and the affected row count tells the
caller whether it won.
"""

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """Shared lookups, inserts and conditional updates for a single model."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def _run(self, action: str, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except SQLAlchemyError as exc:
            self.logger.error("%s %s failed: %s", action, self.model.__name__, exc)
            raise RepositoryException(f"Failed to {action} {self.model.__name__}: {exc}") from exc

    def get_by_id(self, id: str) -> Optional[T]:
        return self._run("load", lambda: self.db.get(self.model, id))

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        """First row whose columns equal ``criteria``."""
        return self._run("query", lambda: self._build_query().filter_by(**criteria).first())

    def create(self, **values: Any) -> T:
        """
        Add a row and flush it so generated columns are populated.

        Constraint violations become RepositoryException whose ``__cause__``
        is the IntegrityError, letting services map them to domain errors.
        """
        entity = self.model(**values)
        try:
            self.db.add(entity)
            self.db.flush()
        except IntegrityError as exc:
            self.logger.warning("Constraint violated inserting %s: %s", self.model.__name__, exc)
            raise RepositoryException(f"Integrity constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self.logger.error("insert %s failed: %s", self.model.__name__, exc)
            raise RepositoryException(f"Failed to create {self.model.__name__}: {exc}") from exc
        return entity

    def update(self, id: str, **values: Any) -> Optional[T]:
        """Set known attributes on the row ``id``; unknown keys are ignored."""
        entity = self.get_by_id(id)
        if entity is None:
            return None
        for column, value in values.items():
            if hasattr(entity, column):
                setattr(entity, column, value)
        self.flush()
        return entity

    def flush(self) -> None:
        self._run("flush", self.db.flush)

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        return self._run("query", query.all)

    def _execute_scalar(self, query: Query) -> Any:
        return self._run("aggregate", query.scalar)

    def _guarded_update(self, criteria: List[Any], values: Dict[str, Any]) -> int:
        """
        ``UPDATE model SET values WHERE criteria``; returns the matched row count.

        Pending ORM state is flushed before the statement. Loaded instances of
        the model are expired afterwards so the next attribute access reads
        the committed-by-us values.
        """
        self.flush()
        stmt = (
            update(self.model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._run("update", lambda: self.db.execute(stmt))
        rowcount = int(result.rowcount or 0)
        if rowcount:
            for instance in list(self.db.identity_map.values()):
                if isinstance(instance, self.model):
                    self.db.expire(instance)
        return rowcount
