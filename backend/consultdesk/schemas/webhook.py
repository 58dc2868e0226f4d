"""Webhook acknowledgement schema."""

from typing import Optional

from ._strict_base import StrictModel


class WebhookAckResponse(StrictModel):
    ok: bool = True
    status: Optional[str] = None
