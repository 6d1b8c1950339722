"""
Webhook Schemas
Acknowledgements returned to the provider
"""
from typing import Optional
from pydantic import BaseModel


class WebhookAck(BaseModel):
    """
    Every authenticated delivery gets a 2xx with one of these.
    "ignored" carries the reason the envelope could not be read.
    """
    status: str  # "accepted", "ignored"
    reason: Optional[str] = None
