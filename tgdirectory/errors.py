"""Error taxonomy shared by the enrichment pipeline."""
from __future__ import annotations

from typing import Optional


class EnrichmentError(RuntimeError):
    """Raised when a channel field cannot be resolved."""


class TransportError(EnrichmentError):
    """Failure talking to an external service."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class ValidationError(EnrichmentError):
    """Returned or supplied data did not satisfy a required constraint."""

    def __init__(self, field: str, message: str, *, value: Optional[str] = None):
        super().__init__(f"Validation error in field '{field}': {message}")
        self.field = field
        self.value = value


class StoreError(EnrichmentError):
    """Write-back to the channel store failed."""


class ChannelNotFoundError(LookupError):
    def __init__(self, channel_id: int):
        super().__init__(f"Channel with id {channel_id} not found.")
        self.channel_id = channel_id
