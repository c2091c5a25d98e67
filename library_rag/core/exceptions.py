"""
Error taxonomy for the catalog assistant.

Only ``InputError`` and ``NotFoundError`` are meant to reach callers; the
other types are raised by collaborators and pipeline stages and are caught
locally, where they trigger the stage's fallback.
"""

from typing import Optional


class CatalogAssistantError(Exception):
    """Base class for all assistant errors."""


class InputError(CatalogAssistantError):
    """Empty or missing query/message."""


class CollaboratorUnavailable(CatalogAssistantError):
    """Search engine, embedding or language-model service unreachable."""

    def __init__(self, service: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{service} unavailable")
        self.service = service


class ValidationError(CatalogAssistantError):
    """Malformed AI payload or AI-proposed query."""


class NotFoundError(CatalogAssistantError):
    """Unknown conversation or session id on a direct lookup."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier
