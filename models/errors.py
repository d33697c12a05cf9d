from __future__ import annotations


class EditorError(Exception):
    """Base exception for photo adjuster operations."""
    pass


class DecodeError(EditorError):
    """Raised when source bytes are not a readable image."""
    pass


class EngineNotReadyError(EditorError):
    """Raised when a render or export is requested before the engine is loaded."""
    pass


class EngineLoadError(EditorError):
    """Raised when the processing engine fails to initialise."""
    pass


class DomainError(EditorError):
    """Raised when an adjustment value falls outside its declared domain."""

    def __init__(self, field: str, value, message: str | None = None):
        self.field = field
        self.value = value
        super().__init__(message or f"{field}={value!r} is outside its allowed domain")


class NoImageError(EditorError):
    """Raised when an export is requested and nothing has been rendered."""
    pass
