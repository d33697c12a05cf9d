from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class Notice:
    """
    User-visible, non-fatal message (the UI shows it as a toast).
    *error* carries the recovered exception for error notices.
    """
    level: str              # "success" | "info" | "error"
    message: str
    error: Exception | None = None
