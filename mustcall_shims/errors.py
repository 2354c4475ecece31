"""
mustcall_shims.errors
=====================

Exception hierarchy raised by the analysis core.

    MustCallShimsError            base class
    ├── TypeSystemError           oracle facts are mutually inconsistent
    ├── MalformedCFGError         the CFG violates a structural precondition
    └── InvalidLoopBodyAnalysis   loop-body summary cannot be computed

``InvalidLoopBodyAnalysis`` never escapes the package: the loop-body
summarizer catches it and reports an empty summary.
"""

from __future__ import annotations

from typing import Optional


class MustCallShimsError(Exception):
    """Base exception for all errors raised by the analysis core."""

    def __init__(self, message: str, routine: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.routine = routine

    def __str__(self) -> str:
        if self.routine:
            return f"{self.routine}: {self.message}"
        return self.message


class TypeSystemError(MustCallShimsError):
    """The must-call oracle returned facts that cannot be reconciled,
    e.g. an obligation none of whose aliases has a must-call entry."""


class MalformedCFGError(MustCallShimsError):
    """An edge references a block from another graph, a special block is
    missing, or an exceptional edge carries no exception type."""


class InvalidLoopBodyAnalysis(MustCallShimsError):
    """A successor block inside a loop body has no analysis state."""


__all__ = [
    "MustCallShimsError",
    "TypeSystemError",
    "MalformedCFGError",
    "InvalidLoopBodyAnalysis",
]
