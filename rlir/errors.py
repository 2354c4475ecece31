# rlir/errors.py
"""
RLIR Error Types

Errors raised while reading a textual resource-IR (``.rlir``) file.

Architecture Overview:
─────────────────────
┌──────────────────────────────────────────────────────────────────────┐
│  RlirError (base)                                                    │
│  ├── RlirSyntaxError    - grammar violations (parsimonious errors)   │
│  └── RlirSemanticError  - undefined names, duplicate labels, ...     │
└──────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a code ``RLIR-NNNN``:
  - 1000-1999: Syntax errors
  - 2000-2999: Semantic errors

Analysis-core failures are not reported here; they derive from
:class:`mustcall_shims.errors.MustCallShimsError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Optional

from parsimonious.exceptions import IncompleteParseError, ParseError


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorPhase(Enum):
    SYNTAX = "syntax"
    SEMANTIC = "semantic"


class ErrorCode:
    """Structured ``RLIR-NNNN`` error code."""

    __slots__ = ("number", "name", "phase")

    def __init__(self, number: int, name: str, phase: ErrorPhase) -> None:
        self.number = number
        self.name = name
        self.phase = phase

    @property
    def code(self) -> str:
        return f"RLIR-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.name})"

    def __hash__(self) -> int:
        return hash(self.number)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class RlirErrorCodes:
    """Predefined error codes."""

    # ── syntax (1000-1999) ──────────────────────────────────────────────
    UNEXPECTED_INPUT = ErrorCode(1001, "unexpected-input", ErrorPhase.SYNTAX)
    INCOMPLETE_PARSE = ErrorCode(1002, "incomplete-parse", ErrorPhase.SYNTAX)
    INVALID_REFERENCE = ErrorCode(1003, "invalid-reference", ErrorPhase.SYNTAX)

    # ── semantic (2000-2999) ────────────────────────────────────────────
    UNDEFINED_BLOCK = ErrorCode(2001, "undefined-block", ErrorPhase.SEMANTIC)
    UNDEFINED_LABEL = ErrorCode(2002, "undefined-label", ErrorPhase.SEMANTIC)
    DUPLICATE_BLOCK = ErrorCode(2003, "duplicate-block", ErrorPhase.SEMANTIC)
    DUPLICATE_LABEL = ErrorCode(2004, "duplicate-label", ErrorPhase.SEMANTIC)
    DUPLICATE_ROUTINE = ErrorCode(2005, "duplicate-routine", ErrorPhase.SEMANTIC)
    INVALID_DECLARATION = ErrorCode(2006, "invalid-declaration", ErrorPhase.SEMANTIC)


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE LOCATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceSpan:
    """A position in an ``.rlir`` file (1-based line and column)."""

    file: str = ""
    line: int = 0
    column: int = 0

    @classmethod
    def from_offset(cls, text: str, offset: int, file: str = "") -> "SourceSpan":
        """Translate a character offset of *text* into line and column."""
        offset = max(0, min(offset, len(text)))
        line = text.count("\n", 0, offset) + 1
        column = offset - (text.rfind("\n", 0, offset) + 1) + 1
        return cls(file=file, line=line, column=column)

    def __str__(self) -> str:
        if not self.file and self.line == 0:
            return "<unknown location>"
        parts = []
        if self.file:
            parts.append(self.file)
        if self.line > 0:
            parts.append(str(self.line))
            if self.column > 0:
                parts.append(str(self.column))
        return ":".join(parts)


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class RlirError(Exception):
    """Base exception for all IR reading errors."""

    default_code: ErrorCode = RlirErrorCodes.UNEXPECTED_INPUT

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.span = span or SourceSpan()
        self.hint = hint

    def to_gcc_format(self) -> str:
        """``file:line:col: error: message [RLIR-NNNN]``"""
        text = f"{self.span}: error: {self.message} [{self.code}]"
        if self.hint:
            text += f"\n  hint: {self.hint}"
        return text

    def __str__(self) -> str:
        return self.to_gcc_format()


class RlirSyntaxError(RlirError):
    """The input does not match the IR grammar."""

    default_code = RlirErrorCodes.UNEXPECTED_INPUT

    @classmethod
    def from_parse_error(cls, exc: ParseError, text: str, file: str = "") -> "RlirSyntaxError":
        """Wrap a parsimonious ``ParseError`` / ``IncompleteParseError``."""
        span = SourceSpan.from_offset(text, exc.pos, file)
        snippet = text[exc.pos:exc.pos + 20].split("\n", 1)[0]
        if isinstance(exc, IncompleteParseError):
            return cls(
                f"unexpected input after the last complete declaration: {snippet!r}",
                code=RlirErrorCodes.INCOMPLETE_PARSE,
                span=span,
            )
        rule = getattr(exc.expr, "name", "") or "input"
        return cls(
            f"cannot parse {rule} at {snippet!r}",
            code=RlirErrorCodes.UNEXPECTED_INPUT,
            span=span,
        )


class RlirSemanticError(RlirError):
    """The input parses but does not describe a consistent program."""

    default_code = RlirErrorCodes.INVALID_DECLARATION


__all__ = [
    "ErrorCode",
    "ErrorPhase",
    "RlirErrorCodes",
    "SourceSpan",
    "RlirError",
    "RlirSyntaxError",
    "RlirSemanticError",
]
