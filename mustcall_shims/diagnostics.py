"""
mustcall_shims/diagnostics.py
═════════════════════════════

Diagnostic model shared by the analysis core and the checker framework.

Every error id the analysis can emit is listed in :data:`ERROR_CATALOG`
together with its kind, its severity, its CWE and its message template.
Analysis components never build :class:`Diagnostic` objects themselves;
they call :meth:`DiagnosticSink.report` with an error id, a site and the
template arguments.

Kinds
─────
  UNPROVEN_OBLIGATION   an obligation may leave scope undischarged
  UNKNOWN_OBLIGATION    the must-call set of an alias is unknown
  OWNERSHIP_VIOLATION   an ownership rule is broken
  STRUCTURAL_VIOLATION  a declaration is ill-formed
  ITERATOR_PROTOCOL     iterator calls out of order
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — SEVERITY, CONFIDENCE, KIND
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    INFORMATION = "information"


class Confidence(Enum):
    """
    How certain we are that the diagnostic is a true positive.

    HIGH   — a violated ownership rule, independent of path feasibility
    MEDIUM — an obligation may be left undischarged on some path
    LOW    — the analysis lacked facts to decide
    """
    HIGH = auto()
    MEDIUM = auto()
    LOW = auto()


class DiagnosticKind(Enum):
    UNPROVEN_OBLIGATION = "unproven-obligation"
    UNKNOWN_OBLIGATION = "unknown-obligation"
    OWNERSHIP_VIOLATION = "ownership-violation"
    STRUCTURAL_VIOLATION = "structural-violation"
    ITERATOR_PROTOCOL = "iterator-protocol"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — DIAGNOSTIC
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    error_id     : Catalog identifier (e.g., "required.method.not.called")
    message      : Human-readable description
    severity     : DiagnosticSeverity
    location     : Primary source location
    kind         : DiagnosticKind
    confidence   : Confidence level
    cwe          : CWE identifier (0 = none)
    checker_name : Name of the checker that produced this
    routine      : Qualified name of the analyzed routine
    extra        : Additional context string
    evidence     : Machine-readable evidence dict for downstream tooling
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceLocation
    kind: DiagnosticKind = DiagnosticKind.UNPROVEN_OBLIGATION
    confidence: Confidence = Confidence.MEDIUM
    cwe: int = 0
    checker_name: str = ""
    routine: str = ""
    extra: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize to the cppcheck addon JSON shape."""
        result: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "addon": "mustcall-shims",
            "errorId": self.error_id,
            "kind": self.kind.value,
            "extra": self.extra,
        }
        if self.routine:
            result["routine"] = self.routine
        if self.cwe:
            result["cwe"] = self.cwe
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_json_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"

    def __str__(self) -> str:
        return self.to_gcc_format()


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — ERROR CATALOG
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ErrorSpec:
    kind: DiagnosticKind
    template: str
    severity: DiagnosticSeverity = DiagnosticSeverity.ERROR
    confidence: Confidence = Confidence.HIGH
    cwe: int = 0


_U = DiagnosticKind.UNPROVEN_OBLIGATION
_K = DiagnosticKind.UNKNOWN_OBLIGATION
_O = DiagnosticKind.OWNERSHIP_VIOLATION
_S = DiagnosticKind.STRUCTURAL_VIOLATION
_I = DiagnosticKind.ITERATOR_PROTOCOL

# CWE-772: Missing Release of Resource after Effective Lifetime
_LEAK = 772

ERROR_CATALOG: Dict[str, ErrorSpec] = {
    # ── obligations ──────────────────────────────────────────────────────
    "required.method.not.called": ErrorSpec(
        _U,
        "{0} may not have been invoked on {1} or any of its aliases. "
        "The type of object is: {2}. Reason for going out of scope: {3}",
        confidence=Confidence.MEDIUM, cwe=_LEAK,
    ),
    "required.method.not.known": ErrorSpec(
        _K,
        "the methods that must be called on {0} cannot be determined. "
        "The type of object is: {1}. Reason for going out of scope: {2}",
        confidence=Confidence.LOW, cwe=_LEAK,
    ),
    "mustcallalias.out.of.scope": ErrorSpec(
        _O,
        "@MustCallAlias parameter {0} may go out of scope without being "
        "returned or stored in an owning field. Reason for going out of "
        "scope: {1}",
        confidence=Confidence.MEDIUM, cwe=_LEAK,
    ),
    "unfulfilled.mustcallonelements.obligations": ErrorSpec(
        _U,
        "{0} may not have been invoked on every element of {1}. "
        "Reason for going out of scope: {2}",
        confidence=Confidence.MEDIUM, cwe=_LEAK,
    ),
    # ── collection ownership ─────────────────────────────────────────────
    "unsafe.owningcollection.modification": ErrorSpec(
        _O,
        "{1} is overwritten or modified while its elements may still "
        "require {0}",
        cwe=_LEAK,
    ),
    "unsafe.owningcollection.field.modification": ErrorSpec(
        _O,
        "adding an element that requires {1} to owning collection field "
        "{0} outside a method annotated @CreatesMustCallFor(\"this\")",
        cwe=_LEAK,
    ),
    "modification.without.ownership": ErrorSpec(
        _O, "{0} is modified but does not own its elements",
    ),
    "unsafe.method": ErrorSpec(
        _O,
        "call to {0} on resource collection {1} may change its elements "
        "in a way that cannot be tracked",
    ),
    "illegal.ownership.transfer": ErrorSpec(
        _O, "ownership of owning collection {0} cannot be transferred here",
    ),
    "missing.argument.ownership": ErrorSpec(
        _O,
        "argument {0} passed to @OwningCollection parameter {1} of {2} "
        "does not own its elements",
    ),
    "missing.collection.ownership.annotation": ErrorSpec(
        _O,
        "resource collection {0} is passed to parameter {1} of {2}, which "
        "is neither @OwningCollection nor @CollectionAlias",
    ),
    "unnecessary.collectionalias.annotation": ErrorSpec(
        _S,
        "parameter {0} of {1} is @CollectionAlias but receives {2}, whose "
        "elements carry no obligations",
        severity=DiagnosticSeverity.WARNING,
    ),
    "unnecessary.collectionalias.return.type": ErrorSpec(
        _S,
        "{0} returns a collection without element obligations but is "
        "annotated @CollectionAlias",
        severity=DiagnosticSeverity.WARNING,
    ),
    # ── fields ───────────────────────────────────────────────────────────
    "owningcollection.field.not.final": ErrorSpec(
        _S, "@OwningCollection field {0} must be final",
    ),
    "owningcollection.field.static": ErrorSpec(
        _S, "@OwningCollection field {0} must not be static",
    ),
    "owningcollection.noncollection": ErrorSpec(
        _S,
        "@OwningCollection is only allowed on collections and one-"
        "dimensional arrays, but {0} has type {1}",
    ),
    "owning.collection": ErrorSpec(
        _S, "{0} is a collection or array; use @OwningCollection instead of @Owning",
    ),
    "owningcollection.field.elements.assigned.multiple.times": ErrorSpec(
        _S, "the elements of @OwningCollection field {0} are allocated more than once",
    ),
    "illegal.owningcollection.field.elements.assignment": ErrorSpec(
        _O,
        "elements of @OwningCollection field {0} may only be assigned by an "
        "allocating loop in a constructor",
    ),
    "illegal.owningcollection.field.assignment": ErrorSpec(
        _O,
        "@OwningCollection field {0} is assigned {1}, which does not own "
        "its elements",
    ),
    "owningcollection.field.assigned.outside.constructor": ErrorSpec(
        _O, "@OwningCollection field {0} is assigned outside a constructor",
    ),
    "owningcollection.field.returned": ErrorSpec(
        _O, "@OwningCollection field {0} is returned as an owning collection",
    ),
    # ── returns ──────────────────────────────────────────────────────────
    "return.without.ownership": ErrorSpec(
        _O, "{0} is returned as @OwningCollection but does not own its elements",
    ),
    "non.owningcollection.return.value": ErrorSpec(
        _O, "{0} is not an owning collection but the return type is @OwningCollection",
    ),
    "returning.unannotated.owningcollection.alias": ErrorSpec(
        _O,
        "{0} is a read-only view of an owning collection; annotate the "
        "return type @CollectionAlias",
    ),
    "owningcollection.return.value": ErrorSpec(
        _O,
        "owning collection {0} is returned but the return type is not "
        "@OwningCollection",
    ),
    # ── CreatesMustCallFor ───────────────────────────────────────────────
    "reset.not.owning": ErrorSpec(
        _O,
        "{1} resets the obligations of {0}, which is neither owned here nor "
        "listed in the @CreatesMustCallFor annotation of the enclosing method",
    ),
    "missing.creates.mustcall.for": ErrorSpec(
        _O,
        "{0} assigns a non-final owning field of {1} but is not annotated "
        "@CreatesMustCallFor(\"{1}\")",
    ),
    "incompatible.creates.mustcall.for": ErrorSpec(
        _O,
        "{0} assigns a non-final owning field of {1} but its "
        "@CreatesMustCallFor annotation names {2}",
    ),
    # ── iterators ────────────────────────────────────────────────────────
    "unsafe.iterator.remove": ErrorSpec(
        _I, "remove() is called on iterator {0} without a preceding next()",
    ),
}


def format_message(error_id: str, args: Sequence[Any]) -> str:
    spec = ERROR_CATALOG[error_id]
    return spec.template.format(*args)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — SINK
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSink:
    """Collects the diagnostics of one analysis run.

    Exact duplicates (same id, routine, location and arguments) are dropped;
    the worklist revisits blocks under different fact sets and would
    otherwise repeat rule-level diagnostics.
    """

    def __init__(self, checker_name: str = "") -> None:
        self.checker_name = checker_name
        self._diagnostics: List[Diagnostic] = []
        self._seen: Set[Tuple[str, str, SourceLocation, Tuple[str, ...]]] = set()

    def report(
        self,
        error_id: str,
        location: SourceLocation,
        *args: Any,
        routine: str = "",
        evidence: Optional[Dict[str, Any]] = None,
    ) -> Optional[Diagnostic]:
        """Emit *error_id* at *location*; returns ``None`` for duplicates."""
        try:
            spec = ERROR_CATALOG[error_id]
        except KeyError:
            raise ValueError(f"unknown error id {error_id!r}") from None
        str_args = tuple(str(a) for a in args)
        key = (error_id, routine, location, str_args)
        if key in self._seen:
            return None
        self._seen.add(key)
        diag = Diagnostic(
            error_id=error_id,
            message=spec.template.format(*str_args),
            severity=spec.severity,
            location=location,
            kind=spec.kind,
            confidence=spec.confidence,
            cwe=spec.cwe,
            checker_name=self.checker_name,
            routine=routine,
            evidence=evidence or {},
        )
        logger.debug("report %s at %s: %s", error_id, location, diag.message)
        self._diagnostics.append(diag)
        return diag

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def by_id(self, error_id: str) -> List[Diagnostic]:
        return [d for d in self._diagnostics if d.error_id == error_id]

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for d in diagnostics:
            key = (d.error_id, d.routine, d.location, (d.message,))
            if key not in self._seen:
                self._seen.add(key)
                self._diagnostics.append(d)

    def __len__(self) -> int:
        return len(self._diagnostics)


__all__ = [
    "DiagnosticSeverity",
    "Confidence",
    "DiagnosticKind",
    "SourceLocation",
    "Diagnostic",
    "ErrorSpec",
    "ERROR_CATALOG",
    "format_message",
    "DiagnosticSink",
]
