"""
mustcall_shims/checkers.py
══════════════════════════

Checker framework that turns the must-call analysis into actionable,
CWE-tagged diagnostics.

Architecture
────────────

  ┌─────────────────────────────────────────────────────────┐
  │                   CheckerRunner                         │
  │  ┌────────────────────────┐  ┌────────────────────────┐ │
  │  │ MustCallConsistency    │  │ OwnershipDeclaration   │ │
  │  │   Checker              │  │   Checker              │ │
  │  └───────────┬────────────┘  └───────────┬────────────┘ │
  │              │                           │              │
  │  ┌───────────▼───────────────────────────▼────────────┐ │
  │  │  loop_summarizer │ dataflow_engine │ validators    │ │
  │  └──────────────────────────┬─────────────────────────┘ │
  │                             │                           │
  │  ┌──────────────────────────▼─────────────────────────┐ │
  │  │           SuppressionManager                       │ │
  │  │  per-site  │  per-routine  │  file  │  global      │ │
  │  └──────────────────────────┬─────────────────────────┘ │
  │                             │                           │
  │  ┌──────────────────────────▼─────────────────────────┐ │
  │  │        Diagnostic Formatter (JSON / text)          │ │
  │  └────────────────────────────────────────────────────┘ │
  └─────────────────────────────────────────────────────────┘

Each Checker follows a four-phase lifecycle:

  1. **configure()**        — read options, build the AnalysisConfig
  2. **collect_evidence()** — run analyses, gather findings
  3. **diagnose()**         — turn findings into Diagnostics
  4. **report()**           — emit Diagnostics (filtered by suppressions)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
)

from .config import AnalysisConfig
from .dataflow_engine import MustCallConsistencyAnalyzer
from .declarations import Program
from .diagnostics import (
    ERROR_CATALOG,
    Diagnostic,
    DiagnosticKind,
    DiagnosticSeverity,
    DiagnosticSink,
    SourceLocation,
)
from .errors import MustCallShimsError
from .loop_summarizer import summarize_fulfilling_loops
from .validators import validate_program

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — SUPPRESSIONS
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Manages diagnostic suppressions from multiple sources.

    Sources:
      1. Per-site suppressions (file and line)
      2. Per-routine suppressions (``suppress(...)`` on a routine)
      3. File-level suppressions (exact name, suffix or fnmatch pattern)
      4. Global suppressions (command-line or config)

    ``"*"`` suppresses every error id.

    Usage
    -----
    >>> sm = SuppressionManager()
    >>> sm.load_program_suppressions(program)
    >>> sm.add_file_suppression("unsafe.method", "legacy/*.rlir")
    >>> sm.add_global_suppression("required.method.not.known")
    >>> if not sm.is_suppressed(diagnostic):
    ...     emit(diagnostic)
    """

    def __init__(self) -> None:
        # (file, line) → error ids suppressed at that location
        self._sites: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        # routine name → error ids
        self._routines: Dict[str, Set[str]] = defaultdict(set)
        # file pattern → error ids
        self._file_level: Dict[str, Set[str]] = defaultdict(set)
        self._global: Set[str] = set()

    def load_program_suppressions(self, program: Program) -> None:
        """Pick up the ``suppress(...)`` lists of every routine."""
        for routine in program.routines:
            for error_id in routine.suppressed_ids:
                self._routines[routine.name].add(error_id)

    def add_site_suppression(self, error_id: str, file: str, line: int) -> None:
        self._sites[(file, line)].add(error_id)

    def add_routine_suppression(self, error_id: str, routine: str) -> None:
        self._routines[routine].add(error_id)

    def add_file_suppression(self, error_id: str, file_pattern: str) -> None:
        """Suppress ``error_id`` in files matching ``file_pattern``."""
        self._file_level[file_pattern].add(error_id)

    def add_global_suppression(self, error_id: str) -> None:
        self._global.add(error_id)

    @staticmethod
    def _matches(error_id: str, ids: Iterable[str]) -> bool:
        ids = set(ids)
        return error_id in ids or "*" in ids

    def is_suppressed(self, diag: Diagnostic) -> bool:
        eid = diag.error_id
        if self._matches(eid, self._global):
            return True

        loc = diag.location
        if self._matches(eid, self._sites.get((loc.file, loc.line), ())):
            return True

        if diag.routine and self._matches(eid, self._routines.get(diag.routine, ())):
            return True

        for pattern, ids in self._file_level.items():
            if not self._matches(eid, ids):
                continue
            if pattern == loc.file or loc.file.endswith(pattern) or fnmatch(loc.file, pattern):
                return True
        return False

    def filter_diagnostics(self, diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
        """Return only non-suppressed diagnostics."""
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CHECKER BASE CLASS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerContext:
    """
    Shared context passed to every checker during execution.

    Attributes
    ----------
    program      : the loaded Program
    config       : AnalysisConfig of this run
    suppressions : SuppressionManager
    routines     : names of routines to analyze (None = all)
    stats        : mutable dict for timing / counting statistics
    """
    program: Program
    config: AnalysisConfig = field(default_factory=AnalysisConfig)
    suppressions: SuppressionManager = field(default_factory=SuppressionManager)
    routines: Optional[Sequence[str]] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def selected_routines(self) -> list:
        if self.routines is None:
            return list(self.program.routines)
        wanted = set(self.routines)
        return [
            r for r in self.program.routines
            if r.name in wanted or r.sig.name in wanted
        ]


class Checker(ABC):
    """
    Abstract base class for all checkers.

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``error_ids``
      - Implement ``collect_evidence()`` and ``diagnose()``
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    error_ids: ClassVar[FrozenSet[str]] = frozenset()
    default_severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.ERROR

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []
        self.sink = DiagnosticSink(self.name)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    def configure(self, ctx: CheckerContext) -> None:
        pass

    @abstractmethod
    def collect_evidence(self, ctx: CheckerContext) -> None:
        ...

    def diagnose(self, ctx: CheckerContext) -> None:
        """Findings are reported straight into ``self.sink``; order them."""
        self._diagnostics = sorted(
            self.sink.diagnostics,
            key=lambda d: (d.location.file, d.location.line, d.location.column, d.error_id),
        )

    def report(self, ctx: CheckerContext) -> List[Diagnostic]:
        return ctx.suppressions.filter_diagnostics(self._diagnostics)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — CHECKERS
# ═════════════════════════════════════════════════════════════════════════

_DECLARATION_IDS = frozenset({
    "owningcollection.field.not.final",
    "owningcollection.field.static",
    "owningcollection.noncollection",
    "owning.collection",
})


class MustCallConsistencyChecker(Checker):
    """
    Flow-sensitive check that every resource obligation is discharged on
    every path, plus the collection-ownership and iterator rules applied
    along the way.

    Fulfilling loops are summarized first so that the main analysis can
    discharge their methods from the collections they iterate over.
    """

    name = "must-call-consistency"
    description = "Resources must have their required methods called before going out of scope"
    error_ids = frozenset(ERROR_CATALOG) - frozenset({
        "owningcollection.field.not.final",
        "owningcollection.field.static",
    })

    def collect_evidence(self, ctx: CheckerContext) -> None:
        visited = 0
        counted = 0
        for routine in ctx.selected_routines():
            summarize_fulfilling_loops(routine, ctx.config)
            analyzer = MustCallConsistencyAnalyzer(routine, config=ctx.config, sink=self.sink)
            result = analyzer.analyze()
            visited += result.visited_items
            counted += result.must_call_count
        ctx.stats["visited_items"] = ctx.stats.get("visited_items", 0) + visited
        if ctx.config.count_must_call:
            ctx.stats["must_call_count"] = ctx.stats.get("must_call_count", 0) + counted


class OwnershipDeclarationChecker(Checker):
    """Flow-insensitive checks of ``@OwningCollection``/``@Owning``
    declarations on fields and parameters."""

    name = "ownership-declarations"
    description = "Collection-ownership annotations must be well-formed"
    error_ids = _DECLARATION_IDS

    def collect_evidence(self, ctx: CheckerContext) -> None:
        validate_program(ctx.program, self.sink)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — CHECKER REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class CheckerRegistry:
    """Registry of available checkers with filtering."""

    def __init__(self) -> None:
        self._checkers: Dict[str, Type[Checker]] = {}
        self._disabled: Set[str] = set()

    def register(self, checker_cls: Type[Checker]) -> None:
        self._checkers[checker_cls.name] = checker_cls

    def unregister(self, name: str) -> None:
        self._checkers.pop(name, None)

    def disable(self, name: str) -> None:
        self._disabled.add(name)

    def enable(self, name: str) -> None:
        self._disabled.discard(name)

    def get_all(self) -> List[Type[Checker]]:
        return list(self._checkers.values())

    def get_enabled(self) -> List[Type[Checker]]:
        return [
            cls for name, cls in self._checkers.items()
            if name not in self._disabled
        ]

    def get_by_name(self, name: str) -> Optional[Type[Checker]]:
        return self._checkers.get(name)

    def filter_by_error_id(self, error_id: str) -> List[Type[Checker]]:
        return [cls for cls in self._checkers.values() if error_id in cls.error_ids]

    @property
    def names(self) -> List[str]:
        return sorted(self._checkers.keys())


_DEFAULT_REGISTRY = CheckerRegistry()
_DEFAULT_REGISTRY.register(OwnershipDeclarationChecker)
_DEFAULT_REGISTRY.register(MustCallConsistencyChecker)


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — RUNNER
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerRunResults:
    """
    Aggregate results from running a suite of checkers.

    Attributes
    ----------
    diagnostics            : All diagnostics from all checkers
    diagnostics_by_checker : Diagnostics grouped by checker name
    stats                  : Timing and counting statistics
    checker_names          : Names of checkers that were run
    failures               : checker name → error message, for checkers
                             that raised
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    diagnostics_by_checker: Dict[str, List[Diagnostic]] = field(
        default_factory=lambda: defaultdict(list)
    )
    stats: Dict[str, Any] = field(default_factory=dict)
    checker_names: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == DiagnosticSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == DiagnosticSeverity.WARNING)

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    def by_id(self, error_id: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.error_id == error_id]

    def by_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    def by_routine(self, routine: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.routine == routine]

    def to_json_lines(self) -> str:
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Checker run complete: {self.total_count} diagnostics "
            f"({self.error_count} errors, {self.warning_count} warnings)",
        ]
        for name in self.checker_names:
            count = len(self.diagnostics_by_checker.get(name, []))
            elapsed = self.stats.get(f"{name}_elapsed_ms", 0)
            lines.append(f"  {name}: {count} findings ({elapsed:.1f}ms)")
        for name, message in self.failures.items():
            lines.append(f"  {name}: FAILED: {message}")
        if "must_call_count" in self.stats:
            lines.append(f"  tracked must-call resources: {self.stats['must_call_count']}")
        return "\n".join(lines)


class CheckerRunner:
    """
    Runs a suite of checkers against a loaded Program.

    Usage
    -----
    >>> runner = CheckerRunner(config=AnalysisConfig(permit_static_owning=True))
    >>> results = runner.run(program)
    >>> print(results.summary())

    Analysis-core errors (:class:`MustCallShimsError`) raised by one
    checker are recorded in ``results.failures`` and do not stop the
    other checkers.
    """

    def __init__(
        self,
        registry: Optional[CheckerRegistry] = None,
        suppressions: Optional[SuppressionManager] = None,
        config: Optional[AnalysisConfig] = None,
    ) -> None:
        self.registry = registry or _DEFAULT_REGISTRY
        self.suppressions = suppressions or SuppressionManager()
        self.config = config or AnalysisConfig()

    def run(
        self,
        program: Program,
        checkers: Optional[Sequence[str]] = None,
        routines: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        results = CheckerRunResults()
        self.suppressions.load_program_suppressions(program)
        ctx = CheckerContext(
            program=program,
            config=self.config,
            suppressions=self.suppressions,
            routines=routines,
        )

        if checkers is not None:
            checker_classes: List[Type[Checker]] = []
            for name in checkers:
                cls = self.registry.get_by_name(name)
                if cls is None:
                    raise ValueError(f"unknown checker {name!r}")
                checker_classes.append(cls)
        else:
            checker_classes = self.registry.get_enabled()

        for cls in checker_classes:
            checker = cls()
            results.checker_names.append(cls.name)
            t0 = time.monotonic()
            try:
                checker.configure(ctx)
                checker.collect_evidence(ctx)
                checker.diagnose(ctx)
                diags = checker.report(ctx)
            except MustCallShimsError as exc:
                logger.error("checker %s failed: %s", cls.name, exc)
                results.failures[cls.name] = str(exc)
                diags = []
            elapsed_ms = (time.monotonic() - t0) * 1000.0

            results.diagnostics.extend(diags)
            results.diagnostics_by_checker[cls.name] = diags
            results.stats[f"{cls.name}_elapsed_ms"] = elapsed_ms

        for key, value in ctx.stats.items():
            results.stats[key] = value
        return results


# ═════════════════════════════════════════════════════════════════════════
#  PART 6 — CONVENIENCE ENTRY POINT
# ═════════════════════════════════════════════════════════════════════════

def run_program(
    program: Program,
    config: Optional[AnalysisConfig] = None,
    suppress: Optional[Sequence[str]] = None,
    routines: Optional[Sequence[str]] = None,
) -> CheckerRunResults:
    """Run every registered checker on *program*."""
    sm = SuppressionManager()
    for eid in suppress or ():
        sm.add_global_suppression(eid)
    return CheckerRunner(suppressions=sm, config=config).run(program, routines=routines)


__all__ = [
    "SuppressionManager",
    "Checker",
    "CheckerContext",
    "CheckerRegistry",
    "MustCallConsistencyChecker",
    "OwnershipDeclarationChecker",
    "CheckerRunner",
    "CheckerRunResults",
    "run_program",
]
