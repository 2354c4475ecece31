"""
mustcall_shims.consistency
==========================

Decides whether an obligation leaving scope (or a collection being
overwritten) is discharged, and reports when it is not.

Also home of :class:`AnalysisContext`, the per-routine state shared by
the gen/kill rules, the worklist engine and this checker.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, Optional, Set

from .config import AnalysisConfig
from .diagnostics import DiagnosticSink, SourceLocation
from .errors import TypeSystemError
from .obligations import (
    CollectionObligation,
    IteratorArena,
    IteratorElementObligation,
    Obligation,
    ResourceAlias,
)
from .oracles import (
    UNKNOWN,
    CalledMethodsOracle,
    CalledMethodsStore,
    Known,
    MustCallFact,
    MustCallOracle,
    MustCallStore,
    StoreCache,
)
from .tac import Node

logger = logging.getLogger(__name__)


def format_missing_methods(methods: Iterable[str]) -> str:
    """``[] -> "None"``, ``["close"] -> "method close"``,
    ``["b", "a"] -> "methods a, b"``."""
    names = sorted(methods)
    if not names:
        return "None"
    if len(names) == 1:
        return f"method {names[0]}"
    return "methods " + ", ".join(names)


class AnalysisContext:
    """Mutable state of the analysis of one routine.

    Everything here is re-initialized by :meth:`reset` before a routine
    (or a loop body) is analyzed.
    """

    def __init__(
        self,
        routine,
        config: Optional[AnalysisConfig] = None,
        sink: Optional[DiagnosticSink] = None,
        must_call: Optional[MustCallOracle] = None,
        called_methods: Optional[CalledMethodsOracle] = None,
        loops=None,
    ) -> None:
        self.routine = routine
        self.program = routine.program
        self.types = routine.program.types
        self.config = config or AnalysisConfig()
        self.sink = sink if sink is not None else DiagnosticSink()
        self.stores = StoreCache(
            must_call or routine.must_call,
            called_methods or routine.called_methods,
        )
        self.loops = loops if loops is not None else routine.program.loops
        self.arena = IteratorArena()
        self.reported_error_aliases: Set[ResourceAlias] = set()
        self.already_allocated: Dict[str, int] = {}
        self.loop_body = None
        self.must_call_count = 0

    @property
    def in_loop_body(self) -> bool:
        return self.loop_body is not None

    def reset(self) -> None:
        self.stores.clear()
        self.arena.reset()
        self.reported_error_aliases.clear()
        self.already_allocated.clear()
        self.routine.invalidate()

    def location(self, node: Optional[Node] = None, line: int = 0) -> SourceLocation:
        if node is not None:
            return SourceLocation(self.routine.file, node.line, node.column)
        return SourceLocation(self.routine.file, line or self.routine.line)

    def report(self, error_id: str, node: Optional[Node], *args, line: int = 0):
        return self.sink.report(
            error_id, self.location(node, line), *args, routine=self.routine.name
        )


class ConsistencyChecker:
    """Verifies obligations against the oracle facts at a program point."""

    def __init__(self, ctx: AnalysisContext) -> None:
        self.ctx = ctx

    # ----- scalar obligations -----------------------------------------------

    def must_call_of(self, alias: ResourceAlias, mc_store: MustCallStore) -> Optional[MustCallFact]:
        """Must-call fact of *alias*: the oracle's, else the declared type's.
        ``None`` when neither knows the alias."""
        fact = mc_store.required_methods(alias.reference)
        if fact is not None:
            return fact
        type_name = self.ctx.routine.type_name_of(alias.reference)
        if type_name is None:
            return None
        methods = self.ctx.types.must_call(type_name)
        return UNKNOWN if methods is None else Known(methods)

    def check_must_call(
        self,
        obligation: Obligation,
        cm_store: CalledMethodsStore,
        mc_store: MustCallStore,
        reason: str,
    ) -> bool:
        """Is *obligation* discharged at the point of the stores?

        Reports ``required.method.not.known`` or
        ``required.method.not.called`` (once per first alias) and returns
        ``False`` when it is not.
        """
        ctx = self.ctx
        if isinstance(obligation, IteratorElementObligation):
            state = ctx.arena.get(obligation.iterator_id)
            if state is not None and not state.must_check(obligation.element_id):
                state.leave_scope(obligation, cm_store, mc_store)
                return True

        first = obligation.first_alias()
        type_name = ctx.routine.type_name_of(first.reference) or "unknown"

        must_call_values: Dict[ResourceAlias, FrozenSet[str]] = {}
        for alias in obligation.sorted_aliases():
            fact = self.must_call_of(alias, mc_store)
            if fact is None:
                continue
            if fact is UNKNOWN:
                if first not in ctx.reported_error_aliases:
                    ctx.reported_error_aliases.add(first)
                    ctx.report(
                        "required.method.not.known", first.site,
                        first.text_for_message(), type_name, reason,
                    )
                return False
            must_call_values[alias] = fact.methods

        if not must_call_values:
            raise TypeSystemError(
                f"no must-call fact for any alias of {obligation!r}",
                routine=ctx.routine.name,
            )

        if any(not methods for methods in must_call_values.values()):
            return True
        for alias, methods in must_call_values.items():
            if methods <= cm_store.called_methods(alias.reference):
                return True

        if ctx.config.skips(type_name):
            logger.debug("skipping unproven obligation of type %s", type_name)
            return True
        if first not in ctx.reported_error_aliases:
            ctx.reported_error_aliases.add(first)
            required = must_call_values.get(first)
            if required is None:
                required = frozenset().union(*must_call_values.values())
            ctx.report(
                "required.method.not.called", first.site,
                format_missing_methods(required), first.text_for_message(),
                type_name, reason,
            )
        return False

    # ----- collection obligations -------------------------------------------

    def check_must_call_on_elements(
        self,
        obligation: CollectionObligation,
        cm_store: CalledMethodsStore,
        mc_store: MustCallStore,
        is_exit: bool,
        reason: str = "",
        occurrence: Optional[Node] = None,
    ) -> bool:
        """Are all per-element obligations of *obligation* discharged?

        ``is_exit`` distinguishes scope exit (reports
        ``unfulfilled.mustcallonelements.obligations``) from an overwrite or
        modification at *occurrence* (reports
        ``unsafe.owningcollection.modification``).
        """
        ctx = self.ctx
        routine = ctx.routine
        required: Set[str] = set(obligation.requirement)
        called: Set[str] = set()
        for alias in obligation.sorted_aliases():
            on_elements = mc_store.required_methods_on_elements(alias.reference)
            if on_elements is None:
                if routine.is_owning_collection(alias.reference):
                    # ownership of the elements was revoked
                    if is_exit:
                        ctx.report(
                            "unfulfilled.mustcallonelements.obligations",
                            alias.site, "unknown", alias.text_for_message(), reason,
                        )
                    else:
                        ctx.report(
                            "modification.without.ownership",
                            occurrence or alias.site, alias.text_for_message(),
                        )
                    return False
                continue
            required |= on_elements
            called |= cm_store.called_methods_on_elements(alias.reference)

        missing = required - called
        if not missing:
            return True
        first = obligation.first_alias()
        if is_exit:
            ctx.report(
                "unfulfilled.mustcallonelements.obligations", first.site,
                format_missing_methods(missing), first.text_for_message(), reason,
            )
        else:
            ctx.report(
                "unsafe.owningcollection.modification", occurrence or first.site,
                format_missing_methods(missing), first.text_for_message(),
            )
        return False


__all__ = ["AnalysisContext", "ConsistencyChecker", "format_missing_methods"]
