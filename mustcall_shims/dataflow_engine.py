"""
mustcall_shims.dataflow_engine
==============================

Worklist fixpoint engine of the must-call consistency analysis.

The fact at a program point is a set of :class:`Obligation`.  Unlike the
usual lattice-based framework there is **no join**: every distinct set of
obligations reaching a block is analyzed on its own.  A
:class:`BlockWithObligations` is enqueued only if the very same item was
never enqueued before, so the analysis terminates because the number of
distinct obligation sets over a routine's finitely many aliases is finite.

For each dequeued item and each successor edge of its block, the gen/kill
rules of every node are applied, in order, to a copy of the incoming set;
then :meth:`MustCallConsistencyAnalyzer.propagate_to_successor` decides
which obligations go out of scope on that edge (and checks them) and
which flow on, with their aliases narrowed to those still in scope.

Public API
----------
    MustCallConsistencyAnalyzer  - per-routine engine
    RoutineResult                - diagnostics and statistics of one run
    run                          - convenience: analyze one CFG

Usage example
-------------
::

    from mustcall_shims.dataflow_engine import run

    diagnostics = run(routine.cfg)
    for d in diagnostics:
        print(d.to_gcc_format())
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set

from .config import AnalysisConfig
from .consistency import AnalysisContext, ConsistencyChecker
from .ctrlflow_graph import Block, BlockKind, CFG, CFGEdge
from .diagnostics import Diagnostic, DiagnosticSink
from .errors import MalformedCFGError, MustCallShimsError
from .genkill import GenKillRules
from .obligations import (
    BlockWithObligations,
    CollectionObligation,
    IteratorObligation,
    MethodExitKind,
    Obligation,
)
from .tac import (
    AssignmentNode,
    InvocationNode,
    Node,
    ObjectCreationNode,
    ReturnNode,
    VarDeclNode,
)
from . import validators

logger = logging.getLogger(__name__)

REGULAR_EXIT_REASON = "regular method exit"


@dataclass
class RoutineResult:
    """Outcome of analyzing one routine."""

    routine: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    visited_items: int = 0
    must_call_count: int = 0

    @property
    def has_errors(self) -> bool:
        return bool(self.diagnostics)


class MustCallConsistencyAnalyzer:
    """Forward, join-free worklist analysis of one routine.

    Parameters
    ----------
    routine : Routine
        The routine to analyze; its CFG and oracles are used unless a
        prepared :class:`AnalysisContext` is passed.
    config : AnalysisConfig, optional
    sink : DiagnosticSink, optional
        Diagnostics are reported here; a fresh sink by default.
    ctx : AnalysisContext, optional
    visit_hook : callable, optional
        Called with every dequeued :class:`BlockWithObligations`.
    """

    def __init__(
        self,
        routine,
        config: Optional[AnalysisConfig] = None,
        sink: Optional[DiagnosticSink] = None,
        ctx: Optional[AnalysisContext] = None,
        visit_hook: Optional[Callable[[BlockWithObligations], None]] = None,
    ) -> None:
        self.routine = routine
        self.ctx = ctx or AnalysisContext(routine, config=config, sink=sink)
        self.checker = ConsistencyChecker(self.ctx)
        self.rules = GenKillRules(self.ctx, self.checker)
        self.visit_hook = visit_hook
        self.visited_items = 0

    @property
    def cfg(self) -> CFG:
        return self.routine.cfg

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def initial_obligations(self) -> Set[Obligation]:
        return self.rules.initial_tracked_obligations()

    def start_block(self) -> Block:
        return self.cfg.entry

    def analyze(self) -> RoutineResult:
        ctx = self.ctx
        cfg = self.cfg
        if cfg.entry is None or cfg.exit is None:
            raise MalformedCFGError("CFG has no entry or exit block", routine=self.routine.name)
        ctx.reset()
        logger.info("analyzing %s (%d blocks)", self.routine.name, len(cfg.blocks))

        seed = BlockWithObligations(self.start_block(), frozenset(self.initial_obligations()))
        worklist: Deque[BlockWithObligations] = deque([seed])
        visited: Set[BlockWithObligations] = {seed}
        limit = ctx.config.max_worklist_items

        while worklist:
            item = worklist.popleft()
            self.visited_items += 1
            if self.visited_items > limit:
                raise MustCallShimsError(
                    f"worklist bound of {limit} items exceeded",
                    routine=self.routine.name,
                )
            logger.debug("visit %r", item)
            if self.visit_hook is not None:
                self.visit_hook(item)

            for successor in self.handle_block(item):
                if successor not in visited:
                    visited.add(successor)
                    worklist.append(successor)

        logger.info(
            "%s: %d item(s) visited, %d diagnostic(s)",
            self.routine.name, self.visited_items, len(ctx.sink),
        )
        return RoutineResult(
            routine=self.routine.name,
            diagnostics=ctx.sink.diagnostics,
            visited_items=self.visited_items,
            must_call_count=ctx.must_call_count,
        )

    def handle_block(self, item: BlockWithObligations) -> List[BlockWithObligations]:
        block = item.block
        result: List[BlockWithObligations] = []
        for edge in block.successors:
            if edge.is_exceptional and self.ctx.config.is_ignored_exception(edge.exception_type):
                continue
            obligations = set(item.obligations)
            for node in block.nodes:
                self.apply_node(obligations, node, edge)
            if not self.ctx.in_loop_body:
                self.rules.apply_loop_exits(obligations, edge)
            propagated = self.propagate_to_successor(block, edge, obligations)
            if propagated is not None:
                result.append(propagated)
        return result

    def apply_node(self, obligations: Set[Obligation], node: Node, edge: CFGEdge) -> None:
        rules = self.rules
        if isinstance(node, AssignmentNode):
            rules.update_for_assignment(obligations, node, edge)
        elif self.ctx.in_loop_body:
            return
        elif isinstance(node, (InvocationNode, ObjectCreationNode)):
            rules.update_for_invocation(obligations, node, edge)
        elif isinstance(node, ReturnNode):
            rules.verify_return_statement(node)
            rules.update_for_owning_return(obligations, node, edge)
        elif isinstance(node, VarDeclNode):
            validators.check_local_declaration(self.ctx, node)

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def propagate_to_successor(
        self, block: Block, edge: CFGEdge, obligations: Set[Obligation]
    ) -> Optional[BlockWithObligations]:
        """Check the obligations leaving scope on *edge* and return the
        item for the successor."""
        ctx = self.ctx
        successor = edge.dst
        exceptional_node = edge.exceptional_node if edge.is_exceptional else None
        cm_store, mc_store = self._stores_for(block, edge, exceptional_node)

        if exceptional_node is None:
            reason = REGULAR_EXIT_REASON
        else:
            reason = (
                f"possible exceptional exit due to {exceptional_node.text()} "
                f"with exception type {edge.exception_type}"
            )
        if successor.kind is BlockKind.EXIT:
            exit_kind = MethodExitKind.NORMAL_RETURN
        elif successor.kind is BlockKind.EXCEPTIONAL_EXIT:
            exit_kind = MethodExitKind.EXCEPTIONAL_EXIT
        else:
            exit_kind = (
                MethodExitKind.EXCEPTIONAL_EXIT if edge.is_exceptional
                else MethodExitKind.NORMAL_RETURN
            )

        propagated: Set[Obligation] = set()
        for ob in obligations:
            if (
                exceptional_node is not None
                and exceptional_node.result is not None
                and len(ob.aliases) == 1
                and ob.can_be_satisfied_through(exceptional_node.result)
            ):
                # the call threw, so its result never existed
                continue

            in_scope = frozenset(
                a for a in ob.aliases if self._alias_in_scope(ob, a, successor)
            )
            if in_scope:
                if in_scope != ob.aliases:
                    ob = ob.with_new_aliases(in_scope)
                propagated.add(ob)
                continue

            if ob.derived_from_must_call_alias():
                if (
                    successor.kind is BlockKind.EXIT
                    and MethodExitKind.NORMAL_RETURN in ob.when_to_enforce
                ):
                    ctx.report(
                        "mustcallalias.out.of.scope", ob.first_alias().site,
                        ob.first_alias().text_for_message(), reason,
                    )
                continue
            if exit_kind not in ob.when_to_enforce:
                continue
            if isinstance(ob, CollectionObligation):
                self.checker.check_must_call_on_elements(
                    ob, cm_store, mc_store, is_exit=True, reason=reason
                )
            else:
                self.checker.check_must_call(ob, cm_store, mc_store, reason)

        return self.successor_item(successor, propagated)

    def successor_item(self, successor: Block, obligations: Set[Obligation]) -> Optional[BlockWithObligations]:
        if successor.is_special_exit:
            return None
        return BlockWithObligations(successor, frozenset(obligations))

    def _alias_in_scope(self, ob: Obligation, alias, successor: Block) -> bool:
        if successor.is_special_exit:
            return False
        if isinstance(ob, IteratorObligation) and alias.reference.is_field:
            return True
        return successor.has_in_scope(alias.reference.scope_name)

    def _stores_for(self, block: Block, edge: CFGEdge, exceptional_node: Optional[Node]):
        stores = self.ctx.stores
        last = block.last_node
        if last is None:
            return stores.called_on_edge(block, edge.dst), stores.must_call_on_edge(block, edge.dst)
        cm_store = stores.called_after(last)
        mc_store = stores.must_call_after(last)
        if (
            exceptional_node is not None
            and isinstance(exceptional_node, (InvocationNode, ObjectCreationNode))
            and exceptional_node.method.creates_must_call_for
        ):
            # the reset never happened on this path
            mc_store = stores.must_call_before(exceptional_node)
        return cm_store, mc_store


# ---------------------------------------------------------------------------
# Convenience entry point
# ---------------------------------------------------------------------------


def run(
    cfg: CFG,
    config: Optional[AnalysisConfig] = None,
    sink: Optional[DiagnosticSink] = None,
    visit_hook: Optional[Callable[[BlockWithObligations], None]] = None,
) -> List[Diagnostic]:
    """Summarize the fulfilling loops of the routine owning *cfg*, then
    analyze it and return its diagnostics."""
    from .loop_summarizer import summarize_fulfilling_loops

    if cfg.routine is None:
        raise MalformedCFGError("CFG is not attached to a routine")
    summarize_fulfilling_loops(cfg.routine, config)
    analyzer = MustCallConsistencyAnalyzer(
        cfg.routine, config=config, sink=sink, visit_hook=visit_hook
    )
    return analyzer.analyze().diagnostics


__all__ = [
    "MustCallConsistencyAnalyzer",
    "RoutineResult",
    "REGULAR_EXIT_REASON",
    "run",
]
