"""
mustcall_shims.loop_summarizer
==============================

Computes which methods a *fulfilling* loop calls on every element of the
collection it iterates over.

The summarizer reuses the worklist engine in loop-body mode: it starts at
the loop's first body block with a single obligation for the element,
follows only assignments (so that locals copied from the element become
its aliases) and, whenever an iteration reaches the loop's update block,
records the methods called on the element or any of its aliases.  The
result is the intersection over all paths through the body.

A non-empty result is stored in the :class:`LoopDescriptor` and the loop
is marked fulfilling in the :class:`LoopContext`, so that the main
analysis discharges those methods from the collection's requirement when
it leaves the loop.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Set

from .config import AnalysisConfig
from .consistency import AnalysisContext
from .ctrlflow_graph import Block, CFGEdge
from .dataflow_engine import MustCallConsistencyAnalyzer
from .declarations import Ownership
from .diagnostics import DiagnosticSink
from .errors import InvalidLoopBodyAnalysis
from .loops import LoopContext, LoopDescriptor
from .obligations import (
    NORMAL_RETURN_ONLY,
    BlockWithObligations,
    Obligation,
    PlainObligation,
    ResourceAlias,
)

logger = logging.getLogger(__name__)


class LoopBodySummarizer(MustCallConsistencyAnalyzer):
    """Loop-body analysis of one fulfilling loop."""

    def __init__(
        self,
        descriptor: LoopDescriptor,
        config: Optional[AnalysisConfig] = None,
        loops: Optional[LoopContext] = None,
    ) -> None:
        if descriptor.cfg is None or descriptor.cfg.routine is None:
            raise InvalidLoopBodyAnalysis(f"{descriptor!r} is not attached to a routine")
        routine = descriptor.cfg.routine
        # findings inside the body are reported by the main analysis
        ctx = AnalysisContext(
            routine, config=config, sink=DiagnosticSink("loop-body"), loops=loops
        )
        ctx.loop_body = descriptor
        super().__init__(routine, ctx=ctx)
        self.descriptor = descriptor
        self._called: Optional[FrozenSet[str]] = None

    def start_block(self) -> Block:
        return self.descriptor.body_entry

    def initial_obligations(self) -> Set[Obligation]:
        d = self.descriptor
        derived = self.routine.ownership_of(d.element) is Ownership.MUST_CALL_ALIAS
        alias = ResourceAlias(
            d.element, self.routine.element_for(d.element), d.element_site, derived
        )
        return {PlainObligation(frozenset({alias}), NORMAL_RETURN_ONLY)}

    def propagate_to_successor(
        self, block: Block, edge: CFGEdge, obligations: Set[Obligation]
    ) -> Optional[BlockWithObligations]:
        successor = edge.dst
        if not self.cfg.has_state(successor):
            raise InvalidLoopBodyAnalysis(
                f"block {successor.label!r} of the loop body has no analysis state",
                routine=self.routine.name,
            )
        if successor is self.descriptor.update_block:
            self._record_iteration(block, edge, obligations)
            return None
        if successor.is_special_exit:
            return None
        propagated = set()
        for ob in obligations:
            in_scope = frozenset(
                a for a in ob.aliases
                if successor.has_in_scope(a.reference.scope_name)
            )
            if in_scope:
                propagated.add(ob.with_new_aliases(in_scope))
        return BlockWithObligations(successor, frozenset(propagated))

    def _record_iteration(self, block: Block, edge: CFGEdge, obligations: Set[Obligation]) -> None:
        stores = self.ctx.stores
        last = block.last_node
        if last is None:
            cm_store = stores.called_on_edge(block, edge.dst)
        else:
            cm_store = stores.called_after(last)
        called: Set[str] = set()
        for ob in obligations:
            for alias in ob.aliases:
                called |= cm_store.called_methods(alias.reference)
        path_called = frozenset(called)
        logger.debug(
            "loop %s: path through %s calls %s",
            self.descriptor.name, block.label, sorted(path_called),
        )
        if self._called is None:
            self._called = path_called
        else:
            self._called = self._called & path_called

    def summarize(self) -> Set[str]:
        """Run the body analysis; returns the methods called on every
        element (empty when nothing can be proven)."""
        d = self.descriptor
        if d.body_entry is d.update_block:
            logger.debug("loop %s has an empty body", d.name or "<loop>")
            d.record_methods(())
            return set()
        try:
            self.analyze()
        except InvalidLoopBodyAnalysis as exc:
            logger.debug("loop body analysis aborted: %s", exc)
            d.record_methods(())
            return set()
        d.record_methods(self._called or ())
        result = set(d.methods)
        if result:
            self.ctx.loops.mark_fulfilling(d)
        logger.info(
            "%s: loop %s calls %s on every element",
            self.routine.name, d.name or "<loop>", sorted(result),
        )
        return result


def run_loop_body(
    descriptor: LoopDescriptor,
    config: Optional[AnalysisConfig] = None,
    loops: Optional[LoopContext] = None,
) -> Set[str]:
    """Summarize one fulfilling loop."""
    return LoopBodySummarizer(descriptor, config=config, loops=loops).summarize()


def summarize_fulfilling_loops(
    routine, config: Optional[AnalysisConfig] = None
) -> List[LoopDescriptor]:
    """Summarize every fulfilling loop of *routine* not summarized yet;
    returns the loops that were summarized now."""
    loops = routine.program.loops
    done = []
    for descriptor in loops.fulfilling_loops(routine.cfg):
        if descriptor.summarized:
            continue
        run_loop_body(descriptor, config=config, loops=loops)
        descriptor.summarized = True
        done.append(descriptor)
    return done


__all__ = ["LoopBodySummarizer", "run_loop_body", "summarize_fulfilling_loops"]
