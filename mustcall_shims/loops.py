"""
mustcall_shims.loops
====================

Loop descriptors produced by the loop-shape pattern matcher and the
per-compilation-unit :class:`LoopContext` that carries them between the
matcher, the loop-body summarizer and the main analysis.

Two loop shapes are recognized:

* **allocating** loops write a fresh resource into every slot of an owning
  collection (``for (i...) a[i] = new Socket()``); on loop exit the
  collection's per-element requirement grows by the loop's methods;
* **fulfilling** loops call methods on every element
  (``for (Socket s : a) s.close()``); once the summarizer has computed the
  methods called on every path, loop exit discharges them from the
  collection's requirement.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from .tac import Node, Reference

logger = logging.getLogger(__name__)


class LoopKind(enum.Enum):
    ALLOCATING = "allocating"
    FULFILLING = "fulfilling"


@dataclass(eq=False)
class LoopDescriptor:
    """One recognized loop.

    Attributes
    ----------
    kind : LoopKind
    collection : Reference
        The collection/array iterated over.
    element : Reference
        The element access (``a[i]``) or the temporary holding ``next()``.
    element_site : Node or None
        Node that produces ``element`` (for allocating loops: the element
        write).
    condition_block, body_entry, update_block : Block
        The loop condition, the first block of the body and the block that
        closes each iteration (the body's back-edge source).
    cfg : CFG
        Graph of the routine containing the loop.
    methods : set[str]
        Allocating: the must-call set of allocated elements.  Fulfilling:
        filled by the summarizer with the methods called on every element.
    """

    kind: LoopKind
    collection: Reference
    element: Reference
    condition_block: Any
    body_entry: Any
    update_block: Any
    cfg: Any = None
    element_site: Optional[Node] = None
    name: str = ""
    methods: Set[str] = field(default_factory=set)
    summarized: bool = False

    def record_methods(self, methods: Iterable[str]) -> None:
        """Store the methods a body summary proved.  A later summary of
        the same loop can only narrow them."""
        proven = set(methods)
        if self.summarized:
            self.methods &= proven
        else:
            self.methods = proven
        self.summarized = True

    @property
    def is_fulfilling(self) -> bool:
        return self.kind is LoopKind.FULFILLING

    def exit_edges(self):
        """Edges leaving the condition block to somewhere other than the body."""
        return [
            e for e in self.condition_block.successors
            if e.dst is not self.body_entry
        ]

    def __repr__(self) -> str:
        return (
            f"LoopDescriptor({self.name or self.kind.value}, "
            f"collection={self.collection.text!r}, element={self.element.text!r}, "
            f"methods={sorted(self.methods)})"
        )


class LoopContext:
    """Registry of the loops of one compilation unit.

    Replaces global tables: the matcher registers descriptors, the
    summarizer marks fulfilling loops whose effect is known, and the main
    analysis queries loop exits and allocating writes.
    """

    def __init__(self) -> None:
        self._loops: List[LoopDescriptor] = []
        self._fulfilling: Set[int] = set()

    def register(self, descriptor: LoopDescriptor) -> LoopDescriptor:
        self._loops.append(descriptor)
        return descriptor

    def __iter__(self):
        return iter(self._loops)

    def __len__(self) -> int:
        return len(self._loops)

    def loops_in(self, cfg) -> List[LoopDescriptor]:
        return [d for d in self._loops if d.cfg is cfg]

    def fulfilling_loops(self, cfg=None) -> List[LoopDescriptor]:
        return [
            d for d in self._loops
            if d.is_fulfilling and (cfg is None or d.cfg is cfg)
        ]

    def mark_fulfilling(self, descriptor: LoopDescriptor) -> None:
        """Record that *descriptor* discharges its methods on every element."""
        descriptor.summarized = True
        self._fulfilling.add(id(descriptor))
        logger.debug("loop %r marked fulfilling", descriptor)

    def is_marked_fulfilling(self, descriptor: LoopDescriptor) -> bool:
        return id(descriptor) in self._fulfilling

    def loops_exiting(self, edge) -> List[LoopDescriptor]:
        """Loops whose exit is *edge*."""
        found = []
        for d in self._loops:
            if d.condition_block is edge.src and edge.dst is not d.body_entry:
                if d.kind is LoopKind.ALLOCATING or self.is_marked_fulfilling(d):
                    found.append(d)
        return found

    def allocating_loop_for(self, node: Node) -> Optional[LoopDescriptor]:
        """The allocating loop whose element write is *node*."""
        for d in self._loops:
            if d.kind is LoopKind.ALLOCATING and d.element_site is node:
                return d
        return None


__all__ = ["LoopKind", "LoopDescriptor", "LoopContext"]
