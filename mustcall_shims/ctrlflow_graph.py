"""
mustcall_shims.ctrlflow_graph
=============================

Intraprocedural Control Flow Graphs over three-address nodes.

A CFG is a directed graph whose vertices are *basic blocks* (straight-line
sequences of :class:`~mustcall_shims.tac.Node`) and whose edges are tagged
as normal fall-through, the then/else arms of a conditional, or an
exceptional transfer carrying the thrown exception type.  Every CFG owns
three special blocks: the entry, the regular exit and the exceptional
exit.

Public API
----------
    EdgeKind         - classification of an edge
    BlockKind        - classification of a block
    Block            - a single basic block
    CFGEdge          - a directed edge between two Blocks
    CFG              - the control flow graph for one routine
    cfg_summary      - human-readable dump of a CFG

Typical usage::

    from mustcall_shims.ctrlflow_graph import CFG, Block, EdgeKind

    cfg = CFG(routine)
    body = cfg.add_block(Block(label="b1"))
    cfg.add_edge(cfg.entry, body)
    cfg.add_edge(body, cfg.exit)
    cfg.add_edge(body, cfg.exceptional_exit, EdgeKind.EXCEPTION,
                 exception_type="IOException")
    print(cfg.to_dot())

Scope
-----
``Block.in_scope`` optionally lists the variable names live on entry to
the block.  ``None`` means every variable of the routine is in scope; the
special exit blocks never have anything in scope.
"""

from __future__ import annotations

import enum
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
)

from .errors import MalformedCFGError
from .tac import Node

# ---------------------------------------------------------------------------
# Edge and block kinds
# ---------------------------------------------------------------------------


class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    NORMAL = "normal"
    THEN = "then"
    ELSE = "else"
    EXCEPTION = "exception"


class BlockKind(enum.Enum):
    """Classification of a basic block."""

    ENTRY = "entry"
    REGULAR = "regular"
    CONDITIONAL = "conditional"
    EXIT = "exit"
    EXCEPTIONAL_EXIT = "exceptional-exit"


# ---------------------------------------------------------------------------
# Block
# ---------------------------------------------------------------------------

_next_block_id: int = 0


def _fresh_block_id() -> int:
    global _next_block_id
    bid = _next_block_id
    _next_block_id += 1
    return bid


class Block:
    """A basic block in the CFG.

    Attributes
    ----------
    id : int
        Unique (per-process) numeric identifier.
    label : str
        Name used by the textual IR and by diagnostics.
    kind : BlockKind
    nodes : list[Node]
        Ordered three-address nodes.  Empty for the special blocks and for
        most conditional blocks.
    in_scope : frozenset[str] or None
        Variables live on entry; ``None`` means "all".
    successors : list[CFGEdge]
    predecessors : list[CFGEdge]
    """

    __slots__ = (
        "id",
        "label",
        "kind",
        "nodes",
        "in_scope",
        "successors",
        "predecessors",
    )

    def __init__(
        self,
        label: Optional[str] = None,
        kind: BlockKind = BlockKind.REGULAR,
        nodes: Optional[List[Node]] = None,
        in_scope: Optional[Iterable[str]] = None,
    ) -> None:
        self.id: int = _fresh_block_id()
        self.label: str = label or f"BB{self.id}"
        self.kind = kind
        self.nodes: List[Node] = list(nodes) if nodes is not None else []
        self.in_scope: Optional[FrozenSet[str]] = (
            frozenset(in_scope) if in_scope is not None else None
        )
        self.successors: List[CFGEdge] = []
        self.predecessors: List[CFGEdge] = []

    # ----- helpers ----------------------------------------------------------

    def append(self, node: Node) -> Node:
        self.nodes.append(node)
        return node

    @property
    def last_node(self) -> Optional[Node]:
        return self.nodes[-1] if self.nodes else None

    @property
    def is_special_exit(self) -> bool:
        return self.kind in (BlockKind.EXIT, BlockKind.EXCEPTIONAL_EXIT)

    def has_in_scope(self, name: str) -> bool:
        """Is the variable *name* live on entry to this block?"""
        if self.is_special_exit:
            return False
        if name == "this" or self.in_scope is None:
            return True
        return name in self.in_scope

    def __repr__(self) -> str:
        return f"Block({self.label!r}, kind={self.kind.value!r}, nnodes={len(self.nodes)})"

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, Block):
            return self.id == other.id
        return NotImplemented


# ---------------------------------------------------------------------------
# CFGEdge
# ---------------------------------------------------------------------------

class CFGEdge:
    """A directed edge in the CFG.

    Attributes
    ----------
    src : Block
    dst : Block
    kind : EdgeKind
    exception_type : str or None
        Only set on :attr:`EdgeKind.EXCEPTION` edges.
    """

    __slots__ = ("src", "dst", "kind", "exception_type")

    def __init__(
        self,
        src: Block,
        dst: Block,
        kind: EdgeKind = EdgeKind.NORMAL,
        exception_type: Optional[str] = None,
    ) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind
        self.exception_type = exception_type

    @property
    def is_exceptional(self) -> bool:
        return self.kind is EdgeKind.EXCEPTION

    @property
    def exceptional_node(self) -> Optional[Node]:
        """The node whose evaluation may throw along this edge."""
        if not self.is_exceptional:
            return None
        return self.src.last_node

    def __repr__(self) -> str:
        extra = f", exc={self.exception_type!r}" if self.exception_type else ""
        return (
            f"CFGEdge({self.src.label} -> {self.dst.label}, "
            f"kind={self.kind.value!r}{extra})"
        )

    def __hash__(self) -> int:
        return hash((self.src.id, self.dst.id, self.kind, self.exception_type))

    def __eq__(self, other) -> bool:
        if isinstance(other, CFGEdge):
            return (
                self.src.id == other.src.id
                and self.dst.id == other.dst.id
                and self.kind == other.kind
                and self.exception_type == other.exception_type
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG:
    """Intraprocedural control flow graph for a single routine.

    Attributes
    ----------
    routine : Routine or None
        The routine this CFG represents.
    entry, exit, exceptional_exit : Block
        The three special blocks.
    blocks : list[Block]
        All basic blocks (including the special ones).
    edges : list[CFGEdge]
    """

    def __init__(self, routine=None) -> None:
        self.routine = routine
        self.entry = Block(label="entry", kind=BlockKind.ENTRY)
        self.exit = Block(label="exit", kind=BlockKind.EXIT)
        self.exceptional_exit = Block(
            label="exceptional", kind=BlockKind.EXCEPTIONAL_EXIT
        )
        self.blocks: List[Block] = [self.entry, self.exit, self.exceptional_exit]
        self.edges: List[CFGEdge] = []
        self._by_label: Dict[str, Block] = {b.label: b for b in self.blocks}
        self._reachable: Optional[Set[Block]] = None

    # ----- graph mutation ---------------------------------------------------

    def add_block(self, block: Block) -> Block:
        """Register *block* in this CFG and return it."""
        if block.label in self._by_label:
            raise MalformedCFGError(f"duplicate block label {block.label!r}")
        self.blocks.append(block)
        self._by_label[block.label] = block
        self._reachable = None
        return block

    def add_node(self, block: Block, node: Node) -> Node:
        """Append *node* to *block*."""
        block.append(node)
        return node

    def add_edge(
        self,
        src: Block,
        dst: Block,
        kind: EdgeKind = EdgeKind.NORMAL,
        exception_type: Optional[str] = None,
    ) -> CFGEdge:
        """Create an edge, register it, and wire up predecessor/successor lists."""
        for b in (src, dst):
            if self._by_label.get(b.label) is not b:
                raise MalformedCFGError(
                    f"edge endpoint {b.label!r} does not belong to this CFG"
                )
        if kind is EdgeKind.EXCEPTION and not exception_type:
            raise MalformedCFGError(
                f"exceptional edge {src.label} -> {dst.label} has no exception type"
            )
        if src.is_special_exit:
            raise MalformedCFGError(f"exit block {src.label!r} cannot have successors")
        e = CFGEdge(src, dst, kind=kind, exception_type=exception_type)
        self.edges.append(e)
        src.successors.append(e)
        dst.predecessors.append(e)
        self._reachable = None
        return e

    # ----- queries ----------------------------------------------------------

    def block(self, label: str) -> Block:
        try:
            return self._by_label[label]
        except KeyError:
            raise MalformedCFGError(f"unknown block {label!r}") from None

    def nodes(self) -> Iterable[Node]:
        for b in self.blocks:
            yield from b.nodes

    def reachable_from(self, start: Block) -> Set[Block]:
        """Return the set of blocks reachable from *start* (DFS)."""
        visited: Set[Block] = set()
        worklist = [start]
        while worklist:
            n = worklist.pop()
            if n in visited:
                continue
            visited.add(n)
            for e in n.successors:
                worklist.append(e.dst)
        return visited

    def has_state(self, block: Block) -> bool:
        """Does the analysis reach *block* from the routine entry?"""
        if self._reachable is None:
            self._reachable = self.reachable_from(self.entry)
        return block in self._reachable

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        if title:
            lines.append(f'  label="{title}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for b in self.blocks:
            body = "\\l".join(
                f"{n.label}: {n.text()}".replace('"', '\\"') for n in b.nodes
            )
            if body:
                body += "\\l"
            color = ""
            if b.kind is BlockKind.ENTRY:
                color = ', style=filled, fillcolor="#ccffcc"'
            elif b.kind is BlockKind.EXIT:
                color = ', style=filled, fillcolor="#ffcccc"'
            elif b.kind is BlockKind.EXCEPTIONAL_EXIT:
                color = ', style=filled, fillcolor="#ffe0b0"'
            lines.append(f'  {b.label} [label="{b.label}\\n{body}"{color}];')
        for e in self.edges:
            style = ""
            elabel = e.kind.value
            if e.exception_type:
                elabel += f": {e.exception_type}"
            if e.kind is EdgeKind.THEN:
                style = ", color=green, fontcolor=green"
            elif e.kind is EdgeKind.ELSE:
                style = ", color=red, fontcolor=red"
            elif e.kind is EdgeKind.EXCEPTION:
                style = ", style=dashed, color=orange, fontcolor=orange"
            lines.append(
                f'  {e.src.label} -> {e.dst.label} '
                f'[label="{elabel}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        name = self.routine.name if self.routine is not None else "<unknown>"
        return (
            f"CFG(routine={name!r}, blocks={len(self.blocks)}, "
            f"edges={len(self.edges)})"
        )


# ---------------------------------------------------------------------------
# Convenience: print a summary
# ---------------------------------------------------------------------------

def cfg_summary(cfg: CFG) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for block in cfg.blocks:
        succ = ", ".join(
            f"{e.dst.label}({e.kind.value}"
            + (f" {e.exception_type}" if e.exception_type else "")
            + ")"
            for e in block.successors
        )
        pred = ", ".join(e.src.label for e in block.predecessors)
        lines.append(
            f"  {block.label} [{block.kind.value}] "
            f"nodes={len(block.nodes)}  "
            f"succ=[{succ}]  "
            f"pred=[{pred}]"
        )
        for node in block.nodes:
            lines.append(f"      {node.label}: {node.text()}")
    return "\n".join(lines)


__all__ = [
    "EdgeKind",
    "BlockKind",
    "Block",
    "CFGEdge",
    "CFG",
    "cfg_summary",
]
