"""
mustcall_shims.routine_builder
==============================

Programmatic construction of programs: types, classes, method signatures
and routines with their CFG, loop descriptors and oracle facts.

The textual IR loader and the test-suite both go through this module, so
that a routine built by hand and one read from an ``.rlir`` file are
indistinguishable.

Usage example
-------------
::

    program = Program("Demo.java")
    define_type(program, "Socket", must_call=["close"])
    b = RoutineBuilder(program, "Demo", "leak")
    b.block("B1")
    s = b.new("Socket")
    b.decl("s", "Socket", value=s.result)
    b.goto("exit")
    b.edge("entry", "B1")
    routine = b.build()
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple, Union

from .ctrlflow_graph import Block, BlockKind, CFG, CFGEdge, EdgeKind
from .declarations import (
    FieldDecl,
    LocalDecl,
    MethodSig,
    Ownership,
    ParamDecl,
    Program,
    Routine,
    TypeDecl,
    TypeKind,
)
from .loops import LoopDescriptor, LoopKind
from .oracles import UNKNOWN
from .tac import (
    AssignmentNode,
    InvocationNode,
    LocalRef,
    Node,
    ObjectCreationNode,
    Reference,
    ReturnNode,
    TEMP_PREFIX,
    VarDeclNode,
    as_reference,
)

RefLike = Union[Reference, str]
BlockLike = Union[Block, str]
ParamLike = Union[ParamDecl, Tuple[str, str], Tuple[str, str, Union[Ownership, str]]]


def _ownership(value: Union[Ownership, str, None]) -> Ownership:
    if value is None:
        return Ownership.NONE
    if isinstance(value, Ownership):
        return value
    return Ownership(value.lower())


def _param(value: ParamLike) -> ParamDecl:
    if isinstance(value, ParamDecl):
        return value
    if len(value) == 2:
        return ParamDecl(value[0], value[1])
    return ParamDecl(value[0], value[1], _ownership(value[2]))


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


def define_type(
    program: Program,
    name: str,
    kind: Union[TypeKind, str] = TypeKind.PLAIN,
    must_call: Optional[Iterable[str]] = (),
    element_type: Optional[str] = None,
    dimensions: int = 1,
) -> TypeDecl:
    """Declare a type; ``must_call=None`` means the set is unknown."""
    if isinstance(kind, str):
        kind = TypeKind(kind)
    methods = None if must_call is None else frozenset(must_call)
    return program.types.define(TypeDecl(
        name, kind=kind, must_call=methods,
        element_type=element_type, dimensions=dimensions,
    ))


def define_field(
    program: Program,
    class_name: str,
    name: str,
    type_name: str,
    ownership: Union[Ownership, str, None] = None,
    final: bool = False,
    static: bool = False,
    line: int = 0,
) -> FieldDecl:
    return program.class_named(class_name).add_field(FieldDecl(
        name, type_name, _ownership(ownership), final=final, static=static, line=line,
    ))


def declare_method(
    program: Program,
    owner: str,
    name: str,
    params: Sequence[ParamLike] = (),
    return_type: Optional[str] = None,
    return_ownership: Union[Ownership, str, None] = None,
    returns_this: bool = False,
    creates_must_call_for: Sequence[str] = (),
    constructor: bool = False,
) -> MethodSig:
    constructor = constructor or name == "<init>"
    if return_type is None:
        return_type = owner if constructor else "void"
    return program.declare_method(MethodSig(
        owner=owner,
        name=name,
        params=tuple(_param(p) for p in params),
        return_type=return_type,
        return_ownership=_ownership(return_ownership),
        returns_this=returns_this,
        creates_must_call_for=tuple(creates_must_call_for),
        is_constructor=constructor,
    ))


# ---------------------------------------------------------------------------
# Routines
# ---------------------------------------------------------------------------


class RoutineBuilder:
    """Builds one routine, block by block.

    Nodes are appended to the *current* block, selected with
    :meth:`block` or :meth:`use`.  References may be given as text
    (``"this.f"``, ``"a[i]"``).  Oracle facts are keyed by a node (the
    point after it), by a point key string, or apply everywhere.
    """

    def __init__(
        self,
        program: Program,
        owner: str,
        name: str,
        params: Sequence[ParamLike] = (),
        return_type: Optional[str] = None,
        return_ownership: Union[Ownership, str, None] = None,
        creates_must_call_for: Sequence[str] = (),
        constructor: bool = False,
        returns_this: bool = False,
        file: str = "",
        line: int = 0,
    ) -> None:
        sig = declare_method(
            program, owner, name, params,
            return_type=return_type,
            return_ownership=return_ownership,
            returns_this=returns_this,
            creates_must_call_for=creates_must_call_for,
            constructor=constructor,
        )
        self.program = program
        self.routine = Routine(sig, program, file=file or program.file, line=line)
        program.add_routine(self.routine)
        self.current: Optional[Block] = None
        self._temps = 0

    @property
    def cfg(self) -> CFG:
        return self.routine.cfg

    # ----- blocks and edges -------------------------------------------------

    def block(
        self,
        label: str,
        in_scope: Optional[Iterable[str]] = None,
        conditional: bool = False,
    ) -> Block:
        """Create (or, for ``entry``, reuse) a block and make it current."""
        if label == "entry":
            blk = self.cfg.entry
        else:
            kind = BlockKind.CONDITIONAL if conditional else BlockKind.REGULAR
            blk = self.cfg.add_block(Block(label, kind=kind, in_scope=in_scope))
        self.current = blk
        return blk

    def use(self, block: BlockLike) -> Block:
        self.current = self._block(block)
        return self.current

    def _block(self, block: BlockLike) -> Block:
        return block if isinstance(block, Block) else self.cfg.block(block)

    def edge(
        self,
        src: BlockLike,
        dst: BlockLike,
        kind: Union[EdgeKind, str] = EdgeKind.NORMAL,
        exception_type: Optional[str] = None,
    ) -> CFGEdge:
        if isinstance(kind, str):
            kind = EdgeKind(kind)
        return self.cfg.add_edge(self._block(src), self._block(dst), kind, exception_type)

    def goto(self, dst: BlockLike) -> CFGEdge:
        return self.edge(self.current, dst)

    def branch(self, then_dst: BlockLike, else_dst: BlockLike) -> Tuple[CFGEdge, CFGEdge]:
        return (
            self.edge(self.current, then_dst, EdgeKind.THEN),
            self.edge(self.current, else_dst, EdgeKind.ELSE),
        )

    def throws(self, dst: BlockLike = "exceptional", exception_type: str = "IOException") -> CFGEdge:
        return self.edge(self.current, dst, EdgeKind.EXCEPTION, exception_type)

    # ----- nodes ------------------------------------------------------------

    def _add(self, node: Node) -> Node:
        if self.current is None:
            raise ValueError("no current block; call block() first")
        self.cfg.add_node(self.current, node)
        self.routine.invalidate()
        return node

    def temp(self) -> LocalRef:
        """A fresh temporary; names already holding a node result are skipped."""
        while True:
            ref = LocalRef(f"{TEMP_PREFIX}t{self._temps}")
            self._temps += 1
            if self.routine.temp_origin(ref) is None:
                return ref

    def local(
        self,
        name: str,
        type_name: str,
        ownership: Union[Ownership, str, None] = None,
        line: int = 0,
    ) -> LocalRef:
        """Declare a local without emitting a declaration node."""
        self.routine.add_local(LocalDecl(name, type_name, _ownership(ownership), line=line))
        return LocalRef(name)

    def decl(
        self,
        name: str,
        type_name: Optional[str] = None,
        ownership: Union[Ownership, str, None] = None,
        value: Optional[RefLike] = None,
        label: Optional[str] = None,
        line: int = 0,
    ) -> VarDeclNode:
        if type_name is not None:
            self.local(name, type_name, ownership, line=line)
        node = self._add(VarDeclNode(name, label=label, line=line))
        if value is not None:
            init_label = f"{label}.init" if label else None
            self._add(AssignmentNode(
                LocalRef(name), as_reference(value), is_declaration=True,
                label=init_label, line=line,
            ))
        return node

    def assign(self, target: RefLike, value: RefLike, label: Optional[str] = None, line: int = 0) -> AssignmentNode:
        return self._add(AssignmentNode(
            as_reference(target), as_reference(value), label=label, line=line,
        ))

    def call(
        self,
        method: Union[MethodSig, str],
        receiver: Optional[RefLike] = None,
        args: Sequence[RefLike] = (),
        result: Union[bool, RefLike, None] = True,
        super_call: bool = False,
        label: Optional[str] = None,
        line: int = 0,
    ) -> InvocationNode:
        """Emit a call.  ``result=True`` allocates a temporary for
        non-void callees; a name or reference uses that instead."""
        sig = method if isinstance(method, MethodSig) else self.program.method(method)
        if result is True:
            decl = self.program.types.get(sig.return_type)
            result_ref = None if decl.kind is TypeKind.VOID or super_call else self.temp()
        elif result in (False, None):
            result_ref = None
        else:
            result_ref = as_reference(result)
        return self._add(InvocationNode(
            sig,
            receiver=as_reference(receiver) if receiver is not None else None,
            args=[as_reference(a) for a in args],
            result=result_ref,
            is_constructor_call=super_call,
            label=label,
            line=line,
        ))

    def new(
        self,
        type_name: str,
        args: Sequence[RefLike] = (),
        result: Optional[RefLike] = None,
        label: Optional[str] = None,
        line: int = 0,
    ) -> ObjectCreationNode:
        return self._add(ObjectCreationNode(
            type_name,
            self.program.constructor(type_name),
            args=[as_reference(a) for a in args],
            result=as_reference(result) if result is not None else self.temp(),
            label=label,
            line=line,
        ))

    def ret(self, value: Optional[RefLike] = None, label: Optional[str] = None, line: int = 0) -> ReturnNode:
        return self._add(ReturnNode(
            as_reference(value) if value is not None else None, label=label, line=line,
        ))

    # ----- loops ------------------------------------------------------------

    def loop(
        self,
        kind: Union[LoopKind, str],
        collection: RefLike,
        element: RefLike,
        condition: BlockLike,
        body: BlockLike,
        update: BlockLike,
        site: Optional[Node] = None,
        methods: Iterable[str] = (),
        name: str = "",
    ) -> LoopDescriptor:
        if isinstance(kind, str):
            kind = LoopKind(kind)
        descriptor = LoopDescriptor(
            kind=kind,
            collection=as_reference(collection),
            element=as_reference(element),
            condition_block=self._block(condition),
            body_entry=self._block(body),
            update_block=self._block(update),
            cfg=self.cfg,
            element_site=site,
            name=name,
            methods=set(methods),
        )
        return self.program.loops.register(descriptor)

    # ----- oracle facts -----------------------------------------------------

    @staticmethod
    def _point(at: Union[Node, str, None]) -> Optional[str]:
        if isinstance(at, Node):
            return f"after:{at.label}"
        return at

    def must_call(self, ref: RefLike, methods, at: Union[Node, str, None] = None) -> None:
        """``methods`` may be :data:`~mustcall_shims.oracles.UNKNOWN`."""
        value = methods if methods is UNKNOWN else frozenset(methods)
        self.routine.must_call.set_required(as_reference(ref), value, self._point(at))

    def must_call_on_elements(self, ref: RefLike, methods, at: Union[Node, str, None] = None) -> None:
        """``methods=None`` revokes ownership of the elements."""
        self.routine.must_call.set_on_elements(as_reference(ref), methods, self._point(at))

    def called(self, ref: RefLike, methods: Iterable[str], at: Union[Node, str, None] = None) -> None:
        self.routine.called_methods.set_called(as_reference(ref), methods, self._point(at))

    def called_on_elements(self, ref: RefLike, methods: Iterable[str], at: Union[Node, str, None] = None) -> None:
        self.routine.called_methods.set_on_elements(as_reference(ref), methods, self._point(at))

    def suppress(self, *error_ids: str) -> None:
        self.routine.suppressed_ids.update(error_ids)

    def build(self) -> Routine:
        self.routine.invalidate()
        return self.routine


__all__ = [
    "define_type",
    "define_field",
    "declare_method",
    "RoutineBuilder",
]
