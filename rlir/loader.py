"""
rlir/loader.py — textual IR → :class:`mustcall_shims.declarations.Program`
==========================================================================

Two passes, as in the other front-ends of this code base:

1. :class:`RlirTreeBuilder`, a parsimonious ``NodeVisitor``, turns the
   parse tree into plain declaration records;
2. :class:`ProgramAssembler` feeds those records to the
   :mod:`mustcall_shims.routine_builder` API.  Types, fields and method
   signatures are declared before any routine is built, so routines may
   call methods declared further down the file.  Inside a routine,
   edges, loops and facts are resolved after every block exists.

Public API
----------
``parse_rlir(text, filename) -> Program``
``load_rlir_file(path) -> Program``
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from parsimonious.exceptions import ParseError
from parsimonious.nodes import NodeVisitor

from mustcall_shims.declarations import Ownership, Program
from mustcall_shims.errors import MustCallShimsError
from mustcall_shims.oracles import UNKNOWN
from mustcall_shims.routine_builder import (
    RoutineBuilder,
    declare_method,
    define_field,
    define_type,
)
from mustcall_shims.tac import Node, Reference, parse_reference

from .errors import (
    RlirError,
    RlirErrorCodes,
    RlirSemanticError,
    RlirSyntaxError,
    SourceSpan,
)
from .grammar import RLIR_GRAMMAR

logger = logging.getLogger(__name__)

SPECIAL_BLOCKS = ("exit", "exceptional")


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — DECLARATION RECORDS
# ═══════════════════════════════════════════════════════════════════

@dataclass
class TypeSpec:
    name: str
    kind: str = "plain"
    element_type: Optional[str] = None
    dimensions: int = 1
    must_call: Optional[List[str]] = field(default_factory=list)
    pos: int = 0


@dataclass
class FieldSpec:
    owner: str
    name: str
    type_name: str
    modifiers: List[Union[Ownership, str]] = field(default_factory=list)
    line: int = 0
    pos: int = 0


@dataclass
class SignatureSpec:
    owner: str
    name: str
    params: List[Tuple[str, str, Optional[Ownership]]] = field(default_factory=list)
    return_type: Optional[str] = None
    return_ownership: Optional[Ownership] = None
    returns_this: bool = False
    creates: List[str] = field(default_factory=list)
    constructor: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"


@dataclass
class MethodSpec:
    signature: SignatureSpec
    pos: int = 0


@dataclass
class Statement:
    """One statement of a block; ``data`` depends on ``kind``."""
    kind: str
    data: Dict[str, Any]
    line: int = 0
    label: Optional[str] = None
    pos: int = 0


@dataclass
class BlockSpec:
    label: str
    scope: Optional[List[str]] = None
    conditional: bool = False
    statements: List[Statement] = field(default_factory=list)
    pos: int = 0


@dataclass
class EdgeSpec:
    src: str
    dst: str
    kind: str = "normal"
    exception_type: Optional[str] = None
    pos: int = 0


@dataclass
class LoopSpec:
    kind: str
    collection: Reference
    element: Reference
    condition: str
    body: str
    update: str
    site: Optional[str] = None
    methods: List[str] = field(default_factory=list)
    name: str = ""
    pos: int = 0


FACT_NONE = "none"


@dataclass
class FactSpec:
    kind: str
    ref: Reference
    # None = unknown ("?"), FACT_NONE = revoked, list = method names
    value: Union[None, str, List[str]]
    point: Optional[Tuple[str, ...]] = None
    pos: int = 0


@dataclass
class LocalSpec:
    name: str
    type_name: str
    ownership: Optional[Ownership] = None
    line: int = 0


@dataclass
class RoutineSpec:
    signature: SignatureSpec
    line: int = 0
    suppressed: List[str] = field(default_factory=list)
    locals: List[LocalSpec] = field(default_factory=list)
    blocks: List[BlockSpec] = field(default_factory=list)
    edges: List[EdgeSpec] = field(default_factory=list)
    loops: List[LoopSpec] = field(default_factory=list)
    facts: List[FactSpec] = field(default_factory=list)
    pos: int = 0


@dataclass
class ProgramSpec:
    file: Optional[str] = None
    declarations: List[Any] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — PARSE TREE VISITOR
# ═══════════════════════════════════════════════════════════════════

def _opt(value: Any) -> Any:
    """Value of an optional (``?``) child, or ``None`` when absent."""
    if isinstance(value, list):
        return value[0] if value else None
    return None


def _many(value: Any) -> List[Any]:
    """Values of a repeated (``*``) child."""
    return value if isinstance(value, list) else []


def _rest(value: Any, index: int) -> List[Any]:
    """Pick item *index* of every ``("," ...)*`` repetition."""
    return [item[index] for item in _many(value)]


class RlirTreeBuilder(NodeVisitor):
    """Transforms the parsimonious parse tree into declaration records."""

    unwrapped_exceptions = (RlirError,)

    def __init__(self, text: str, filename: str = "") -> None:
        self.text = text
        self.filename = filename

    def _span(self, node) -> SourceSpan:
        return SourceSpan.from_offset(self.text, node.start, self.filename)

    def generic_visit(self, node, visited_children):
        # leaves and absent optionals come back as the node itself
        return visited_children if node.children else node

    # ─────────────────────────────────────────────────────────────
    # Top level
    # ─────────────────────────────────────────────────────────────

    def visit_program(self, node, children):
        _, file_decl, declarations = children
        return ProgramSpec(file=_opt(file_decl), declarations=_many(declarations))

    def visit_file_decl(self, node, children):
        _, path, _, _, _ = children
        return path

    def visit_top_decl(self, node, children):
        return children[0]

    # ─────────────────────────────────────────────────────────────
    # Types, fields and signatures
    # ─────────────────────────────────────────────────────────────

    def visit_type_decl(self, node, children):
        _, name, _, shape, clause, _, _ = children
        spec = TypeSpec(name=name, pos=node.start)
        shape = _opt(shape)
        if shape is not None:
            spec.kind, spec.element_type, spec.dimensions = shape
        clause = _opt(clause)
        if clause is not None:
            spec.must_call = clause[0]
        return spec

    def visit_type_shape(self, node, children):
        kind, _, element, _, dims = children
        return kind, element, _opt(dims) or 1

    def visit_shape_kind(self, node, children):
        return node.text.strip()

    def visit_dims(self, node, children):
        _, value, _ = children
        return value

    def visit_mustcall_clause(self, node, children):
        _, methods = children
        return (methods,)

    def visit_method_set(self, node, children):
        return children[0]

    def visit_unknown_set(self, node, children):
        return None

    def visit_name_list(self, node, children):
        _, _, names, _, _ = children
        return _opt(names) or []

    def visit_names(self, node, children):
        first, _, rest = children
        return [first] + _rest(rest, 2)

    def visit_field_decl(self, node, children):
        _, qualified, _, _, _, type_name, _, modifiers, line, _, _ = children
        owner, name = qualified
        return FieldSpec(
            owner=owner, name=name, type_name=type_name,
            modifiers=_many(modifiers), line=_opt(line) or 0, pos=node.start,
        )

    def visit_field_modifier(self, node, children):
        value = children[0]
        return value if isinstance(value, Ownership) else node.text.strip()

    def visit_method_decl(self, node, children):
        _, signature, _, _ = children
        return MethodSpec(signature, pos=node.start)

    def visit_signature(self, node, children):
        ctor, qualified, _, _, _, params, _, _, ret, flags = children
        owner, name = qualified
        sig = SignatureSpec(
            owner=owner, name=name,
            params=_opt(params) or [],
            constructor=_opt(ctor) is not None or name == "<init>",
        )
        ret = _opt(ret)
        if ret is not None:
            sig.return_type, sig.return_ownership = ret
        for flag in _many(flags):
            if flag == "returns_this":
                sig.returns_this = True
            else:
                sig.creates.extend(flag[1])
        return sig

    def visit_params(self, node, children):
        first, rest = children
        return [first] + _rest(rest, 2)

    def visit_param(self, node, children):
        name, _, _, _, type_name, _, ownership = children
        return name, type_name, _opt(ownership)

    def visit_return_clause(self, node, children):
        _, _, type_name, _, ownership = children
        return type_name, _opt(ownership)

    def visit_sig_flag(self, node, children):
        return children[0]

    def visit_kw_returns_this(self, node, children):
        return "returns_this"

    def visit_creates_clause(self, node, children):
        _, _, _, names, _, _ = children
        return "creates", _opt(names) or []

    # ─────────────────────────────────────────────────────────────
    # Routines
    # ─────────────────────────────────────────────────────────────

    def visit_routine_decl(self, node, children):
        _, signature, line, _, _, items, _, _ = children
        spec = RoutineSpec(signature=signature, line=_opt(line) or 0, pos=node.start)
        for item in _many(items):
            if isinstance(item, LocalSpec):
                spec.locals.append(item)
            elif isinstance(item, BlockSpec):
                spec.blocks.append(item)
            elif isinstance(item, EdgeSpec):
                spec.edges.append(item)
            elif isinstance(item, LoopSpec):
                spec.loops.append(item)
            elif isinstance(item, FactSpec):
                spec.facts.append(item)
            else:
                spec.suppressed.extend(item)
        return spec

    def visit_routine_item(self, node, children):
        return children[0]

    def visit_suppress_decl(self, node, children):
        _, _, _, first, _, rest, _, _, _, _ = children
        return [first] + _rest(rest, 2)

    def visit_local_decl(self, node, children):
        _, name, _, _, _, type_name, _, ownership, line, _, _ = children
        return LocalSpec(name, type_name, _opt(ownership), _opt(line) or 0)

    def visit_block_decl(self, node, children):
        _, label, _, options, _, _, statements, _, _ = children
        spec = BlockSpec(label=label, statements=_many(statements), pos=node.start)
        for option in _many(options):
            if option == "conditional":
                spec.conditional = True
            else:
                spec.scope = list(option[1])
        return spec

    def visit_block_option(self, node, children):
        return children[0]

    def visit_kw_conditional(self, node, children):
        return "conditional"

    def visit_scope_option(self, node, children):
        _, _, _, names, _, _ = children
        return "scope", _opt(names) or []

    def visit_edge_decl(self, node, children):
        _, src, _, _, _, dst, _, kind, _, _ = children
        kind = _opt(kind) or ("normal", None)
        return EdgeSpec(src, dst, kind[0], kind[1], pos=node.start)

    def visit_edge_kind(self, node, children):
        return children[0]

    def visit_plain_edge_kind(self, node, children):
        return node.text.strip(), None

    def visit_exception_kind(self, node, children):
        _, type_name, _ = children
        return "exception", type_name

    def visit_loop_decl(self, node, children):
        (_, kind, _, collection, _, _, element, _,
         _, condition, _, _, body, _, _, update, _,
         options, _, _) = children
        spec = LoopSpec(
            kind=kind, collection=collection, element=element,
            condition=condition, body=body, update=update, pos=node.start,
        )
        for key, value in _many(options):
            if key == "site":
                spec.site = value
            elif key == "methods":
                spec.methods = list(value)
            else:
                spec.name = value
        return spec

    def visit_loop_kind(self, node, children):
        return node.text.strip()

    def visit_loop_option(self, node, children):
        return children[0]

    def visit_site_option(self, node, children):
        _, label, _ = children
        return "site", label

    def visit_methods_option(self, node, children):
        _, names = children
        return "methods", names

    def visit_name_option(self, node, children):
        _, name, _ = children
        return "name", name

    def visit_fact_decl(self, node, children):
        kind, ref, _, value, point, _, _ = children
        return FactSpec(kind, ref, value, _opt(point), pos=node.start)

    def visit_fact_kind(self, node, children):
        return node.text.strip()

    def visit_fact_value(self, node, children):
        if node.children[0].expr_name == "kw_none":
            return FACT_NONE
        return children[0]

    def visit_point(self, node, children):
        _, spec = children
        return spec

    def visit_point_spec(self, node, children):
        return children[0]

    def visit_edge_point(self, node, children):
        _, src, _, _, _, dst, _ = children
        return "edge", src, dst

    def visit_node_point(self, node, children):
        where, _, label, _ = children
        return where.text, label

    # ─────────────────────────────────────────────────────────────
    # Statements
    # ─────────────────────────────────────────────────────────────

    def visit_statement(self, node, children):
        label, statement = children
        statement.label = _opt(label)
        return statement

    def visit_node_label(self, node, children):
        name, _, _, _ = children
        return name

    def visit_statement_body(self, node, children):
        return children[0]

    def visit_decl_stmt(self, node, children):
        _, name, _, decl_type, init, line, _, _ = children
        type_name, ownership = _opt(decl_type) or (None, None)
        return Statement(
            "decl",
            {"name": name, "type_name": type_name, "ownership": ownership,
             "value": _opt(init)},
            line=_opt(line) or 0, pos=node.start,
        )

    def visit_decl_type(self, node, children):
        _, _, type_name, _, ownership = children
        return type_name, _opt(ownership)

    def visit_decl_init(self, node, children):
        _, _, value, _ = children
        return value

    def visit_return_stmt(self, node, children):
        _, value, line, _, _ = children
        return Statement("return", {"value": _opt(value)}, line=_opt(line) or 0, pos=node.start)

    def visit_return_value(self, node, children):
        return children[0]

    def visit_goto_stmt(self, node, children):
        _, target, _, _, _ = children
        return Statement("goto", {"target": target}, pos=node.start)

    def visit_branch_stmt(self, node, children):
        _, then_dst, _, _, else_dst, _, _, _ = children
        return Statement("branch", {"then": then_dst, "else": else_dst}, pos=node.start)

    def visit_throws_stmt(self, node, children):
        _, exception_type, _, target, _, _ = children
        return Statement(
            "throws",
            {"exception_type": exception_type, "target": _opt(target) or "exceptional"},
            pos=node.start,
        )

    def visit_throws_target(self, node, children):
        _, _, target, _ = children
        return target

    def visit_new_stmt(self, node, children):
        result, _, type_name, _, _, _, args, _, _, line, _, _ = children
        return Statement(
            "new",
            {"type_name": type_name, "args": _opt(args) or [], "result": _opt(result)},
            line=_opt(line) or 0, pos=node.start,
        )

    def visit_call_stmt(self, node, children):
        result, kind, qualified, _, _, _, args, _, _, receiver, line, _, _ = children
        return Statement(
            "call",
            {"method": f"{qualified[0]}.{qualified[1]}", "super": kind == "super",
             "args": _opt(args) or [], "receiver": _opt(receiver),
             "result": _opt(result)},
            line=_opt(line) or 0, pos=node.start,
        )

    def visit_call_kind(self, node, children):
        return node.text.strip()

    def visit_receiver(self, node, children):
        _, ref, _ = children
        return ref

    def visit_result_to(self, node, children):
        ref, _, _, _ = children
        return ref

    def visit_assign_stmt(self, node, children):
        target, _, _, _, value, _, line, _, _ = children
        return Statement(
            "assign", {"target": target, "value": value},
            line=_opt(line) or 0, pos=node.start,
        )

    def visit_args(self, node, children):
        first, _, rest = children
        return [first] + _rest(rest, 2)

    # ─────────────────────────────────────────────────────────────
    # Lexical elements
    # ─────────────────────────────────────────────────────────────

    def visit_ownership(self, node, children):
        return Ownership(node.text.strip())

    def visit_qualified(self, node, children):
        owner, _, name = node.text.rpartition(".")
        return owner, name

    def visit_ref(self, node, children):
        try:
            return parse_reference(node.text)
        except ValueError as exc:
            raise RlirSyntaxError(
                str(exc), code=RlirErrorCodes.INVALID_REFERENCE, span=self._span(node)
            ) from exc

    def visit_name(self, node, children):
        return node.text

    def visit_type_name(self, node, children):
        return node.text

    def visit_error_id(self, node, children):
        return node.text

    def visit_line_tag(self, node, children):
        _, _, value, _ = children
        return value

    def visit_integer(self, node, children):
        return int(node.text)

    def visit_string(self, node, children):
        return codecs.decode(node.text[1:-1], "unicode_escape")


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PROGRAM ASSEMBLY
# ═══════════════════════════════════════════════════════════════════

class ProgramAssembler:
    """Builds a :class:`Program` from the records of one file."""

    def __init__(self, text: str, filename: str = "") -> None:
        self.text = text
        self.filename = filename

    def _span(self, pos: int) -> SourceSpan:
        return SourceSpan.from_offset(self.text, pos, self.filename)

    def _error(self, message: str, pos: int, code=RlirErrorCodes.INVALID_DECLARATION):
        return RlirSemanticError(message, code=code, span=self._span(pos))

    def assemble(self, spec: ProgramSpec) -> Program:
        program = Program(spec.file or self.filename)
        routines: List[RoutineSpec] = []
        for decl in spec.declarations:
            if isinstance(decl, TypeSpec):
                define_type(
                    program, decl.name, kind=decl.kind, must_call=decl.must_call,
                    element_type=decl.element_type, dimensions=decl.dimensions,
                )
            elif isinstance(decl, FieldSpec):
                self._field(program, decl)
            elif isinstance(decl, MethodSpec):
                self._declare(program, decl.signature)
            else:
                routines.append(decl)
        for routine in routines:
            self._routine(program, routine)
        logger.info(
            "%s: %d type(s), %d routine(s)",
            program.file or "<string>", len(program.types.names()), len(program.routines),
        )
        return program

    def _field(self, program: Program, spec: FieldSpec) -> None:
        ownership = None
        for modifier in spec.modifiers:
            if isinstance(modifier, Ownership):
                if ownership is not None:
                    raise self._error(f"field {spec.name!r} has two ownership annotations", spec.pos)
                ownership = modifier
        define_field(
            program, spec.owner, spec.name, spec.type_name, ownership,
            final="final" in spec.modifiers, static="static" in spec.modifiers,
            line=spec.line,
        )

    @staticmethod
    def _declare(program: Program, sig: SignatureSpec):
        return declare_method(
            program, sig.owner, sig.name, sig.params,
            return_type=sig.return_type,
            return_ownership=sig.return_ownership,
            returns_this=sig.returns_this,
            creates_must_call_for=sig.creates,
            constructor=sig.constructor,
        )

    # ----- routines ---------------------------------------------------

    def _routine(self, program: Program, spec: RoutineSpec) -> None:
        sig = spec.signature
        if any(r.name == sig.qualified_name for r in program.routines):
            raise self._error(
                f"routine {sig.qualified_name!r} is defined twice", spec.pos,
                RlirErrorCodes.DUPLICATE_ROUTINE,
            )
        b = RoutineBuilder(
            program, sig.owner, sig.name, sig.params,
            return_type=sig.return_type,
            return_ownership=sig.return_ownership,
            creates_must_call_for=sig.creates,
            constructor=sig.constructor,
            returns_this=sig.returns_this,
            file=program.file,
            line=spec.line,
        )
        b.suppress(*spec.suppressed)
        for local in spec.locals:
            b.local(local.name, local.type_name, local.ownership, line=local.line)

        labels: Dict[str, Node] = {}
        edges: List[EdgeSpec] = list(spec.edges)
        seen_blocks = set()
        for block in spec.blocks:
            if block.label in SPECIAL_BLOCKS:
                raise self._error(
                    f"block {block.label!r} is predeclared and cannot have statements",
                    block.pos, RlirErrorCodes.DUPLICATE_BLOCK,
                )
            if block.label in seen_blocks:
                raise self._error(
                    f"block {block.label!r} is defined twice", block.pos,
                    RlirErrorCodes.DUPLICATE_BLOCK,
                )
            seen_blocks.add(block.label)
            b.block(block.label, in_scope=block.scope, conditional=block.conditional)
            for statement in block.statements:
                self._statement(b, block.label, statement, labels, edges)

        known_blocks = seen_blocks | {"entry", *SPECIAL_BLOCKS}
        try:
            for edge in edges:
                self._check_block(edge.src, known_blocks, edge.pos)
                self._check_block(edge.dst, known_blocks, edge.pos)
                b.edge(edge.src, edge.dst, edge.kind, edge.exception_type)
            for loop in spec.loops:
                self._loop(b, loop, labels, known_blocks)
            for fact in spec.facts:
                self._fact(b, fact, labels, known_blocks)
        except MustCallShimsError as exc:
            raise self._error(str(exc), spec.pos) from exc
        b.build()
        logger.debug("built %s: %d block(s)", b.routine.name, len(b.cfg.blocks))

    def _check_block(self, label: str, known, pos: int) -> None:
        if label not in known:
            raise self._error(f"undefined block {label!r}", pos, RlirErrorCodes.UNDEFINED_BLOCK)

    def _node(self, label: str, labels: Dict[str, Node], pos: int) -> Node:
        try:
            return labels[label]
        except KeyError:
            raise self._error(
                f"undefined node label {label!r}", pos, RlirErrorCodes.UNDEFINED_LABEL
            ) from None

    def _statement(
        self,
        b: RoutineBuilder,
        block: str,
        st: Statement,
        labels: Dict[str, Node],
        edges: List[EdgeSpec],
    ) -> None:
        data = st.data
        if st.kind in ("goto", "branch", "throws"):
            if st.label is not None:
                raise self._error(f"control transfer cannot be labeled ({st.label!r})", st.pos)
            if st.kind == "goto":
                edges.append(EdgeSpec(block, data["target"], pos=st.pos))
            elif st.kind == "branch":
                edges.append(EdgeSpec(block, data["then"], "then", pos=st.pos))
                edges.append(EdgeSpec(block, data["else"], "else", pos=st.pos))
            else:
                edges.append(EdgeSpec(
                    block, data["target"], "exception", data["exception_type"], pos=st.pos,
                ))
            return

        if st.label is not None and st.label in labels:
            raise self._error(
                f"node label {st.label!r} is used twice", st.pos, RlirErrorCodes.DUPLICATE_LABEL
            )
        if st.kind == "decl":
            node = b.decl(
                data["name"], data["type_name"], data["ownership"],
                value=data["value"], label=st.label, line=st.line,
            )
        elif st.kind == "return":
            node = b.ret(data["value"], label=st.label, line=st.line)
        elif st.kind == "new":
            node = b.new(
                data["type_name"], data["args"], result=data["result"],
                label=st.label, line=st.line,
            )
        elif st.kind == "call":
            result = data["result"]
            node = b.call(
                data["method"], receiver=data["receiver"], args=data["args"],
                result=True if result is None else result,
                super_call=data["super"], label=st.label, line=st.line,
            )
        else:
            node = b.assign(data["target"], data["value"], label=st.label, line=st.line)
        if st.label is not None:
            labels[st.label] = node

    def _loop(self, b: RoutineBuilder, loop: LoopSpec, labels, known) -> None:
        for label in (loop.condition, loop.body, loop.update):
            self._check_block(label, known, loop.pos)
        site = self._node(loop.site, labels, loop.pos) if loop.site else None
        b.loop(
            loop.kind, loop.collection, loop.element,
            condition=loop.condition, body=loop.body, update=loop.update,
            site=site, methods=loop.methods, name=loop.name,
        )

    def _point(self, point, labels, known, pos: int) -> Optional[str]:
        if point is None:
            return None
        if point[0] == "edge":
            _, src, dst = point
            self._check_block(src, known, pos)
            self._check_block(dst, known, pos)
            return f"edge:{src}->{dst}"
        where, label = point
        self._node(label, labels, pos)
        return f"{where}:{label}"

    def _fact(self, b: RoutineBuilder, fact: FactSpec, labels, known) -> None:
        at = self._point(fact.point, labels, known, fact.pos)
        value = fact.value
        if fact.kind == "mustcall":
            if value == FACT_NONE:
                raise self._error("'none' only applies to mustcall_elements", fact.pos)
            b.must_call(fact.ref, UNKNOWN if value is None else value, at)
            return
        if fact.kind == "mustcall_elements":
            if value is None:
                raise self._error("element must-call sets cannot be unknown", fact.pos)
            b.must_call_on_elements(fact.ref, None if value == FACT_NONE else value, at)
            return
        if value is None or value == FACT_NONE:
            raise self._error(f"{fact.kind} facts need a method list", fact.pos)
        if fact.kind == "called":
            b.called(fact.ref, value, at)
        else:
            b.called_on_elements(fact.ref, value, at)


# ═══════════════════════════════════════════════════════════════════
#  PART 4 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def parse_tree(text: str, filename: str = "<string>") -> ProgramSpec:
    """Parse *text* into declaration records without building anything."""
    try:
        tree = RLIR_GRAMMAR.parse(text)
    except ParseError as exc:
        raise RlirSyntaxError.from_parse_error(exc, text, filename) from exc
    return RlirTreeBuilder(text, filename).visit(tree)


def parse_rlir(text: str, filename: str = "<string>") -> Program:
    """Parse an IR source string into a :class:`Program`."""
    spec = parse_tree(text, filename)
    return ProgramAssembler(text, filename).assemble(spec)


def load_rlir_file(path: Union[str, Path]) -> Program:
    """Read and parse an ``.rlir`` file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    logger.debug("loading %s (%d bytes)", path, len(text))
    return parse_rlir(text, str(path))


__all__ = [
    "RlirTreeBuilder",
    "ProgramAssembler",
    "parse_tree",
    "parse_rlir",
    "load_rlir_file",
]
