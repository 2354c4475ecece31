"""
mustcall_shims.declarations
===========================

Declaration and annotation surface: the ownership facts attached to
parameters, fields, locals and return values, the static must-call facts
of types, method signatures, classes, routines and the whole program.

Public API
----------
    Ownership        - ownership annotation on a declaration
    TypeKind         - shape of a type (plain, array, collection, ...)
    TypeDecl         - static facts about one type
    TypeTable        - name -> TypeDecl, with synthesized fallbacks
    ParamDecl, FieldDecl, LocalDecl
    MethodSig        - callee signature (annotations included)
    ClassDecl        - fields of a class
    Routine          - an analyzable routine: signature + CFG + oracles
    Program          - everything loaded from one compilation unit
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from .ctrlflow_graph import CFG
from .loops import LoopContext
from .oracles import TableCalledMethodsOracle, TableMustCallOracle
from .tac import (
    ElementRef,
    FieldRef,
    InvocationNode,
    LocalRef,
    Node,
    ObjectCreationNode,
    Reference,
    ThisRef,
)


class Ownership(enum.Enum):
    """Ownership annotation carried by a declaration."""

    NONE = "none"
    OWNING = "owning"
    NOT_OWNING = "notowning"
    OWNING_COLLECTION = "owningcollection"
    COLLECTION_ALIAS = "collectionalias"
    MUST_CALL_ALIAS = "mustcallalias"


class TypeKind(enum.Enum):
    PLAIN = "plain"
    PRIMITIVE = "primitive"
    VOID = "void"
    ARRAY = "array"
    COLLECTION = "collection"
    ITERATOR = "iterator"


PRIMITIVE_TYPES = frozenset({
    "boolean", "byte", "char", "short", "int", "long", "float", "double",
})


@dataclass(frozen=True)
class TypeDecl:
    """Static facts about a type.

    ``must_call`` is ``None`` when the must-call set of the type cannot be
    determined (for instance an unbounded type variable).
    """

    name: str
    kind: TypeKind = TypeKind.PLAIN
    must_call: Optional[FrozenSet[str]] = frozenset()
    element_type: Optional[str] = None
    dimensions: int = 1

    @property
    def is_collection_like(self) -> bool:
        return self.kind in (TypeKind.ARRAY, TypeKind.COLLECTION)

    @property
    def is_iterator(self) -> bool:
        return self.kind is TypeKind.ITERATOR

    @property
    def is_void_or_primitive(self) -> bool:
        return self.kind in (TypeKind.VOID, TypeKind.PRIMITIVE)


class TypeTable:
    """Registry of declared types.

    Undeclared names are synthesized: ``T[]`` becomes an array of ``T``,
    primitive names and ``void`` get their kinds, anything else is a plain
    type without must-call obligations.
    """

    def __init__(self, types: Iterable[TypeDecl] = ()) -> None:
        self._types: Dict[str, TypeDecl] = {}
        for t in types:
            self.define(t)

    def define(self, decl: TypeDecl) -> TypeDecl:
        self._types[decl.name] = decl
        return decl

    def __contains__(self, name: str) -> bool:
        return name in self._types

    def get(self, name: Optional[str]) -> TypeDecl:
        if not name:
            return TypeDecl("void", kind=TypeKind.VOID)
        decl = self._types.get(name)
        if decl is not None:
            return decl
        if name.endswith("[]"):
            base = name
            dims = 0
            while base.endswith("[]"):
                base = base[:-2]
                dims += 1
            return TypeDecl(
                name, kind=TypeKind.ARRAY, element_type=name[:-2],
                dimensions=dims,
            )
        if name == "void":
            return TypeDecl(name, kind=TypeKind.VOID)
        if name in PRIMITIVE_TYPES:
            return TypeDecl(name, kind=TypeKind.PRIMITIVE)
        return TypeDecl(name)

    def must_call(self, name: Optional[str]) -> Optional[FrozenSet[str]]:
        return self.get(name).must_call

    def element_must_call(self, name: Optional[str]) -> Optional[FrozenSet[str]]:
        """Must-call set of the elements of a collection/array/iterator type."""
        decl = self.get(name)
        if decl.element_type is None:
            return frozenset()
        return self.get(decl.element_type).must_call

    def has_must_call_elements(self, name: Optional[str]) -> bool:
        mc = self.element_must_call(name)
        return mc is None or bool(mc)

    def names(self) -> List[str]:
        return sorted(self._types)


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParamDecl:
    name: str
    type_name: str
    ownership: Ownership = Ownership.NONE

    @property
    def is_must_call_alias(self) -> bool:
        return self.ownership is Ownership.MUST_CALL_ALIAS


@dataclass(frozen=True)
class FieldDecl:
    name: str
    type_name: str
    ownership: Ownership = Ownership.NONE
    final: bool = False
    static: bool = False
    line: int = 0

    @property
    def is_owning(self) -> bool:
        return self.ownership is Ownership.OWNING

    @property
    def is_owning_collection(self) -> bool:
        return self.ownership is Ownership.OWNING_COLLECTION


@dataclass(frozen=True)
class LocalDecl:
    name: str
    type_name: str
    ownership: Ownership = Ownership.NONE
    line: int = 0

    @property
    def is_must_call_alias(self) -> bool:
        return self.ownership is Ownership.MUST_CALL_ALIAS


Element = Union[ParamDecl, FieldDecl, LocalDecl]


@dataclass(frozen=True)
class MethodSig:
    """Signature of a callee, including its ownership annotations."""

    owner: str
    name: str
    params: Tuple[ParamDecl, ...] = ()
    return_type: str = "void"
    return_ownership: Ownership = Ownership.NONE
    returns_this: bool = False
    creates_must_call_for: Tuple[str, ...] = ()
    is_constructor: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"

    @property
    def returns_must_call_alias(self) -> bool:
        return self.return_ownership is Ownership.MUST_CALL_ALIAS

    @property
    def has_must_call_alias_params(self) -> bool:
        return any(p.is_must_call_alias for p in self.params)


@dataclass
class ClassDecl:
    name: str
    fields: Dict[str, FieldDecl] = field(default_factory=dict)
    file: str = ""

    def add_field(self, decl: FieldDecl) -> FieldDecl:
        self.fields[decl.name] = decl
        return decl

    def owning_fields(self) -> List[FieldDecl]:
        return [f for f in self.fields.values() if f.is_owning]


# ---------------------------------------------------------------------------
# Routine
# ---------------------------------------------------------------------------


class Routine:
    """An analyzable routine.

    Holds the signature, the enclosing class, the local declarations, the
    CFG and the two oracles answering must-call and called-methods queries
    for this routine body.
    """

    def __init__(
        self,
        sig: MethodSig,
        program: "Program",
        class_decl: Optional[ClassDecl] = None,
        file: str = "",
        line: int = 0,
    ) -> None:
        self.sig = sig
        self.program = program
        self.class_decl = class_decl or program.class_named(sig.owner)
        self.file = file
        self.line = line
        self.locals: Dict[str, LocalDecl] = {}
        self.cfg = CFG(self)
        self.must_call = TableMustCallOracle()
        self.called_methods = TableCalledMethodsOracle()
        self.suppressed_ids: Set[str] = set()
        self._temp_origin: Optional[Dict[str, Node]] = None

    @property
    def name(self) -> str:
        return self.sig.qualified_name

    @property
    def is_constructor(self) -> bool:
        return self.sig.is_constructor

    @property
    def types(self) -> TypeTable:
        return self.program.types

    def add_local(self, decl: LocalDecl) -> LocalDecl:
        self.locals[decl.name] = decl
        return decl

    def param(self, name: str) -> Optional[ParamDecl]:
        for p in self.sig.params:
            if p.name == name:
                return p
        return None

    def creates_must_call_for(self, target: str) -> bool:
        return target in self.sig.creates_must_call_for

    # ----- reference resolution ---------------------------------------------

    def temp_origin(self, ref: Reference) -> Optional[Node]:
        """The node whose result is stored in temporary *ref*."""
        if self._temp_origin is None:
            self._temp_origin = {}
            for node in self.cfg.nodes():
                if node.result is not None:
                    self._temp_origin[node.result.name] = node
        if isinstance(ref, LocalRef):
            return self._temp_origin.get(ref.name)
        return None

    def invalidate(self) -> None:
        self._temp_origin = None

    def element_for(self, ref: Reference) -> Optional[Element]:
        """The declaration denoted by *ref*, or ``None`` for temporaries
        and element accesses."""
        if isinstance(ref, LocalRef):
            if ref.name in self.locals:
                return self.locals[ref.name]
            return self.param(ref.name)
        if isinstance(ref, FieldRef):
            owner = self._class_of(ref.receiver)
            if owner is not None:
                return owner.fields.get(ref.field_name)
        return None

    def field_for(self, ref: Reference) -> Optional[FieldDecl]:
        element = self.element_for(ref)
        return element if isinstance(element, FieldDecl) else None

    def _class_of(self, ref: Reference) -> Optional[ClassDecl]:
        if isinstance(ref, ThisRef):
            return self.class_decl
        type_name = self.type_name_of(ref)
        if type_name is None:
            return None
        return self.program.classes.get(type_name)

    def type_name_of(self, ref: Reference) -> Optional[str]:
        if isinstance(ref, ThisRef):
            return self.class_decl.name if self.class_decl else None
        if isinstance(ref, ElementRef):
            coll = self.type_name_of(ref.collection)
            if coll is None:
                return None
            return self.types.get(coll).element_type
        element = self.element_for(ref)
        if element is not None:
            return element.type_name
        origin = self.temp_origin(ref)
        if isinstance(origin, ObjectCreationNode):
            return origin.type_name
        if isinstance(origin, InvocationNode):
            return origin.method.return_type
        return None

    def type_of(self, ref: Reference) -> TypeDecl:
        return self.types.get(self.type_name_of(ref))

    def ownership_of(self, ref: Reference) -> Ownership:
        element = self.element_for(ref)
        if element is not None:
            return element.ownership
        origin = self.temp_origin(ref)
        if isinstance(origin, InvocationNode):
            return origin.method.return_ownership
        return Ownership.NONE

    def is_owning_collection(self, ref: Reference) -> bool:
        """Is *ref* declared (or returned) as an owning collection?"""
        if isinstance(ref, ElementRef):
            return False
        return self.ownership_of(ref) is Ownership.OWNING_COLLECTION

    def is_read_only_view(self, ref: Reference) -> bool:
        """A collection reference that sees must-call elements but does not
        own them."""
        if isinstance(ref, ElementRef) or self.is_owning_collection(ref):
            return False
        decl = self.type_of(ref)
        if not decl.is_collection_like:
            return False
        return self.types.has_must_call_elements(decl.name)

    def is_resource_collection(self, ref: Reference) -> bool:
        return self.is_owning_collection(ref) or self.is_read_only_view(ref)

    def __repr__(self) -> str:
        return f"Routine({self.name!r})"


# ---------------------------------------------------------------------------
# Program
# ---------------------------------------------------------------------------


class Program:
    """All declarations and routines of one compilation unit."""

    def __init__(self, file: str = "") -> None:
        self.file = file
        self.types = TypeTable()
        self.classes: Dict[str, ClassDecl] = {}
        self.methods: Dict[str, MethodSig] = {}
        self.routines: List[Routine] = []
        self.loops = LoopContext()

    def class_named(self, name: str) -> ClassDecl:
        if name not in self.classes:
            self.classes[name] = ClassDecl(name, file=self.file)
        return self.classes[name]

    def declare_method(self, sig: MethodSig) -> MethodSig:
        self.methods[sig.qualified_name] = sig
        return sig

    def method(self, qualified_name: str) -> MethodSig:
        """Look up a declared method; undeclared ones get a plain signature."""
        sig = self.methods.get(qualified_name)
        if sig is not None:
            return sig
        owner, _, name = qualified_name.rpartition(".")
        return MethodSig(
            owner=owner,
            name=name,
            is_constructor=(name == "<init>"),
            return_type=owner if name == "<init>" else "void",
        )

    def constructor(self, type_name: str) -> MethodSig:
        return self.method(f"{type_name}.<init>")

    def add_routine(self, routine: Routine) -> Routine:
        self.routines.append(routine)
        return routine

    def routine(self, name: str) -> Optional[Routine]:
        for r in self.routines:
            if r.name == name or r.sig.name == name:
                return r
        return None

    def __repr__(self) -> str:
        return (
            f"Program(file={self.file!r}, classes={len(self.classes)}, "
            f"routines={len(self.routines)})"
        )


__all__ = [
    "Ownership",
    "TypeKind",
    "TypeDecl",
    "TypeTable",
    "PRIMITIVE_TYPES",
    "ParamDecl",
    "FieldDecl",
    "LocalDecl",
    "Element",
    "MethodSig",
    "ClassDecl",
    "Routine",
    "Program",
]
