"""
mustcall_shims.tac
==================

Three-address form consumed by the obligation analysis.

A routine body is a sequence of basic blocks (see :mod:`ctrlflow_graph`),
each holding a list of *nodes*.  Every node performs at most one
interesting operation: an assignment, a method invocation, an object
creation, a local declaration or a return.  Intermediate values live in
compiler temporaries whose names start with ``$``.

Public API
----------
    Reference             - base class of reference expressions
    LocalRef              - local variable, parameter or temporary
    ThisRef               - the receiver of the enclosing routine
    FieldRef              - ``receiver.field``
    ElementRef            - ``array[index]`` or ``collection[index]``
    ConstRef              - ``null`` and literals
    parse_reference       - turn ``"this.socks[i]"`` into a Reference tree
    Node                  - base class of three-address nodes
    VarDeclNode, AssignmentNode, InvocationNode, ObjectCreationNode,
    ReturnNode            - concrete node kinds
    reset_tac_counter     - deterministic node ids for tests
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .declarations import MethodSig


TEMP_PREFIX = "$"


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


class Reference:
    """A side-effect-free expression denoting a storage location."""

    __slots__ = ()

    @property
    def text(self) -> str:
        raise NotImplementedError

    @property
    def scope_name(self) -> str:
        """Name of the variable whose lifetime bounds this reference."""
        raise NotImplementedError

    @property
    def is_identifier(self) -> bool:
        return False

    @property
    def is_field(self) -> bool:
        return False

    @property
    def is_temp(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class LocalRef(Reference):
    name: str

    @property
    def text(self) -> str:
        return self.name

    @property
    def scope_name(self) -> str:
        return self.name

    @property
    def is_identifier(self) -> bool:
        return True

    @property
    def is_temp(self) -> bool:
        return self.name.startswith(TEMP_PREFIX)


@dataclass(frozen=True)
class ThisRef(Reference):

    @property
    def text(self) -> str:
        return "this"

    @property
    def scope_name(self) -> str:
        return "this"

    @property
    def is_identifier(self) -> bool:
        return True


@dataclass(frozen=True)
class FieldRef(Reference):
    receiver: Reference
    field_name: str

    @property
    def text(self) -> str:
        return f"{self.receiver.text}.{self.field_name}"

    @property
    def scope_name(self) -> str:
        return self.receiver.scope_name

    @property
    def is_field(self) -> bool:
        return True

    @property
    def on_this(self) -> bool:
        return isinstance(self.receiver, ThisRef)


@dataclass(frozen=True)
class ElementRef(Reference):
    collection: Reference
    index: Reference

    @property
    def text(self) -> str:
        return f"{self.collection.text}[{self.index.text}]"

    @property
    def scope_name(self) -> str:
        return self.collection.scope_name


@dataclass(frozen=True)
class ConstRef(Reference):
    literal: str

    @property
    def text(self) -> str:
        return self.literal

    @property
    def scope_name(self) -> str:
        return "this"

    @property
    def is_null(self) -> bool:
        return self.literal == "null"


THIS = ThisRef()
NULL = ConstRef("null")


_REF_TOKEN = re.compile(
    r"\s*(?:(?P<name>[A-Za-z_$][A-Za-z0-9_$]*)|(?P<num>-?[0-9]+)"
    r"|(?P<punct>[.\[\]]))"
)


def _tokenize_reference(text: str) -> List[str]:
    tokens: List[str] = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        m = _REF_TOKEN.match(stripped, pos)
        if m is None:
            raise ValueError(f"invalid reference expression: {text!r}")
        tokens.append(m.group(m.lastgroup))
        pos = m.end()
    return tokens


def parse_reference(text: str) -> Reference:
    """Parse the textual form of a reference.

    >>> parse_reference("this.socks[i]").text
    'this.socks[i]'
    """
    tokens = _tokenize_reference(text)
    if not tokens:
        raise ValueError("empty reference expression")
    ref, pos = _parse_ref(tokens, 0, text)
    if pos != len(tokens):
        raise ValueError(f"trailing input in reference expression: {text!r}")
    return ref


def _parse_ref(tokens: List[str], pos: int, text: str) -> Tuple[Reference, int]:
    head = tokens[pos]
    if head in (".", "[", "]"):
        raise ValueError(f"invalid reference expression: {text!r}")
    if head == "this":
        ref: Reference = THIS
    elif head == "null" or head[0].isdigit() or head[0] == "-":
        ref = ConstRef(head)
    else:
        ref = LocalRef(head)
    pos += 1
    while pos < len(tokens):
        tok = tokens[pos]
        if tok == ".":
            if pos + 1 >= len(tokens):
                raise ValueError(f"dangling '.' in {text!r}")
            ref = FieldRef(ref, tokens[pos + 1])
            pos += 2
        elif tok == "[":
            index, pos = _parse_ref(tokens, pos + 1, text)
            if pos >= len(tokens) or tokens[pos] != "]":
                raise ValueError(f"unbalanced '[' in {text!r}")
            ref = ElementRef(ref, index)
            pos += 1
        else:
            break
    return ref, pos


def as_reference(value) -> Reference:
    """Accept either a Reference or its textual form."""
    if isinstance(value, Reference):
        return value
    return parse_reference(str(value))


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

_next_tac_id: int = 0


def _fresh_tac_id() -> int:
    global _next_tac_id
    nid = _next_tac_id
    _next_tac_id += 1
    return nid


def reset_tac_counter() -> None:
    """Reset the global node-id counter (useful for deterministic tests)."""
    global _next_tac_id
    _next_tac_id = 0


class Node:
    """A three-address node.

    Attributes
    ----------
    id : int
        Unique (per-process) identifier.
    label : str
        Routine-unique label; program points are keyed by it.  Unlabeled
        nodes get ``#<id>``, which no textual label can collide with.
    line, column : int
        Source position used for diagnostics.
    """

    kind = "node"

    def __init__(
        self,
        label: Optional[str] = None,
        line: int = 0,
        column: int = 0,
    ) -> None:
        self.id: int = _fresh_tac_id()
        self.label: str = label or f"#{self.id}"
        self.line = line
        self.column = column

    @property
    def result(self) -> Optional[LocalRef]:
        """Temporary holding the value produced by this node, if any."""
        return None

    def text(self) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.label}: {self.text()})"

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other) -> bool:
        if isinstance(other, Node):
            return self.id == other.id
        return NotImplemented


class VarDeclNode(Node):
    """Declaration of a local variable; initializers are separate
    :class:`AssignmentNode` instances flagged ``is_declaration``."""

    kind = "decl"

    def __init__(self, name: str, **kw) -> None:
        super().__init__(**kw)
        self.name = name
        self.variable = LocalRef(name)

    def text(self) -> str:
        return f"decl {self.name}"


class AssignmentNode(Node):
    kind = "assign"

    def __init__(
        self,
        target: Reference,
        value: Reference,
        is_declaration: bool = False,
        **kw,
    ) -> None:
        super().__init__(**kw)
        self.target = target
        self.value = value
        self.is_declaration = is_declaration

    def text(self) -> str:
        return f"{self.target.text} = {self.value.text}"


class InvocationNode(Node):
    """Method call.  ``receiver`` is ``None`` for static calls.

    ``is_constructor_call`` marks ``super(...)`` / ``this(...)`` calls
    made from a constructor.
    """

    kind = "call"

    def __init__(
        self,
        method: "MethodSig",
        receiver: Optional[Reference] = None,
        args: Sequence[Reference] = (),
        result: Optional[LocalRef] = None,
        is_constructor_call: bool = False,
        **kw,
    ) -> None:
        super().__init__(**kw)
        self.method = method
        self.receiver = receiver
        self.args: Tuple[Reference, ...] = tuple(args)
        self._result = result
        self.is_constructor_call = is_constructor_call

    @property
    def result(self) -> Optional[LocalRef]:
        return self._result

    def text(self) -> str:
        args = ", ".join(a.text for a in self.args)
        prefix = f"{self._result.text} = " if self._result else ""
        if self.is_constructor_call:
            return f"{prefix}super {self.method.qualified_name}({args})"
        on = f".{self.method.name}" if self.receiver is not None else self.method.qualified_name
        recv = self.receiver.text if self.receiver is not None else ""
        return f"{prefix}{recv}{on}({args})"


class ObjectCreationNode(Node):
    kind = "new"

    def __init__(
        self,
        type_name: str,
        constructor: "MethodSig",
        args: Sequence[Reference] = (),
        result: Optional[LocalRef] = None,
        **kw,
    ) -> None:
        super().__init__(**kw)
        self.type_name = type_name
        self.method = constructor
        self.args: Tuple[Reference, ...] = tuple(args)
        self._result = result

    @property
    def receiver(self) -> Optional[Reference]:
        return None

    @property
    def result(self) -> Optional[LocalRef]:
        return self._result

    def text(self) -> str:
        args = ", ".join(a.text for a in self.args)
        prefix = f"{self._result.text} = " if self._result else ""
        return f"{prefix}new {self.type_name}({args})"


class ReturnNode(Node):
    kind = "return"

    def __init__(self, value: Optional[Reference] = None, **kw) -> None:
        super().__init__(**kw)
        self.value = value

    def text(self) -> str:
        if self.value is None:
            return "return"
        return f"return {self.value.text}"


__all__ = [
    "TEMP_PREFIX",
    "Reference",
    "LocalRef",
    "ThisRef",
    "FieldRef",
    "ElementRef",
    "ConstRef",
    "THIS",
    "NULL",
    "parse_reference",
    "as_reference",
    "Node",
    "VarDeclNode",
    "AssignmentNode",
    "InvocationNode",
    "ObjectCreationNode",
    "ReturnNode",
    "reset_tac_counter",
]
