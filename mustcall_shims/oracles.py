"""
mustcall_shims.oracles
======================

Adapters between the obligation analysis and the two external fact
providers:

* the **must-call oracle** answers "which methods must eventually be
  called on this value?" (possibly *unknown*), and, for collections,
  "which methods must be called on every element?" (``None`` when the
  reference holds no ownership of the elements);
* the **called-methods oracle** answers "which methods have definitely
  been called on this value (or on every element of this collection)?".

Both are queried at a :class:`ProgramPoint`.  The analysis never talks to
an oracle directly; it goes through per-point *stores* obtained from a
:class:`StoreCache`, which memoizes the store after each node and is
cleared between routines.

The table-backed implementations are what the textual IR and the tests
use: facts are keyed by reference text and, optionally, by point key.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

from .tac import Node, Reference

logger = logging.getLogger(__name__)


# ===========================================================================
# PROGRAM POINTS
# ===========================================================================


class PointKind(enum.Enum):
    AFTER = "after"
    BEFORE = "before"
    EDGE = "edge"


@dataclass(frozen=True)
class ProgramPoint:
    """A point between two nodes, or on a CFG edge leaving an empty block."""

    kind: PointKind
    label: str
    target: str = ""

    @classmethod
    def after(cls, node: Node) -> "ProgramPoint":
        return cls(PointKind.AFTER, node.label)

    @classmethod
    def before(cls, node: Node) -> "ProgramPoint":
        return cls(PointKind.BEFORE, node.label)

    @classmethod
    def edge(cls, block, successor) -> "ProgramPoint":
        return cls(PointKind.EDGE, block.label, successor.label)

    @property
    def key(self) -> str:
        if self.kind is PointKind.EDGE:
            return f"edge:{self.label}->{self.target}"
        return f"{self.kind.value}:{self.label}"

    def __str__(self) -> str:
        return self.key


# ===========================================================================
# MUST-CALL FACTS
# ===========================================================================


@dataclass(frozen=True)
class Known:
    """A determined must-call set (possibly empty)."""

    methods: FrozenSet[str] = frozenset()


class _Unknown:
    """The must-call set cannot be determined."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()

MustCallFact = Union[Known, _Unknown]


def known(methods: Iterable[str] = ()) -> Known:
    return Known(frozenset(methods))


# ===========================================================================
# ORACLE PROTOCOLS
# ===========================================================================


@runtime_checkable
class MustCallOracle(Protocol):
    def required_methods(
        self, reference: Reference, point: ProgramPoint
    ) -> Optional[MustCallFact]:
        """Must-call fact for *reference*, or ``None`` when the oracle has
        no fact and the declared type should be consulted."""
        ...

    def required_methods_on_elements(
        self, reference: Reference, point: ProgramPoint
    ) -> Optional[FrozenSet[str]]:
        """Per-element requirement, ``None`` when *reference* holds no
        ownership of the elements."""
        ...


@runtime_checkable
class CalledMethodsOracle(Protocol):
    def called_methods(
        self, reference: Reference, point: ProgramPoint
    ) -> FrozenSet[str]:
        ...

    def called_methods_on_elements(
        self, reference: Reference, point: ProgramPoint
    ) -> FrozenSet[str]:
        ...


# ===========================================================================
# TABLE-BACKED ORACLES
# ===========================================================================

_ANYWHERE = "*"
_MISSING = object()


class FactTable:
    """(reference text, point key) -> value, with ``"*"`` as the
    point-independent fallback."""

    def __init__(self) -> None:
        self._facts: Dict[Tuple[str, str], object] = {}

    def set(self, reference: Union[str, Reference], value, at: Optional[str] = None) -> None:
        text = reference.text if isinstance(reference, Reference) else str(reference)
        self._facts[(text, at or _ANYWHERE)] = value

    def lookup(self, reference: Reference, point: ProgramPoint):
        value = self._facts.get((reference.text, point.key), _MISSING)
        if value is _MISSING:
            value = self._facts.get((reference.text, _ANYWHERE), _MISSING)
        return value

    def __len__(self) -> int:
        return len(self._facts)


class TableMustCallOracle:
    """Must-call oracle answering from explicit tables.

    ``required`` maps to :class:`Known` or :data:`UNKNOWN`; missing entries
    return ``None`` so that declared types are used.  ``on_elements`` maps
    to a method set or ``None`` (no ownership); missing entries mean an
    empty requirement.
    """

    def __init__(self) -> None:
        self.required = FactTable()
        self.on_elements = FactTable()

    def set_required(self, reference, methods, at: Optional[str] = None) -> None:
        fact = methods if methods is UNKNOWN else known(methods)
        self.required.set(reference, fact, at)

    def set_on_elements(self, reference, methods, at: Optional[str] = None) -> None:
        value = None if methods is None else frozenset(methods)
        self.on_elements.set(reference, value, at)

    def required_methods(self, reference, point):
        value = self.required.lookup(reference, point)
        return None if value is _MISSING else value

    def required_methods_on_elements(self, reference, point):
        value = self.on_elements.lookup(reference, point)
        return frozenset() if value is _MISSING else value


class TableCalledMethodsOracle:
    """Called-methods oracle answering from explicit tables; missing
    entries mean nothing has been called."""

    def __init__(self) -> None:
        self.called = FactTable()
        self.on_elements = FactTable()

    def set_called(self, reference, methods, at: Optional[str] = None) -> None:
        self.called.set(reference, frozenset(methods), at)

    def set_on_elements(self, reference, methods, at: Optional[str] = None) -> None:
        self.on_elements.set(reference, frozenset(methods), at)

    def called_methods(self, reference, point):
        value = self.called.lookup(reference, point)
        return frozenset() if value is _MISSING else value

    def called_methods_on_elements(self, reference, point):
        value = self.on_elements.lookup(reference, point)
        return frozenset() if value is _MISSING else value


# ===========================================================================
# STORES AND CACHES
# ===========================================================================


class CalledMethodsStore:
    """Called-methods facts pinned to one program point."""

    def __init__(self, oracle: CalledMethodsOracle, point: ProgramPoint) -> None:
        self.oracle = oracle
        self.point = point
        self._memo: Dict[Tuple[str, Reference], FrozenSet[str]] = {}

    def called_methods(self, reference: Reference) -> FrozenSet[str]:
        key = ("cm", reference)
        if key not in self._memo:
            self._memo[key] = frozenset(self.oracle.called_methods(reference, self.point))
        return self._memo[key]

    def called_methods_on_elements(self, reference: Reference) -> FrozenSet[str]:
        key = ("cmoe", reference)
        if key not in self._memo:
            self._memo[key] = frozenset(
                self.oracle.called_methods_on_elements(reference, self.point)
            )
        return self._memo[key]

    def __repr__(self) -> str:
        return f"CalledMethodsStore({self.point})"


class MustCallStore:
    """Must-call facts pinned to one program point."""

    def __init__(self, oracle: MustCallOracle, point: ProgramPoint) -> None:
        self.oracle = oracle
        self.point = point
        self._memo: Dict[Tuple[str, Reference], object] = {}

    def required_methods(self, reference: Reference) -> Optional[MustCallFact]:
        key = ("mc", reference)
        if key not in self._memo:
            self._memo[key] = self.oracle.required_methods(reference, self.point)
        return self._memo[key]

    def required_methods_on_elements(self, reference: Reference) -> Optional[FrozenSet[str]]:
        key = ("mcoe", reference)
        if key not in self._memo:
            self._memo[key] = self.oracle.required_methods_on_elements(reference, self.point)
        return self._memo[key]

    def __repr__(self) -> str:
        return f"MustCallStore({self.point})"


class StoreCache:
    """Per-routine cache of the stores after each node.

    The "store after node" for each oracle is requested repeatedly (once
    per successor edge and per obligation) and is therefore memoized by
    node; :meth:`clear` must be called when moving to another routine.
    """

    def __init__(self, must_call: MustCallOracle, called_methods: CalledMethodsOracle) -> None:
        self.must_call = must_call
        self.called = called_methods
        self._cm_after: Dict[int, CalledMethodsStore] = {}
        self._mc_after: Dict[int, MustCallStore] = {}

    def called_after(self, node: Node) -> CalledMethodsStore:
        store = self._cm_after.get(node.id)
        if store is None:
            store = CalledMethodsStore(self.called, ProgramPoint.after(node))
            self._cm_after[node.id] = store
        return store

    def must_call_after(self, node: Node) -> MustCallStore:
        store = self._mc_after.get(node.id)
        if store is None:
            store = MustCallStore(self.must_call, ProgramPoint.after(node))
            self._mc_after[node.id] = store
        return store

    def called_before(self, node: Node) -> CalledMethodsStore:
        return CalledMethodsStore(self.called, ProgramPoint.before(node))

    def must_call_before(self, node: Node) -> MustCallStore:
        return MustCallStore(self.must_call, ProgramPoint.before(node))

    def called_on_edge(self, block, successor) -> CalledMethodsStore:
        return CalledMethodsStore(self.called, ProgramPoint.edge(block, successor))

    def must_call_on_edge(self, block, successor) -> MustCallStore:
        return MustCallStore(self.must_call, ProgramPoint.edge(block, successor))

    def clear(self) -> None:
        self._cm_after.clear()
        self._mc_after.clear()

    def __len__(self) -> int:
        return len(self._cm_after) + len(self._mc_after)


__all__ = [
    "PointKind",
    "ProgramPoint",
    "Known",
    "UNKNOWN",
    "MustCallFact",
    "known",
    "MustCallOracle",
    "CalledMethodsOracle",
    "FactTable",
    "TableMustCallOracle",
    "TableCalledMethodsOracle",
    "CalledMethodsStore",
    "MustCallStore",
    "StoreCache",
]
