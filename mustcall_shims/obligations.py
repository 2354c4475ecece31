"""
mustcall_shims.obligations
==========================

The dataflow fact of the must-call consistency analysis.

An :class:`Obligation` says: *one of these aliases must have the required
methods called on it before the analyzed routine exits in one of these
ways*.  A fact at a program point is a set of obligations.  The analysis
never joins facts; distinct sets reaching a block are analyzed separately
(see :mod:`dataflow_engine`).

Variants
--------
``PlainObligation``
    A single scalar resource.
``CollectionObligation``
    An owning collection or array; discharge concerns every element.
    Carries the aggregate per-element ``requirement``.
``IteratorObligation``
    An iterator over a collection that may hold obligation-bearing
    elements.
``IteratorElementObligation``
    The element most recently produced by ``next()``; it is only checked
    once the iterator's ``remove()`` takes it out of the collection.

Iterator variants do not point at each other.  They carry an
``iterator_id`` into the per-routine :class:`IteratorArena`, which holds
the element bookkeeping of each iterator.  The element a path may
``remove()`` is part of the iterator obligation itself.

Invariants
----------
* alias sets are non-empty; an obligation whose aliases all disappear is
  dropped by the caller, never stored;
* an alias belongs to at most one live obligation of a fact;
* every alias is owning.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
)

from .errors import MustCallShimsError
from .tac import Node, Reference

logger = logging.getLogger(__name__)


class MethodExitKind(enum.Enum):
    """The two ways a routine can be left."""

    NORMAL_RETURN = "normal return"
    EXCEPTIONAL_EXIT = "exceptional exit"


ALL_EXITS: FrozenSet[MethodExitKind] = frozenset(MethodExitKind)
NORMAL_RETURN_ONLY: FrozenSet[MethodExitKind] = frozenset(
    {MethodExitKind.NORMAL_RETURN}
)


# ---------------------------------------------------------------------------
# ResourceAlias
# ---------------------------------------------------------------------------


class ResourceAlias:
    """A reference through which a pending obligation can be discharged.

    Attributes
    ----------
    reference : Reference
        The expression (possibly a temporary).
    element : declaration or None
        The declared variable/field/parameter denoted by ``reference``.
    site : Node or None
        The node that introduced the alias; used in diagnostics.
    derived_from_must_call_alias : bool
        The alias stems from a ``@MustCallAlias`` parameter.

    Equality and hashing use only ``(reference, site)``.
    """

    __slots__ = ("reference", "element", "site", "derived_from_must_call_alias")

    def __init__(
        self,
        reference: Reference,
        element: Any = None,
        site: Optional[Node] = None,
        derived_from_must_call_alias: bool = False,
    ) -> None:
        self.reference = reference
        self.element = element
        self.site = site
        self.derived_from_must_call_alias = derived_from_must_call_alias

    @property
    def _site_key(self) -> int:
        return self.site.id if self.site is not None else -1

    def text_for_message(self) -> str:
        """The reference if it is an identifier, else the introducing node."""
        if self.reference.is_identifier and not self.reference.is_temp:
            return self.reference.text
        if self.site is not None:
            return self.site.text()
        return self.reference.text

    def sort_key(self):
        return (self._site_key, self.reference.text)

    def __eq__(self, other) -> bool:
        if isinstance(other, ResourceAlias):
            return (
                self.reference == other.reference
                and self._site_key == other._site_key
            )
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.reference, self._site_key))

    def __repr__(self) -> str:
        flag = ", mca" if self.derived_from_must_call_alias else ""
        site = self.site.label if self.site is not None else "-"
        return f"ResourceAlias({self.reference.text!r}@{site}{flag})"


# ---------------------------------------------------------------------------
# Obligation sum type
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Obligation:
    """Base of the obligation variants.  Use :class:`PlainObligation` and
    friends; this class is never instantiated directly."""

    aliases: FrozenSet[ResourceAlias]
    when_to_enforce: FrozenSet[MethodExitKind] = ALL_EXITS

    def __post_init__(self) -> None:
        if not self.aliases:
            raise ValueError("an obligation needs at least one alias")
        object.__setattr__(self, "aliases", frozenset(self.aliases))
        object.__setattr__(self, "when_to_enforce", frozenset(self.when_to_enforce))

    def with_new_aliases(
        self,
        aliases: Iterable[ResourceAlias],
        when_to_enforce: Optional[Iterable[MethodExitKind]] = None,
    ) -> "Obligation":
        """Same variant, same variant data, new aliases/exit conditions."""
        raise NotImplementedError

    # ----- queries ----------------------------------------------------------

    def derived_from_must_call_alias(self) -> bool:
        return any(a.derived_from_must_call_alias for a in self.aliases)

    def alias_for(self, reference: Reference) -> Optional[ResourceAlias]:
        for a in self.aliases:
            if a.reference == reference:
                return a
        return None

    def can_be_satisfied_through(self, reference: Reference) -> bool:
        return self.alias_for(reference) is not None

    def first_alias(self) -> ResourceAlias:
        return min(self.aliases, key=ResourceAlias.sort_key)

    def sorted_aliases(self) -> List[ResourceAlias]:
        return sorted(self.aliases, key=ResourceAlias.sort_key)

    def _enforce(self, when_to_enforce):
        if when_to_enforce is None:
            return self.when_to_enforce
        return frozenset(when_to_enforce)

    def __repr__(self) -> str:
        names = ", ".join(a.reference.text for a in self.sorted_aliases())
        exits = "/".join(sorted(k.name for k in self.when_to_enforce))
        return f"{self.__class__.__name__}({{{names}}}, {exits})"


@dataclass(frozen=True, repr=False)
class PlainObligation(Obligation):

    def with_new_aliases(self, aliases, when_to_enforce=None) -> "PlainObligation":
        return PlainObligation(frozenset(aliases), self._enforce(when_to_enforce))


@dataclass(frozen=True, repr=False)
class CollectionObligation(Obligation):
    """Obligation of an owning collection: ``requirement`` must be called
    on every element."""

    requirement: FrozenSet[str] = frozenset()

    def with_new_aliases(self, aliases, when_to_enforce=None) -> "CollectionObligation":
        return CollectionObligation(
            frozenset(aliases), self._enforce(when_to_enforce), self.requirement
        )

    def with_requirement(self, requirement: Iterable[str]) -> "CollectionObligation":
        return CollectionObligation(
            self.aliases, self.when_to_enforce, frozenset(requirement)
        )

    def __repr__(self) -> str:
        base = super().__repr__()
        return f"{base[:-1]}, requires={sorted(self.requirement)})"


@dataclass(frozen=True, repr=False)
class IteratorObligation(Obligation):
    """Obligation carried by an iterator over a resource collection.

    ``read_only_source`` is set when the iterated collection is a
    read-only view, in which case ``remove()`` is a modification without
    ownership.  ``current`` is the element id of the last ``next()`` on
    this path, or ``None`` when there is no element ``remove()`` may take.
    """

    iterator_id: int = -1
    read_only_source: bool = False
    current: Optional[int] = None

    def with_new_aliases(self, aliases, when_to_enforce=None) -> "IteratorObligation":
        return IteratorObligation(
            frozenset(aliases), self._enforce(when_to_enforce),
            self.iterator_id, self.read_only_source, self.current,
        )

    def with_current(self, element_id: Optional[int]) -> "IteratorObligation":
        return IteratorObligation(
            self.aliases, self.when_to_enforce,
            self.iterator_id, self.read_only_source, element_id,
        )

    def __repr__(self) -> str:
        base = super().__repr__()
        if self.current is None:
            return base
        return f"{base[:-1]}, current={self.current})"


@dataclass(frozen=True, repr=False)
class IteratorElementObligation(Obligation):
    """The value returned by ``next()`` on iterator ``iterator_id``;
    ``element_id`` identifies the producing call."""

    iterator_id: int = -1
    element_id: int = -1

    def with_new_aliases(self, aliases, when_to_enforce=None) -> "IteratorElementObligation":
        return IteratorElementObligation(
            frozenset(aliases), self._enforce(when_to_enforce),
            self.iterator_id, self.element_id,
        )


# ---------------------------------------------------------------------------
# Iterator arena
# ---------------------------------------------------------------------------


@dataclass
class IteratorState:
    """Element bookkeeping of one iterator, shared by every path.

    Which element is pending lives on :class:`IteratorObligation` and so
    follows the path.  ``checked`` holds element ids that ``remove()`` took
    out of the collection and that must therefore be discharged;
    ``left_scope`` holds, per element id, the obligation and program-point
    stores captured when the element went out of scope before its fate
    was known.

    The rules are replayed once per successor edge of a block, so
    :meth:`remove_element` hands out a cached record only once.
    """

    iterator_id: int
    checked: Set[int] = field(default_factory=set)
    left_scope: Dict[int, tuple] = field(default_factory=dict)

    def next_element(self, element_id: int) -> None:
        """A ``next()`` at *element_id* yields a fresh element."""
        self.checked.discard(element_id)
        self.left_scope.pop(element_id, None)

    def remove_element(self, element_id: Optional[int]) -> Optional[tuple]:
        """Mark *element_id* removed; return its cached out-of-scope
        record, if it already left scope."""
        if element_id is None:
            raise MustCallShimsError(
                f"iterator {self.iterator_id}: remove() without a pending element"
            )
        self.checked.add(element_id)
        return self.left_scope.pop(element_id, None)

    def must_check(self, element_id: int) -> bool:
        return element_id in self.checked

    def leave_scope(self, obligation: "IteratorElementObligation", cm_store, mc_store) -> None:
        self.left_scope[obligation.element_id] = (obligation, cm_store, mc_store)


class IteratorArena:
    """Per-routine table of :class:`IteratorState`, indexed by iterator id."""

    def __init__(self) -> None:
        self._states: Dict[int, IteratorState] = {}

    def state(self, iterator_id: int) -> IteratorState:
        st = self._states.get(iterator_id)
        if st is None:
            st = IteratorState(iterator_id)
            self._states[iterator_id] = st
        return st

    def get(self, iterator_id: int) -> Optional[IteratorState]:
        return self._states.get(iterator_id)

    def reset(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)


# ---------------------------------------------------------------------------
# Worklist item
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockWithObligations:
    """A block together with the obligations that hold on entry to it."""

    block: Any
    obligations: FrozenSet[Obligation]

    def __repr__(self) -> str:
        obs = ", ".join(sorted(repr(o) for o in self.obligations))
        return f"<{self.block.label}: {obs}>"


# ---------------------------------------------------------------------------
# Helpers over mutable fact sets
# ---------------------------------------------------------------------------


def obligation_for(
    obligations: Iterable[Obligation], reference: Reference
) -> Optional[Obligation]:
    """The obligation that has *reference* among its aliases, if any."""
    for ob in obligations:
        if ob.can_be_satisfied_through(reference):
            return ob
    return None


def obligations_for(
    obligations: Iterable[Obligation], reference: Reference
) -> List[Obligation]:
    return [ob for ob in obligations if ob.can_be_satisfied_through(reference)]


def remove_obligations_containing(
    obligations: Set[Obligation], reference: Reference
) -> List[Obligation]:
    """Drop every obligation that can be satisfied through *reference*."""
    doomed = obligations_for(obligations, reference)
    for ob in doomed:
        obligations.discard(ob)
    return doomed


def replace_obligation(
    obligations: Set[Obligation], old: Obligation, new: Optional[Obligation]
) -> None:
    obligations.discard(old)
    if new is not None:
        obligations.add(new)


def alias_owners(obligations: Iterable[Obligation]) -> Dict[ResourceAlias, int]:
    """How many obligations each alias appears in; used to assert the
    at-most-one-owner invariant."""
    counts: Dict[ResourceAlias, int] = {}
    for ob in obligations:
        for a in ob.aliases:
            counts[a] = counts.get(a, 0) + 1
    return counts


__all__ = [
    "MethodExitKind",
    "ALL_EXITS",
    "NORMAL_RETURN_ONLY",
    "ResourceAlias",
    "Obligation",
    "PlainObligation",
    "CollectionObligation",
    "IteratorObligation",
    "IteratorElementObligation",
    "IteratorState",
    "IteratorArena",
    "BlockWithObligations",
    "obligation_for",
    "obligations_for",
    "remove_obligations_containing",
    "replace_obligation",
    "alias_owners",
]
