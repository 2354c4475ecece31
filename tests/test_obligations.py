# tests/test_obligations.py
"""
Tests for the alias-set lattice: resource aliases, the obligation
variants, the iterator arena and the helpers over mutable fact sets.
"""

import pytest

from mustcall_shims.ctrlflow_graph import Block
from mustcall_shims.errors import MustCallShimsError
from mustcall_shims.obligations import (
    ALL_EXITS,
    NORMAL_RETURN_ONLY,
    BlockWithObligations,
    CollectionObligation,
    IteratorArena,
    IteratorElementObligation,
    IteratorObligation,
    MethodExitKind,
    PlainObligation,
    ResourceAlias,
    alias_owners,
    obligation_for,
    remove_obligations_containing,
    replace_obligation,
)
from mustcall_shims.tac import AssignmentNode, LocalRef, ObjectCreationNode, THIS, FieldRef
from mustcall_shims.declarations import MethodSig


def _new(result="$t0"):
    return ObjectCreationNode(
        "Socket", MethodSig("Socket", "<init>", is_constructor=True),
        result=LocalRef(result),
    )


class TestResourceAlias:

    def test_equality_ignores_element_and_flag(self):
        site = _new()
        a = ResourceAlias(LocalRef("s"), "decl-a", site)
        b = ResourceAlias(LocalRef("s"), None, site, derived_from_must_call_alias=True)
        assert a == b
        assert hash(a) == hash(b)

    def test_distinct_sites_are_distinct_aliases(self):
        a = ResourceAlias(LocalRef("s"), None, _new())
        b = ResourceAlias(LocalRef("s"), None, _new())
        assert a != b

    def test_message_text_of_identifier(self):
        alias = ResourceAlias(LocalRef("sock"), None, _new())
        assert alias.text_for_message() == "sock"

    def test_message_text_of_temporary_is_the_site(self):
        site = _new("$t3")
        alias = ResourceAlias(LocalRef("$t3"), None, site)
        assert alias.text_for_message() == "$t3 = new Socket()"

    def test_message_text_of_field(self):
        alias = ResourceAlias(FieldRef(THIS, "sock"), None, None)
        assert alias.text_for_message() == "this.sock"


class TestObligationVariants:

    def test_needs_at_least_one_alias(self):
        with pytest.raises(ValueError):
            PlainObligation(frozenset())

    def test_default_exit_kinds(self):
        ob = PlainObligation(frozenset({ResourceAlias(LocalRef("s"))}))
        assert ob.when_to_enforce == ALL_EXITS

    def test_with_new_aliases_keeps_requirement(self):
        alias = ResourceAlias(LocalRef("c"))
        ob = CollectionObligation(frozenset({alias}), ALL_EXITS, frozenset({"close"}))
        other = ResourceAlias(LocalRef("d"))
        moved = ob.with_new_aliases({other}, NORMAL_RETURN_ONLY)
        assert isinstance(moved, CollectionObligation)
        assert moved.requirement == frozenset({"close"})
        assert moved.when_to_enforce == NORMAL_RETURN_ONLY
        assert moved.aliases == frozenset({other})

    def test_with_new_aliases_keeps_iterator_data(self):
        alias = ResourceAlias(LocalRef("it"))
        ob = IteratorObligation(frozenset({alias}), ALL_EXITS, iterator_id=7, read_only_source=True)
        moved = ob.with_new_aliases({ResourceAlias(LocalRef("it2"))})
        assert isinstance(moved, IteratorObligation)
        assert (moved.iterator_id, moved.read_only_source) == (7, True)

    def test_pending_element_follows_the_obligation(self):
        ob = IteratorObligation(frozenset({ResourceAlias(LocalRef("it"))}), iterator_id=7)
        advanced = ob.with_current(12)
        assert ob.current is None and advanced.current == 12
        assert advanced != ob
        assert advanced.with_new_aliases({ResourceAlias(LocalRef("it2"))}).current == 12
        assert advanced.with_current(None) == ob

    def test_element_obligation_keeps_ids(self):
        alias = ResourceAlias(LocalRef("$t1"))
        ob = IteratorElementObligation(frozenset({alias}), NORMAL_RETURN_ONLY, iterator_id=3, element_id=9)
        moved = ob.with_new_aliases({ResourceAlias(LocalRef("e"))})
        assert (moved.iterator_id, moved.element_id) == (3, 9)

    def test_with_requirement(self):
        ob = CollectionObligation(frozenset({ResourceAlias(LocalRef("c"))}))
        grown = ob.with_requirement({"close", "flush"})
        assert grown.requirement == frozenset({"close", "flush"})
        assert ob.requirement == frozenset()

    def test_structural_equality(self):
        alias = ResourceAlias(LocalRef("s"))
        assert PlainObligation(frozenset({alias})) == PlainObligation(frozenset({alias}))
        assert PlainObligation(frozenset({alias})) != PlainObligation(
            frozenset({alias}), NORMAL_RETURN_ONLY
        )

    def test_first_alias_is_earliest_site(self):
        early, late = _new(), _new()
        a = ResourceAlias(LocalRef("b"), None, late)
        b = ResourceAlias(LocalRef("a"), None, early)
        ob = PlainObligation(frozenset({a, b}))
        assert ob.first_alias() is b
        assert ob.sorted_aliases() == [b, a]

    def test_derived_flag_from_any_alias(self):
        ob = PlainObligation(frozenset({
            ResourceAlias(LocalRef("a")),
            ResourceAlias(LocalRef("b"), derived_from_must_call_alias=True),
        }))
        assert ob.derived_from_must_call_alias()

    def test_exit_kind_values(self):
        assert {k.value for k in MethodExitKind} == {"normal return", "exceptional exit"}


class TestFactSetHelpers:

    def test_obligation_for_and_remove(self):
        s, t = LocalRef("s"), LocalRef("t")
        ob_s = PlainObligation(frozenset({ResourceAlias(s)}))
        ob_t = PlainObligation(frozenset({ResourceAlias(t)}))
        facts = {ob_s, ob_t}
        assert obligation_for(facts, s) is ob_s
        assert remove_obligations_containing(facts, s) == [ob_s]
        assert facts == {ob_t}
        assert obligation_for(facts, s) is None

    def test_replace_obligation(self):
        s = LocalRef("s")
        old = PlainObligation(frozenset({ResourceAlias(s)}))
        new = old.with_new_aliases({ResourceAlias(LocalRef("u"))})
        facts = {old}
        replace_obligation(facts, old, new)
        assert facts == {new}
        replace_obligation(facts, new, None)
        assert facts == set()

    def test_alias_owners_counts(self):
        shared = ResourceAlias(LocalRef("s"))
        obs = [
            PlainObligation(frozenset({shared})),
            PlainObligation(frozenset({shared, ResourceAlias(LocalRef("u"))})),
        ]
        counts = alias_owners(obs)
        assert counts[shared] == 2
        assert counts[ResourceAlias(LocalRef("u"))] == 1


class TestIteratorArena:

    def test_state_is_created_once(self):
        arena = IteratorArena()
        assert arena.state(4) is arena.state(4)
        assert len(arena) == 1
        assert arena.get(5) is None

    def test_remove_marks_element_checked(self):
        state = IteratorArena().state(1)
        state.next_element(10)
        assert not state.must_check(10)
        assert state.remove_element(10) is None
        assert state.must_check(10)
        assert not state.must_check(11)

    def test_next_yields_a_fresh_element(self):
        state = IteratorArena().state(1)
        state.next_element(10)
        state.remove_element(10)
        # the same next() site on a later iteration
        state.next_element(10)
        assert not state.must_check(10)

    def test_cached_scope_exit_is_handed_out_once(self):
        state = IteratorArena().state(1)
        state.next_element(10)
        ob = IteratorElementObligation(
            frozenset({ResourceAlias(LocalRef("$t1"))}), NORMAL_RETURN_ONLY, 1, 10
        )
        state.leave_scope(ob, "cm", "mc")
        assert state.remove_element(10) == (ob, "cm", "mc")
        assert state.remove_element(10) is None

    def test_remove_needs_an_element(self):
        state = IteratorArena().state(1)
        with pytest.raises(MustCallShimsError, match="without a pending element"):
            state.remove_element(None)

    def test_reset(self):
        arena = IteratorArena()
        arena.state(1)
        arena.reset()
        assert len(arena) == 0


class TestBlockWithObligations:

    def test_dedup_by_structure(self):
        block = Block("B1")
        alias = ResourceAlias(LocalRef("s"))
        a = BlockWithObligations(block, frozenset({PlainObligation(frozenset({alias}))}))
        b = BlockWithObligations(block, frozenset({PlainObligation(frozenset({alias}))}))
        assert a == b
        assert len({a, b}) == 1

    def test_repr_lists_obligations(self):
        block = Block("B1")
        item = BlockWithObligations(
            block, frozenset({PlainObligation(frozenset({ResourceAlias(LocalRef("s"))}))})
        )
        assert repr(item).startswith("<B1: PlainObligation({s}")

    def test_assignment_site_alias(self):
        node = AssignmentNode(LocalRef("s"), LocalRef("$t0"))
        alias = ResourceAlias(LocalRef("s"), None, node)
        assert alias.site is node
