# tests/test_collections.py
"""
Tests for resource collections and their iterators: per-element
requirements, mutator classification, ownership of the elements and the
next()/remove() protocol.
"""

from mustcall_shims.obligations import CollectionObligation
from mustcall_shims.routine_builder import declare_method
from tests.conftest import analyze, builder, ids, open_socket


def owning_list(b, name="socks"):
    """``@OwningCollection SocketList name = new SocketList()``."""
    node = b.new("SocketList")
    b.decl(name, "SocketList", "owningcollection", value=node.result)
    return node


# ── Per-element requirements ───────────────────────────────────────

class TestElementRequirements:

    def test_added_element_must_be_closed(self, program):
        b = builder(program, "fill")
        owning_list(b)
        open_socket(b)
        b.call("SocketList.add", receiver="socks", args=["s"])
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unfulfilled.mustcallonelements.obligations"]
        assert diags[0].message == (
            "method close may not have been invoked on every element of socks. "
            "Reason for going out of scope: regular method exit"
        )

    def test_elements_closed(self, program):
        b = builder(program, "fillAndClose")
        owning_list(b)
        open_socket(b)
        b.call("SocketList.add", receiver="socks", args=["s"])
        b.called_on_elements("socks", ["close"])
        b.goto("exit")
        assert analyze(b.build()) == []

    def test_requirement_only_grows(self, program):
        b = builder(program, "grow")
        owning_list(b)
        b.block("B2")
        open_socket(b, "s1")
        b.call("SocketList.add", receiver="socks", args=["s1"])
        b.block("B3")
        open_socket(b, "s2")
        b.must_call("s2", ["close", "flush"])
        b.call("SocketList.add", receiver="socks", args=["s2"])
        b.goto("exit")
        b.edge("entry", "B2")
        b.edge("B2", "B3")

        seen = {}

        def record(item):
            for ob in item.obligations:
                if isinstance(ob, CollectionObligation):
                    seen[item.block.label] = ob.requirement

        diags = analyze(b.build(), visit_hook=record)
        assert seen["B2"] == frozenset()
        assert seen["B2"] <= seen["B3"] == frozenset({"close"})
        assert diags[0].message.startswith(
            "methods close, flush may not have been invoked on every element of socks"
        )

    def test_revoked_ownership_is_unknown(self, program):
        b = builder(program, "revoked")
        owning_list(b)
        b.must_call_on_elements("socks", None)
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unfulfilled.mustcallonelements.obligations"]
        assert diags[0].message.startswith("unknown may not have been invoked")

    def test_reassigned_collection_is_checked(self, program):
        b = builder(program, "reassign")
        owning_list(b)
        open_socket(b)
        b.call("SocketList.add", receiver="socks", args=["s"])
        second = b.new("SocketList")
        b.assign("socks", second.result)
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unfulfilled.mustcallonelements.obligations"]
        assert diags[0].message.endswith(
            f"owning collection reassigned at socks = {second.result.text}"
        )

    def test_owning_collection_parameter(self, program):
        b = builder(program, "param", params=[("socks", "SocketList", "owningcollection")])
        b.goto("exit")
        assert ids(analyze(b.build())) == ["unfulfilled.mustcallonelements.obligations"]


# ── Mutators ───────────────────────────────────────────────────────

class TestMutators:

    def test_set_over_open_elements(self, program):
        b = builder(program, "replace", params=[("socks", "SocketList", "owningcollection")])
        open_socket(b)
        put = b.call("SocketList.set", receiver="socks", args=["0", "s"])
        b.called_on_elements("socks", ["close"], at=put)
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unsafe.owningcollection.modification"]
        assert diags[0].message == (
            "socks is overwritten or modified while its elements may still "
            "require method close"
        )

    def test_set_on_empty_requirement(self, program):
        b = builder(program, "replaceFresh")
        owning_list(b)
        open_socket(b)
        b.call("SocketList.set", receiver="socks", args=["0", "s"])
        b.goto("exit")
        assert ids(analyze(b.build())) == ["unfulfilled.mustcallonelements.obligations"]

    def test_add_to_read_only_view(self, program):
        b = builder(program, "addToView", params=[("view", "SocketList")])
        open_socket(b)
        b.call("SocketList.add", receiver="view", args=["s"])
        b.goto("exit")
        diags = analyze(b.build())
        # the element is not handed over, so it leaks as well
        assert ids(diags) == ["modification.without.ownership", "required.method.not.called"]
        assert diags[0].message == "view is modified but does not own its elements"

    def test_unsafe_method(self, program):
        b = builder(program, "shuffle")
        owning_list(b)
        b.call("SocketList.shuffle", receiver="socks")
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unsafe.method"]
        assert diags[0].message.startswith("call to shuffle on resource collection socks")

    def test_safe_methods_and_clear(self, program):
        b = builder(program, "query")
        owning_list(b)
        b.call("SocketList.size", receiver="socks")
        b.call("SocketList.clear", receiver="socks")
        b.goto("exit")
        assert analyze(b.build()) == []


# ── Passing collections around ─────────────────────────────────────

class TestCollectionTransfer:

    def test_owning_collection_argument(self, program):
        b = builder(program, "handOver")
        owning_list(b)
        open_socket(b)
        b.call("SocketList.add", receiver="socks", args=["s"])
        b.call("Sink.own", args=["socks"])
        b.goto("exit")
        assert analyze(b.build()) == []

    def test_unannotated_parameter(self, program):
        declare_method(program, "Sink", "peek", [("c", "SocketList")])
        b = builder(program, "peek")
        owning_list(b)
        b.call("Sink.peek", args=["socks"])
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["missing.collection.ownership.annotation"]

    def test_read_only_view_cannot_be_handed_over(self, program):
        b = builder(program, "launder", params=[("view", "SocketList")])
        b.call("Sink.own", args=["view"])
        b.goto("exit")
        assert ids(analyze(b.build())) == ["missing.argument.ownership"]


# ── Iterators ──────────────────────────────────────────────────────

class TestIterators:

    def _iterate(self, b, collection="socks"):
        it = b.call("SocketList.iterator", receiver=collection)
        b.decl("it", "SocketIter", value=it.result)
        return it

    def test_removed_element_must_be_closed(self, program):
        b = builder(program, "drain", params=[("socks", "SocketList", "owningcollection")])
        self._iterate(b)
        b.call("SocketIter.next", receiver="it")
        b.call("SocketIter.next", receiver="it")
        b.call("SocketIter.remove", receiver="it")
        b.called_on_elements("socks", ["close"])
        b.goto("exit")
        diags = analyze(b.build())
        # only the element actually removed is checked
        assert ids(diags) == ["required.method.not.called"]
        assert "on $t2 = it.next() or any" in diags[0].message

    def test_remove_without_next(self, program):
        b = builder(program, "eager", params=[("socks", "SocketList", "owningcollection")])
        self._iterate(b)
        b.call("SocketIter.remove", receiver="it")
        b.called_on_elements("socks", ["close"])
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["unsafe.iterator.remove"]
        assert diags[0].message == "remove() is called on iterator it without a preceding next()"

    def test_remove_reachable_around_next(self, program):
        b = builder(program, "skipNext", params=[("socks", "SocketList", "owningcollection")])
        self._iterate(b)
        b.block("A")
        b.call("SocketIter.next", receiver="it")
        b.block("R")
        b.call("SocketIter.remove", receiver="it")
        b.goto("exit")
        b.edge("A", "R")
        b.use("entry")
        b.branch("A", "R")
        b.called("$t1", ["close"])
        b.called_on_elements("socks", ["close"])
        diags = analyze(b.build())
        # entry -> R skips next(); the path through A does not hide it
        assert ids(diags) == ["unsafe.iterator.remove"]

    def test_remove_through_read_only_view(self, program):
        b = builder(program, "viewRemove", params=[("view", "SocketList")])
        self._iterate(b, "view")
        b.call("SocketIter.next", receiver="it")
        b.call("SocketIter.remove", receiver="it")
        b.called("$t1", ["close"])
        b.goto("exit")
        assert ids(analyze(b.build())) == ["modification.without.ownership"]

    def test_element_left_scope_before_remove(self, program):
        b = builder(program, "late", params=[("socks", "SocketList", "owningcollection")])
        self._iterate(b)
        b.call("SocketIter.next", receiver="it")
        b.block("B2", in_scope=["it", "socks"])
        b.call("SocketIter.remove", receiver="it")
        b.called_on_elements("socks", ["close"])
        b.goto("exit")
        b.edge("entry", "B2")
        diags = analyze(b.build())
        assert ids(diags) == ["required.method.not.called"]
        assert diags[0].message.endswith(
            "Reason for going out of scope: removed from collection by iterator remove"
        )

    def test_closed_element_removed(self, program):
        b = builder(program, "closeRemove", params=[("socks", "SocketList", "owningcollection")])
        self._iterate(b)
        b.call("SocketIter.next", receiver="it")
        b.call("SocketIter.remove", receiver="it")
        b.called("$t1", ["close"])
        b.called_on_elements("socks", ["close"])
        b.goto("exit")
        assert analyze(b.build()) == []
