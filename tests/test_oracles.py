# tests/test_oracles.py
"""
Tests for program points, the table-backed oracles and the per-point
stores handed to the analysis.
"""

import pickle

from mustcall_shims.ctrlflow_graph import Block
from mustcall_shims.oracles import (
    UNKNOWN,
    CalledMethodsOracle,
    Known,
    MustCallOracle,
    PointKind,
    ProgramPoint,
    StoreCache,
    TableCalledMethodsOracle,
    TableMustCallOracle,
    known,
)
from mustcall_shims.tac import AssignmentNode, LocalRef


def _node(label="a1"):
    return AssignmentNode(LocalRef("s"), LocalRef("$t0"), label=label)


class TestProgramPoints:

    def test_keys(self):
        node = _node()
        assert ProgramPoint.after(node).key == "after:a1"
        assert ProgramPoint.before(node).key == "before:a1"
        assert str(ProgramPoint.edge(Block("B1"), Block("B2"))) == "edge:B1->B2"

    def test_unlabeled_nodes_get_their_id(self):
        node = AssignmentNode(LocalRef("s"), LocalRef("$t0"))
        point = ProgramPoint.after(node)
        assert point.kind is PointKind.AFTER
        assert point.key == f"after:#{node.id}"


class TestMustCallFacts:

    def test_unknown_is_a_singleton(self):
        assert pickle.loads(pickle.dumps(UNKNOWN)) is UNKNOWN
        assert repr(UNKNOWN) == "UNKNOWN"

    def test_known(self):
        assert known(["close"]) == Known(frozenset({"close"}))
        assert known() == Known()


class TestTableOracles:

    def test_protocols(self):
        assert isinstance(TableMustCallOracle(), MustCallOracle)
        assert isinstance(TableCalledMethodsOracle(), CalledMethodsOracle)

    def test_point_specific_fact_wins(self):
        oracle = TableMustCallOracle()
        s = LocalRef("s")
        oracle.set_required(s, ["close"])
        oracle.set_required("s", ["close", "flush"], "after:a1")
        assert oracle.required_methods(s, ProgramPoint.after(_node())) == known(["close", "flush"])
        assert oracle.required_methods(s, ProgramPoint.before(_node())) == known(["close"])

    def test_missing_facts(self):
        mc, cm = TableMustCallOracle(), TableCalledMethodsOracle()
        s, point = LocalRef("s"), ProgramPoint.after(_node())
        assert mc.required_methods(s, point) is None
        assert mc.required_methods_on_elements(s, point) == frozenset()
        assert cm.called_methods(s, point) == frozenset()
        assert cm.called_methods_on_elements(s, point) == frozenset()

    def test_unknown_and_revoked(self):
        oracle = TableMustCallOracle()
        s, point = LocalRef("s"), ProgramPoint.after(_node())
        oracle.set_required(s, UNKNOWN)
        oracle.set_on_elements(s, None)
        assert oracle.required_methods(s, point) is UNKNOWN
        assert oracle.required_methods_on_elements(s, point) is None

    def test_called_methods(self):
        oracle = TableCalledMethodsOracle()
        oracle.set_called("s", ["close"], "after:a1")
        oracle.set_on_elements("c", ["close"])
        assert oracle.called_methods(LocalRef("s"), ProgramPoint.after(_node())) == {"close"}
        assert oracle.called_methods(LocalRef("s"), ProgramPoint.before(_node())) == frozenset()
        assert oracle.called_methods_on_elements(LocalRef("c"), ProgramPoint.before(_node())) == {"close"}
        assert len(oracle.called) == 1


class TestStores:

    def test_store_after_node_is_memoized(self):
        cache = StoreCache(TableMustCallOracle(), TableCalledMethodsOracle())
        node = _node()
        assert cache.called_after(node) is cache.called_after(node)
        assert cache.must_call_after(node) is cache.must_call_after(node)
        assert len(cache) == 2
        cache.clear()
        assert len(cache) == 0

    def test_before_and_edge_stores(self):
        called = TableCalledMethodsOracle()
        called.set_called("s", ["close"], "edge:B1->B2")
        cache = StoreCache(TableMustCallOracle(), called)
        store = cache.called_on_edge(Block("B1"), Block("B2"))
        assert store.called_methods(LocalRef("s")) == {"close"}
        assert cache.called_before(_node()).point.kind is PointKind.BEFORE
        assert repr(cache.must_call_on_edge(Block("B1"), Block("B2"))) == "MustCallStore(edge:B1->B2)"

    def test_store_answers_are_pinned(self):
        oracle = TableMustCallOracle()
        oracle.set_required("s", ["close"])
        cache = StoreCache(oracle, TableCalledMethodsOracle())
        store = cache.must_call_after(_node())
        assert store.required_methods(LocalRef("s")) == known(["close"])
        oracle.set_required("s", ["flush"])
        assert store.required_methods(LocalRef("s")) == known(["close"])
