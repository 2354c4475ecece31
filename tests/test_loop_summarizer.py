# tests/test_loop_summarizer.py
"""
Tests for loop descriptors: the fulfilling-loop body summarizer and the
effect of allocating and fulfilling loops on the collection requirement
when the main analysis leaves them.
"""

from mustcall_shims.dataflow_engine import run
from mustcall_shims.loop_summarizer import LoopBodySummarizer, run_loop_body, summarize_fulfilling_loops
from mustcall_shims.loops import LoopContext, LoopKind
from tests.conftest import analyze, builder, ids


PARAMS = [("socks", "SocketList", "owningcollection")]


def closing_loop(program, name="closeAll", second=("close", "flush"), reachable=True):
    """``for (Socket s : socks) { if (..) s.close() else <second> }``.

    Blocks: entry -> L; L -> Body | Done; Body -> B1 | B2; B1, B2 -> U -> L.
    """
    b = builder(program, name, params=PARAMS)
    b.block("L", conditional=True)
    b.block("Body")
    b.decl("s", "Socket", value="socks[i]")
    b.block("B1")
    close = b.call("Socket.close", receiver="s")
    b.called("s", ["close"], at=close)
    b.block("B2")
    last = b.call("Socket.flush", receiver="s")
    b.called("s", second, at=last)
    b.block("U")
    b.block("Done")
    b.goto("exit")

    if reachable:
        b.edge("entry", "L")
    b.edge("L", "Body", "then")
    b.edge("L", "Done", "else")
    b.use("Body")
    b.branch("B1", "B2")
    b.edge("B1", "U")
    b.edge("B2", "U")
    b.edge("U", "L")
    loop = b.loop(
        "fulfilling", collection="socks", element="socks[i]",
        condition="L", body="Body", update="U", name="closeAll",
    )
    return b.build(), loop


class TestFulfillingLoops:

    def test_methods_called_on_every_path(self, program):
        routine, loop = closing_loop(program)
        assert run_loop_body(loop, loops=program.loops) == {"close"}
        assert loop.methods == {"close"}
        assert program.loops.is_marked_fulfilling(loop)

    def test_summarized_loop_discharges_the_collection(self, program):
        routine, _ = closing_loop(program)
        assert analyze(routine) == []

    def test_path_without_the_method(self, program):
        routine, loop = closing_loop(program, "flushSome", second=("flush",))
        assert run_loop_body(loop, loops=program.loops) == set()
        assert not program.loops.is_marked_fulfilling(loop)
        diags = analyze(routine)
        assert ids(diags) == ["unfulfilled.mustcallonelements.obligations"]

    def test_unreachable_body_proves_nothing(self, program):
        _, loop = closing_loop(program, "dead", reachable=False)
        assert LoopBodySummarizer(loop, loops=program.loops).summarize() == set()
        assert loop.methods == set()

    def test_each_loop_is_summarized_once(self, program):
        routine, loop = closing_loop(program)
        assert summarize_fulfilling_loops(routine) == [loop]
        assert summarize_fulfilling_loops(routine) == []
        assert loop.summarized

    def test_private_loop_context(self, program):
        _, loop = closing_loop(program)
        loops = LoopContext()
        run_loop_body(loop, loops=loops)
        assert loops.is_marked_fulfilling(loop)
        assert not program.loops.is_marked_fulfilling(loop)

    def test_empty_body_proves_nothing(self, program):
        b = builder(program, "spinOnly", params=PARAMS)
        b.block("L", conditional=True)
        b.block("U")
        b.block("Done")
        b.goto("exit")
        b.edge("entry", "L")
        b.edge("L", "U", "then")
        b.edge("L", "Done", "else")
        b.edge("U", "L")
        b.called("socks[i]", ["close"])
        loop = b.loop(
            "fulfilling", collection="socks", element="socks[i]",
            condition="L", body="U", update="U",
        )
        b.build()
        assert run_loop_body(loop, loops=program.loops) == set()
        assert loop.methods == set()
        assert not program.loops.is_marked_fulfilling(loop)

    def test_summary_replaces_stale_methods(self, program):
        _, loop = closing_loop(program)
        loop.methods = {"flush"}
        assert run_loop_body(loop, loops=program.loops) == {"close"}
        assert loop.methods == {"close"}

    def test_repeated_summary_only_narrows(self, program):
        _, loop = closing_loop(program)
        run_loop_body(loop, loops=program.loops)
        loop.record_methods({"close", "flush"})
        assert loop.methods == {"close"}
        loop.record_methods({"flush"})
        assert loop.methods == set()
        assert run_loop_body(loop, loops=program.loops) == set()

    def test_run_summarizes_before_analyzing(self, program):
        routine, loop = closing_loop(program)
        assert run(routine.cfg) == []
        assert loop.summarized


class TestAllocatingLoops:

    def _allocate(self, program, name):
        """``for (i...) socks[i] = new Socket();`` on an owning local."""
        b = builder(program, name)
        lst = b.new("SocketList")
        b.decl("socks", "SocketList", "owningcollection", value=lst.result)
        b.block("L", conditional=True)
        b.block("Body")
        node = b.new("Socket")
        write = b.assign("socks[i]", node.result)
        b.goto("L")
        b.block("Done")
        b.goto("exit")
        b.edge("entry", "L")
        b.use("L")
        b.branch("Body", "Done")
        loop = b.loop(
            LoopKind.ALLOCATING, collection="socks", element="socks[i]",
            condition="L", body="Body", update="Body", site=write,
            methods=["close"],
        )
        return b, loop

    def test_allocated_elements_must_be_closed(self, program):
        b, _ = self._allocate(program, "fill")
        diags = analyze(b.build())
        assert ids(diags) == ["unfulfilled.mustcallonelements.obligations"]
        assert diags[0].message.startswith("method close may not have been invoked on every element of socks")

    def test_allocated_elements_closed_after_the_loop(self, program):
        b, _ = self._allocate(program, "fillThenClose")
        b.called_on_elements("socks", ["close"], at="edge:Done->exit")
        assert analyze(b.build()) == []

    def test_exit_edges(self, program):
        _, loop = self._allocate(program, "edges")
        assert [e.dst.label for e in loop.exit_edges()] == ["Done"]
        assert program.loops.allocating_loop_for(loop.element_site) is loop
