# tests/conftest.py
"""
Shared builders and fixtures for the mustcall-shims test-suite.

Every test program starts from :func:`make_program`, which declares a
small resource vocabulary:

    Socket       must call close()            (close, flush, write)
    Res          must-call set unknown
    Text         no obligations
    SocketList   collection of Socket         (add, set, iterator, ...)
    SocketIter   iterator over Socket         (next, remove, hasNext)
    Sink         methods with ownership-annotated parameters

Called-methods facts are never inferred; a test states them with
``b.called(...)`` / ``b.called_on_elements(...)``.
"""

from typing import Iterable, List, Optional

import pytest

from mustcall_shims.config import AnalysisConfig
from mustcall_shims.dataflow_engine import MustCallConsistencyAnalyzer
from mustcall_shims.declarations import Program
from mustcall_shims.diagnostics import Diagnostic
from mustcall_shims.loop_summarizer import summarize_fulfilling_loops
from mustcall_shims.routine_builder import RoutineBuilder, declare_method, define_type


# ── Program vocabulary ─────────────────────────────────────────────

def make_program(file: str = "Demo.java") -> Program:
    program = Program(file)
    define_type(program, "Socket", must_call=["close"])
    define_type(program, "Res", must_call=None)
    define_type(program, "Text")
    define_type(program, "SocketList", kind="collection", element_type="Socket")
    define_type(program, "SocketIter", kind="iterator", element_type="Socket")

    declare_method(program, "Socket", "close")
    declare_method(program, "Socket", "flush")
    declare_method(program, "Socket", "write")

    declare_method(program, "SocketList", "add", [("e", "Socket")], return_type="boolean")
    declare_method(
        program, "SocketList", "set", [("i", "int"), ("e", "Socket")],
        return_type="Socket", return_ownership="notowning",
    )
    declare_method(program, "SocketList", "iterator", return_type="SocketIter")
    declare_method(program, "SocketList", "size", return_type="int")
    declare_method(program, "SocketList", "clear")
    declare_method(program, "SocketList", "shuffle")

    declare_method(
        program, "SocketIter", "next",
        return_type="Socket", return_ownership="notowning",
    )
    declare_method(program, "SocketIter", "remove")
    declare_method(program, "SocketIter", "hasNext", return_type="boolean")

    declare_method(program, "Sink", "take", [("s", "Socket", "owning")])
    declare_method(program, "Sink", "look", [("s", "Socket")])
    declare_method(program, "Sink", "own", [("c", "SocketList", "owningcollection")])
    declare_method(program, "Sink", "open", return_type="Socket")
    return program


def builder(program: Program, name: str, owner: str = "Demo", **kw) -> RoutineBuilder:
    """A builder whose current block is ``entry``."""
    b = RoutineBuilder(program, owner, name, **kw)
    b.block("entry")
    return b


def open_socket(b: RoutineBuilder, name: str = "s", label: Optional[str] = None):
    """``Socket name = new Socket()`` in the current block."""
    node = b.new("Socket", label=label)
    b.decl(name, "Socket", value=node.result)
    return node


# ── Running the analysis ───────────────────────────────────────────

def analyze(routine, config: Optional[AnalysisConfig] = None, visit_hook=None) -> List[Diagnostic]:
    """Summarize the routine's fulfilling loops, then run the engine."""
    summarize_fulfilling_loops(routine, config)
    analyzer = MustCallConsistencyAnalyzer(routine, config=config, visit_hook=visit_hook)
    return analyzer.analyze().diagnostics


def ids(diagnostics: Iterable[Diagnostic]) -> List[str]:
    return sorted(d.error_id for d in diagnostics)


# ── Fixtures ───────────────────────────────────────────────────────

@pytest.fixture
def program():
    return make_program()


@pytest.fixture
def demo_rlir():
    """A small IR file: one leaking routine and one clean one."""
    return DEMO_RLIR


DEMO_RLIR = """\
program "Demo.java";

type Socket mustcall(close);
type SocketList collection of Socket;
method Socket.close();

// forgets to close on the normal path
routine Demo.leak() @3 {
    block entry {
        n1: $t0 = new Socket() @4;
        decl s : Socket = $t0 @4;
        goto exit;
    }
}

routine Demo.tidy() @10 {
    block entry {
        n1: $t0 = new Socket() @11;
        decl s : Socket = $t0 @11;
        c1: call Socket.close() on s @12;
        goto exit;
    }
    called s (close) at after c1;
}
"""
