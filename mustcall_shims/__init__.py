"""
mustcall_shims — Resource-Obligation Consistency Analysis
=========================================================

A flow-sensitive analysis that proves every value carrying a "must call"
obligation (close a socket, release a lock, ...) has its required methods
called on every path before it becomes unreachable.  Ownership can move
between variables, fields, parameters, return values and the elements of
owning collections; the analysis follows it and reports where it is lost.

Core modules
------------
tac
    Three-address references and nodes.
ctrlflow_graph
    Routine CFG with tagged edges and special exit blocks.
declarations
    Ownership annotations, type facts, signatures, routines, programs.
obligations
    Obligations, resource aliases and the iterator arena.
oracles
    Must-call and called-methods oracle adapters and store caches.
genkill
    Transfer rules of the analysis.
dataflow_engine
    The join-free worklist engine.
loop_summarizer
    Methods called on every element by a fulfilling loop.
consistency
    Discharge checks at scope exit.
validators
    Declaration-level checks.
checkers
    Checker framework, suppressions and runner.

Quick start
-----------
>>> from mustcall_shims import Program, RoutineBuilder, define_type, run
>>> program = Program("Demo.java")
>>> _ = define_type(program, "Socket", must_call=["close"])
>>> b = RoutineBuilder(program, "Demo", "leak")
>>> _ = b.block("B1")
>>> s = b.new("Socket")
>>> _ = b.decl("s", "Socket", value=s.result)
>>> _ = b.goto("exit")
>>> _ = b.edge("entry", "B1")
>>> [d.error_id for d in run(b.build().cfg)]
['required.method.not.called']
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.1.0"

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

from .checkers import (  # noqa: E402
    CheckerRunner,
    CheckerRunResults,
    SuppressionManager,
    run_program,
)
from .config import AnalysisConfig  # noqa: E402
from .ctrlflow_graph import CFG, Block, BlockKind, EdgeKind  # noqa: E402
from .dataflow_engine import MustCallConsistencyAnalyzer, run  # noqa: E402
from .declarations import Ownership, Program, Routine, TypeKind  # noqa: E402
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticSeverity  # noqa: E402
from .errors import (  # noqa: E402
    InvalidLoopBodyAnalysis,
    MalformedCFGError,
    MustCallShimsError,
    TypeSystemError,
)
from .loop_summarizer import run_loop_body  # noqa: E402
from .loops import LoopContext, LoopDescriptor, LoopKind  # noqa: E402
from .obligations import MethodExitKind  # noqa: E402
from .routine_builder import (  # noqa: E402
    RoutineBuilder,
    declare_method,
    define_field,
    define_type,
)

__all__: List[str] = [
    "__version__",
    "AnalysisConfig",
    "Block",
    "BlockKind",
    "CFG",
    "CheckerRunResults",
    "CheckerRunner",
    "Diagnostic",
    "DiagnosticKind",
    "DiagnosticSeverity",
    "EdgeKind",
    "InvalidLoopBodyAnalysis",
    "LoopContext",
    "LoopDescriptor",
    "LoopKind",
    "MalformedCFGError",
    "MethodExitKind",
    "MustCallConsistencyAnalyzer",
    "MustCallShimsError",
    "Ownership",
    "Program",
    "Routine",
    "RoutineBuilder",
    "SuppressionManager",
    "TypeKind",
    "TypeSystemError",
    "declare_method",
    "define_field",
    "define_type",
    "run",
    "run_loop_body",
    "run_program",
]
