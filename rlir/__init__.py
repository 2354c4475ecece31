"""rlir — textual resource IR for the must-call consistency checker.

Submodules
----------
grammar
    Parsimonious PEG grammar of ``.rlir`` files.

loader
    Parse tree → :class:`mustcall_shims.declarations.Program`:
    ``parse_rlir`` and ``load_rlir_file``.

errors
    ``RlirError`` hierarchy with ``RLIR-NNNN`` codes and ``SourceSpan``.

main
    CLI entry-point with subcommands: ``check``, ``cfg``, ``summarize``,
    ``ids``.

Usage
-----
Command-line::

    rlcheck check demo.rlir
    python -m rlir cfg demo.rlir --routine Demo.leak

Programmatic::

    from rlir import parse_rlir
    from mustcall_shims import run_program

    results = run_program(parse_rlir(source, "demo.rlir"))
    print(results.summary())
"""

from __future__ import annotations

from .errors import RlirError, RlirSemanticError, RlirSyntaxError, SourceSpan
from .loader import load_rlir_file, parse_rlir

__all__: list[str] = [
    "RlirError",
    "RlirSemanticError",
    "RlirSyntaxError",
    "SourceSpan",
    "load_rlir_file",
    "parse_rlir",
]
