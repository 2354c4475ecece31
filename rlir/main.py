#!/usr/bin/env python3
"""rlir/main.py — CLI entry-point of the resource-obligation checker.

Usage examples
--------------
    # Check every routine of one or more IR files
    rlcheck check demo.rlir other.rlir

    # Machine-readable output, one JSON object per line
    rlcheck check demo.rlir -f json -o findings.jsonl

    # Tune the analysis
    rlcheck check demo.rlir --option permit_static_owning=true \\
        --suppress required.method.not.called

    # Inspect a routine's CFG (text summary or Graphviz DOT)
    rlcheck cfg demo.rlir --routine Demo.leak --dot

    # Show what each fulfilling loop of a routine calls on every element
    rlcheck summarize demo.rlir --routine Demo.closeAll

    # List the diagnostic ids
    rlcheck ids

Exit codes
----------
    0   Success (no errors).
    1   One or more diagnostics with severity ERROR were emitted.
    2   Infrastructure failure (bad file, bad option, analysis failure).

The module doubles as ``python -m rlir`` via the companion
``rlir/__main__.py``.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Dict, Optional, Sequence, TextIO

from mustcall_shims import __version__
from mustcall_shims.checkers import CheckerRunner, SuppressionManager
from mustcall_shims.config import AnalysisConfig
from mustcall_shims.ctrlflow_graph import cfg_summary
from mustcall_shims.declarations import Program
from mustcall_shims.diagnostics import ERROR_CATALOG
from mustcall_shims.errors import MustCallShimsError
from mustcall_shims.loop_summarizer import summarize_fulfilling_loops

from .errors import RlirError
from .loader import load_rlir_file

_log = logging.getLogger("rlir")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``rlir`` and ``mustcall_shims`` loggers.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler._rlcheck = True  # type: ignore[attr-defined]
    for name in ("rlir", "mustcall_shims"):
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # repeated main() calls replace the handler of the previous run
        for old in [h for h in logger.handlers if getattr(h, "_rlcheck", False)]:
            logger.removeHandler(old)
        logger.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """``None`` or ``"-"`` → ``sys.stdout``; otherwise open *dest*."""
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _load(raw: str) -> Optional[Program]:
    """Load one IR file; log and return ``None`` on failure."""
    path = Path(raw).expanduser()
    if not path.exists():
        _log.error("file not found: %s", path)
        return None
    try:
        return load_rlir_file(path)
    except RlirError as exc:
        sys.stderr.write(f"{exc}\n")
        return None


def _parse_options(pairs: Sequence[str]) -> Optional[AnalysisConfig]:
    """Turn ``KEY=VALUE`` strings into an :class:`AnalysisConfig`."""
    options: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            _log.error("malformed --option %r (expected KEY=VALUE)", pair)
            return None
        options[key.strip()] = value.strip()
    try:
        config = AnalysisConfig.from_mapping(options)
    except ValueError as exc:
        _log.error("%s", exc)
        return None
    for warning in config.validate():
        _log.warning("config: %s", warning)
    return config


def _find_routine(program: Program, name: str):
    routine = program.routine(name)
    if routine is None:
        _log.error(
            "no routine %r in %s (known: %s)",
            name, program.file, ", ".join(r.name for r in program.routines) or "none",
        )
    return routine


# ===========================================================================
# Sub-command implementations
# ===========================================================================

def cmd_check(args: argparse.Namespace) -> int:
    """Run every checker on the given files."""
    config = _parse_options(args.option)
    if config is None:
        return EXIT_INFRA

    suppressions = SuppressionManager()
    for error_id in args.suppress:
        suppressions.add_global_suppression(error_id)
    runner = CheckerRunner(suppressions=suppressions, config=config)

    out = _open_output(args.output)
    error_count = 0
    status = EXIT_OK
    try:
        for raw in args.files:
            program = _load(raw)
            if program is None:
                status = EXIT_INFRA
                continue
            results = runner.run(program, routines=args.routine or None)
            for name, message in results.failures.items():
                _log.error("%s: checker %s failed: %s", raw, name, message)
                status = EXIT_INFRA
            error_count += results.error_count

            if args.format == "json":
                text = results.to_json_lines()
            else:
                text = results.to_gcc_format()
            if text:
                out.write(text + "\n")
            if args.format == "summary":
                out.write(f"\n--- {raw} ---\n{results.summary()}\n")
    finally:
        if out is not sys.stdout:
            out.close()

    if status != EXIT_OK:
        return status
    return EXIT_ERROR if error_count > 0 else EXIT_OK


def cmd_cfg(args: argparse.Namespace) -> int:
    """Print the CFG of one routine."""
    program = _load(args.file)
    if program is None:
        return EXIT_INFRA
    routine = _find_routine(program, args.routine)
    if routine is None:
        return EXIT_INFRA
    out = _open_output(args.output)
    try:
        if args.dot:
            out.write(routine.cfg.to_dot(title=routine.name) + "\n")
        else:
            out.write(cfg_summary(routine.cfg) + "\n")
    finally:
        if out is not sys.stdout:
            out.close()
    return EXIT_OK


def cmd_summarize(args: argparse.Namespace) -> int:
    """Run the loop-body summarizer on every fulfilling loop of a routine."""
    config = _parse_options(args.option)
    if config is None:
        return EXIT_INFRA
    program = _load(args.file)
    if program is None:
        return EXIT_INFRA
    routine = _find_routine(program, args.routine)
    if routine is None:
        return EXIT_INFRA
    try:
        loops = summarize_fulfilling_loops(routine, config)
    except MustCallShimsError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA
    if not loops:
        print(f"{routine.name}: no fulfilling loops")
    for descriptor in loops:
        methods = ", ".join(sorted(descriptor.methods)) or "(nothing proven)"
        print(
            f"{descriptor.name or '<loop>'}: "
            f"for {descriptor.element.text} in {descriptor.collection.text}: {methods}"
        )
    return EXIT_OK


def cmd_ids(args: argparse.Namespace) -> int:
    """List every diagnostic id with its kind and severity."""
    width = max(len(error_id) for error_id in ERROR_CATALOG)
    for error_id in sorted(ERROR_CATALOG):
        spec = ERROR_CATALOG[error_id]
        print(f"{error_id:<{width}}  {spec.kind.value:<22}  {spec.severity.value}")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="rlcheck",
        description=(
            "Resource-obligation checker.\n\n"
            "Verifies that every value with a must-call obligation has its\n"
            "required methods called on every path of the routines in a\n"
            "textual IR file."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              rlcheck check demo.rlir
              rlcheck check demo.rlir -f json --suppress owning.collection
              rlcheck cfg demo.rlir --routine Demo.leak --dot
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_option_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--option",
            action="append",
            default=[],
            metavar="KEY=VALUE",
            help="Analysis option, e.g. permit_static_owning=true (repeatable).",
        )

    def _add_output_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # --- check -------------------------------------------------------------
    p_check = subparsers.add_parser(
        "check",
        help="Analyze IR files and report diagnostics.",
        description="Run the declaration and must-call consistency checkers.",
    )
    p_check.add_argument("files", nargs="+", metavar="FILE", help="IR file(s) to check.")
    p_check.add_argument(
        "-f", "--format",
        choices=["gcc", "json", "summary"],
        default="gcc",
        help="Output format (default: gcc).",
    )
    p_check.add_argument(
        "--suppress",
        action="append",
        default=[],
        metavar="ID",
        help="Suppress an error id everywhere; '*' suppresses all (repeatable).",
    )
    p_check.add_argument(
        "--routine",
        action="append",
        default=[],
        metavar="NAME",
        help="Only analyze this routine (repeatable).",
    )
    _add_option_arg(p_check)
    _add_output_arg(p_check)
    p_check.set_defaults(func=cmd_check)

    # --- cfg ---------------------------------------------------------------
    p_cfg = subparsers.add_parser(
        "cfg",
        help="Print the control-flow graph of a routine.",
    )
    p_cfg.add_argument("file", metavar="FILE")
    p_cfg.add_argument("--routine", required=True, metavar="NAME")
    p_cfg.add_argument("--dot", action="store_true", help="Emit Graphviz DOT.")
    _add_output_arg(p_cfg)
    p_cfg.set_defaults(func=cmd_cfg)

    # --- summarize ---------------------------------------------------------
    p_sum = subparsers.add_parser(
        "summarize",
        help="Summarize the fulfilling loops of a routine.",
    )
    p_sum.add_argument("file", metavar="FILE")
    p_sum.add_argument("--routine", required=True, metavar="NAME")
    _add_option_arg(p_sum)
    p_sum.set_defaults(func=cmd_summarize)

    # --- ids ---------------------------------------------------------------
    p_ids = subparsers.add_parser("ids", help="List diagnostic ids.")
    p_ids.set_defaults(func=cmd_ids)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except MustCallShimsError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
