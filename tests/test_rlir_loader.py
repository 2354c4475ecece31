# tests/test_rlir_loader.py
"""
Tests for the IR loader: declaration records, program assembly, the
syntax and semantic error codes, and analysis of loaded programs.
"""

import textwrap

import pytest

from mustcall_shims.checkers import run_program
from mustcall_shims.ctrlflow_graph import BlockKind, EdgeKind
from mustcall_shims.declarations import Ownership, TypeKind
from mustcall_shims.loops import LoopKind
from mustcall_shims.oracles import UNKNOWN, ProgramPoint, known
from mustcall_shims.tac import LocalRef
from rlir import RlirSemanticError, RlirSyntaxError, SourceSpan, load_rlir_file, parse_rlir
from rlir.errors import RlirErrorCodes
from rlir.loader import FACT_NONE, TypeSpec, parse_tree


POOL_RLIR = """\
program "Pool.java";

type Socket mustcall(close);
type SocketList collection of Socket;
method Socket.close();
method Socket.flush();

routine Pool.closeAll(socks: SocketList owningcollection) @5 {
    block L conditional { branch Body else Done; }
    block Body {
        decl s : Socket = socks[i] @7;
        branch B1 else B2;
    }
    block B1 {
        c1: call Socket.close() on s @8;
        goto U;
    }
    block B2 {
        f1: call Socket.flush() on s @10;
        goto U;
    }
    block U { goto L; }
    block Done { goto exit; }
    edge entry -> L;
    loop fulfilling over socks as socks[i] cond L body Body update U name "closeAll";
    called s (close) at after c1;
    called s (close, flush) at after f1;
}
"""


def routine_source(*items, header=""):
    """One-routine program ``Demo.m`` with the given routine items."""
    body = textwrap.indent("\n".join(items), "    ")
    return (
        'program "Demo.java";\n'
        "type Socket mustcall(close);\n"
        "method Socket.close();\n"
        f"{header}"
        "routine Demo.m() @1 {\n"
        f"{body}\n"
        "}\n"
    )


def node_labeled(routine, label):
    return next(n for n in routine.cfg.nodes() if n.label == label)


class TestParseTree:

    def test_records(self, demo_rlir):
        spec = parse_tree(demo_rlir)
        assert spec.file == "Demo.java"
        types = [d for d in spec.declarations if isinstance(d, TypeSpec)]
        assert [(t.name, t.kind, t.element_type) for t in types] == [
            ("Socket", "plain", None),
            ("SocketList", "collection", "Socket"),
        ]
        assert types[0].must_call == ["close"]

    def test_type_shapes(self):
        spec = parse_tree("type Grid array of Socket dims 2; type Res mustcall ?;")
        grid, res = spec.declarations
        assert (grid.kind, grid.element_type, grid.dimensions) == ("array", "Socket", 2)
        assert res.must_call is None

    def test_fact_values(self):
        spec = parse_tree(routine_source(
            "mustcall s ?;",
            "mustcall_elements c none;",
            "called s (close, flush);",
        ))
        routine = spec.declarations[-1]
        assert [f.value for f in routine.facts] == [None, FACT_NONE, ["close", "flush"]]

    def test_string_escapes(self):
        assert parse_tree('program "dir\\\\A.java";').file == "dir\\A.java"


class TestAssembly:

    def test_demo_program(self, demo_rlir):
        program = parse_rlir(demo_rlir)
        assert program.file == "Demo.java"
        assert [r.name for r in program.routines] == ["Demo.leak", "Demo.tidy"]
        assert program.types.must_call("Socket") == frozenset({"close"})
        assert program.types.get("SocketList").kind is TypeKind.COLLECTION
        tidy = program.routine("tidy")
        assert tidy.line == 10
        close = node_labeled(tidy, "c1")
        assert close.line == 12
        assert tidy.called_methods.called_methods(
            LocalRef("s"), ProgramPoint.after(close)
        ) == {"close"}

    def test_file_name_without_program_declaration(self):
        program = parse_rlir("type Socket mustcall(close);", "unit.rlir")
        assert program.file == "unit.rlir"

    def test_fields_and_methods(self):
        program = parse_rlir(
            "field Pool.socks : SocketList owningcollection final @3;\n"
            "method Sink.take(s: Socket owning);\n"
            "method Builder.with(s: Socket): Builder returns_this;\n"
            "method constructor Pool.<init>() creates(this);\n"
        )
        socks = program.classes["Pool"].fields["socks"]
        assert socks.ownership is Ownership.OWNING_COLLECTION
        assert socks.final and not socks.static
        assert socks.line == 3
        take = program.method("Sink.take")
        assert take.params[0].ownership is Ownership.OWNING
        assert program.method("Builder.with").returns_this
        ctor = program.method("Pool.<init>")
        assert ctor.is_constructor
        assert ctor.creates_must_call_for == ("this",)

    def test_routine_structure(self):
        program = parse_rlir(routine_source(
            "suppress(owning.collection);",
            "local x : Socket owning @2;",
            "block A scope(x) conditional { branch B else exit; }",
            "block B { throws IOException; }",
            "edge entry -> A;",
        ))
        routine = program.routine("Demo.m")
        assert routine.suppressed_ids == {"owning.collection"}
        assert routine.locals["x"].ownership is Ownership.OWNING
        a = routine.cfg.block("A")
        assert a.kind is BlockKind.CONDITIONAL
        assert [(e.dst.label, e.kind) for e in a.successors] == [
            ("B", EdgeKind.THEN), ("exit", EdgeKind.ELSE),
        ]
        (edge,) = routine.cfg.block("B").successors
        assert (edge.dst.label, edge.kind, edge.exception_type) == (
            "exceptional", EdgeKind.EXCEPTION, "IOException",
        )

    def test_facts(self):
        program = parse_rlir(routine_source(
            "block entry { n1: $t0 = new Socket() @2; goto exit; }",
            "mustcall $t0 (close, flush) at after n1;",
            "mustcall r ?;",
            "mustcall_elements c none;",
            "called_elements c (close) at edge entry -> exit;",
        ))
        routine = program.routine("m")
        n1 = node_labeled(routine, "n1")
        point = ProgramPoint.after(n1)
        mc = routine.must_call
        assert mc.required_methods(LocalRef("$t0"), point) == known(["close", "flush"])
        assert mc.required_methods(LocalRef("r"), point) is UNKNOWN
        assert mc.required_methods_on_elements(LocalRef("c"), point) is None
        edge = ProgramPoint.edge(routine.cfg.entry, routine.cfg.block("exit"))
        assert routine.called_methods.called_methods_on_elements(LocalRef("c"), edge) == {"close"}

    def test_loop_descriptor(self):
        program = parse_rlir(POOL_RLIR)
        (loop,) = list(program.loops)
        assert loop.kind is LoopKind.FULFILLING
        assert loop.name == "closeAll"
        assert loop.collection.text == "socks"
        assert loop.element.text == "socks[i]"
        assert loop.condition_block.label == "L"
        assert loop.update_block.label == "U"

    def test_allocating_loop_site(self):
        program = parse_rlir(routine_source(
            "block L { branch Body else exit; }",
            "block Body { w: arr[i] = $t0; goto L; }",
            "edge entry -> L;",
            "loop allocating over arr as arr[i] cond L body Body update Body "
            "site w methods(close);",
        ))
        (loop,) = list(program.loops)
        assert loop.element_site is node_labeled(program.routine("m"), "w")
        assert loop.methods == {"close"}

    def test_explicit_and_implicit_temporaries_do_not_collide(self):
        program = parse_rlir(routine_source(
            "block entry {",
            "    n1: $t0 = new Socket();",
            "    n2: new Socket();",
            "    goto exit;",
            "}",
        ))
        routine = program.routine("m")
        assert node_labeled(routine, "n2").result.name != "$t0"


class TestAnalysis:

    def test_demo_findings(self, demo_rlir):
        results = run_program(parse_rlir(demo_rlir, "demo.rlir"))
        (diag,) = results.diagnostics
        assert diag.error_id == "required.method.not.called"
        assert diag.routine == "Demo.leak"
        assert (diag.location.file, diag.location.line) == ("Demo.java", 4)

    def test_fulfilling_loop_file_is_clean(self):
        program = parse_rlir(POOL_RLIR)
        assert run_program(program).diagnostics == []
        (loop,) = list(program.loops)
        assert loop.methods == {"close"}
        assert program.loops.is_marked_fulfilling(loop)

    def test_routine_suppressions_apply(self, demo_rlir):
        source = demo_rlir.replace(
            "routine Demo.leak() @3 {",
            "routine Demo.leak() @3 {\n    suppress(required.method.not.called);",
        )
        assert run_program(parse_rlir(source)).diagnostics == []


class TestSyntaxErrors:

    def test_incomplete_parse(self):
        source = 'program "A.java";\n\ntype ;\n'
        with pytest.raises(RlirSyntaxError) as info:
            parse_rlir(source, "A.rlir")
        err = info.value
        assert err.code == "RLIR-1002"
        assert err.code is RlirErrorCodes.INCOMPLETE_PARSE
        assert err.span == SourceSpan("A.rlir", 3, 1)
        assert str(err).startswith("A.rlir:3:1: error: unexpected input")
        assert str(err).endswith("[RLIR-1002]")

    def test_invalid_reference(self):
        with pytest.raises(RlirSyntaxError) as info:
            parse_rlir(routine_source("block entry { decl s : Socket = a[b.]; goto exit; }"))
        assert info.value.code == RlirErrorCodes.INVALID_REFERENCE


class TestSemanticErrors:

    @pytest.mark.parametrize("items, code", [
        (["block exit { }"], RlirErrorCodes.DUPLICATE_BLOCK),
        (["block A { }", "block A { }"], RlirErrorCodes.DUPLICATE_BLOCK),
        (["block entry { n1: new Socket(); n1: new Socket(); goto exit; }"],
         RlirErrorCodes.DUPLICATE_LABEL),
        (["block entry { g: goto exit; }"], RlirErrorCodes.INVALID_DECLARATION),
        (["block entry { goto nowhere; }"], RlirErrorCodes.UNDEFINED_BLOCK),
        (["edge entry -> nowhere;"], RlirErrorCodes.UNDEFINED_BLOCK),
        (["called s (close) at edge entry -> nowhere;"], RlirErrorCodes.UNDEFINED_BLOCK),
        (["called s (close) at after zz;"], RlirErrorCodes.UNDEFINED_LABEL),
        (["mustcall s none;"], RlirErrorCodes.INVALID_DECLARATION),
        (["mustcall_elements c ?;"], RlirErrorCodes.INVALID_DECLARATION),
        (["called s none;"], RlirErrorCodes.INVALID_DECLARATION),
        (["called_elements c ?;"], RlirErrorCodes.INVALID_DECLARATION),
    ])
    def test_routine_errors(self, items, code):
        with pytest.raises(RlirSemanticError) as info:
            parse_rlir(routine_source(*items), "Demo.rlir")
        assert info.value.code == code
        assert info.value.span.file == "Demo.rlir"

    def test_undefined_loop_site(self):
        with pytest.raises(RlirSemanticError) as info:
            parse_rlir(routine_source(
                "block L { goto exit; }",
                "loop allocating over a as a[i] cond L body L update L site w;",
            ))
        assert info.value.code == RlirErrorCodes.UNDEFINED_LABEL

    def test_duplicate_routine(self):
        source = routine_source() + "routine Demo.m() { }\n"
        with pytest.raises(RlirSemanticError) as info:
            parse_rlir(source)
        assert info.value.code == RlirErrorCodes.DUPLICATE_ROUTINE
        assert "defined twice" in info.value.message

    def test_field_with_two_ownerships(self):
        with pytest.raises(RlirSemanticError, match="two ownership annotations"):
            parse_rlir("field Pool.s : Socket owning notowning;")

    def test_error_span_points_at_the_declaration(self):
        with pytest.raises(RlirSemanticError) as info:
            parse_rlir(routine_source("block exit { }"), "Demo.rlir")
        # line 5: the block, after three header lines and the routine line
        assert info.value.span.line == 5
        assert "is predeclared" in str(info.value)


class TestLoadFile:

    def test_load(self, tmp_path, demo_rlir):
        path = tmp_path / "demo.rlir"
        path.write_text(demo_rlir, encoding="utf-8")
        program = load_rlir_file(path)
        assert program.file == "Demo.java"
        assert len(program.routines) == 2

    def test_file_name_is_used_in_errors(self, tmp_path):
        path = tmp_path / "bad.rlir"
        path.write_text("routine Demo.m() { block exit { } }\n", encoding="utf-8")
        with pytest.raises(RlirSemanticError) as info:
            load_rlir_file(str(path))
        assert info.value.span.file == str(path)
