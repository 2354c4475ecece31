# tests/test_validators.py
"""
Tests for the declaration checks of @OwningCollection / @Owning on
fields, parameters and local variables.
"""

from mustcall_shims.diagnostics import DiagnosticSink
from mustcall_shims.routine_builder import RoutineBuilder, define_field
from mustcall_shims.validators import validate_program
from tests.conftest import analyze, builder, ids


class TestFields:

    def test_owning_collection_field_must_be_final(self, program):
        define_field(program, "Pool", "socks", "SocketList", "owningcollection", line=3)
        sink = validate_program(program)
        assert ids(sink.diagnostics) == ["owningcollection.field.not.final"]
        (diag,) = sink.diagnostics
        assert diag.message == "@OwningCollection field socks must be final"
        assert str(diag.location) == "Demo.java:3"
        assert diag.checker_name == "declarations"

    def test_static_owning_collection_field(self, program):
        define_field(program, "Pool", "socks", "SocketList", "owningcollection", final=True, static=True)
        assert ids(validate_program(program).diagnostics) == ["owningcollection.field.static"]

    def test_owning_collection_on_plain_type(self, program):
        define_field(program, "Pool", "sock", "Socket", "owningcollection", final=True)
        (diag,) = validate_program(program).diagnostics
        assert diag.error_id == "owningcollection.noncollection"
        assert diag.message.endswith("but sock has type Socket")

    def test_multi_dimensional_array(self, program):
        define_field(program, "Pool", "grid", "Socket[][]", "owningcollection", final=True)
        assert ids(validate_program(program).diagnostics) == ["owningcollection.noncollection"]

    def test_well_formed_fields(self, program):
        define_field(program, "Pool", "socks", "SocketList", "owningcollection", final=True)
        define_field(program, "Pool", "arr", "Socket[]", "owningcollection", final=True)
        define_field(program, "Pool", "sock", "Socket", "owning")
        assert len(validate_program(program)) == 0

    def test_owning_on_collection(self, program):
        define_field(program, "Pool", "socks", "SocketList", "owning")
        (diag,) = validate_program(program).diagnostics
        assert diag.error_id == "owning.collection"
        assert "use @OwningCollection instead of @Owning" in diag.message

    def test_shared_sink(self, program):
        define_field(program, "Pool", "socks", "SocketList", "owning")
        sink = DiagnosticSink("mine")
        assert validate_program(program, sink) is sink
        assert sink.diagnostics[0].checker_name == "mine"


class TestParameters:

    def test_owning_collection_parameter_type(self, program):
        RoutineBuilder(program, "Pool", "adopt", params=[("a", "Socket", "owningcollection")], line=9)
        (diag,) = validate_program(program).diagnostics
        assert diag.error_id == "owningcollection.noncollection"
        assert diag.routine == "Pool.adopt"
        assert diag.location.line == 9

    def test_owning_collection_parameter(self, program):
        RoutineBuilder(program, "Pool", "adopt", params=[("a", "SocketList", "owningcollection")])
        assert len(validate_program(program)) == 0

    def test_owning_parameter_of_collection_type(self, program):
        RoutineBuilder(program, "Pool", "adopt", params=[("a", "Socket[]", "owning")])
        assert ids(validate_program(program).diagnostics) == ["owning.collection"]


class TestLocals:

    def test_owning_collection_local_of_plain_type(self, program):
        b = builder(program, "local")
        b.decl("grid", "Socket[][]", "owningcollection", line=4)
        b.goto("exit")
        diags = analyze(b.build())
        assert ids(diags) == ["owningcollection.noncollection"]
        assert diags[0].location.line == 4

    def test_owning_local_of_collection_type(self, program):
        b = builder(program, "local")
        b.decl("socks", "SocketList", "owning")
        b.goto("exit")
        assert ids(analyze(b.build())) == ["owning.collection"]

    def test_well_formed_local(self, program):
        b = builder(program, "local")
        b.decl("arr", "Socket[]", "owningcollection")
        b.goto("exit")
        assert analyze(b.build()) == []
