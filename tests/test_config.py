# tests/test_config.py
"""
Tests for AnalysisConfig: option parsing, validation and the switches
that change what the analysis reports.
"""

import pytest

from mustcall_shims.config import DEFAULT_IGNORED_EXCEPTIONS, AnalysisConfig
from mustcall_shims.routine_builder import define_field
from tests.conftest import analyze, builder, ids, open_socket


class TestFromMapping:

    def test_defaults(self):
        cfg = AnalysisConfig.from_mapping({})
        assert cfg == AnalysisConfig()
        assert cfg.ignored_exceptions == DEFAULT_IGNORED_EXCEPTIONS

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("YES", True), ("1", True), ("on", True),
        ("false", False), ("no", False), ("0", False), ("Off", False),
    ])
    def test_boolean_strings(self, raw, expected):
        cfg = AnalysisConfig.from_mapping({"permit_static_owning": raw})
        assert cfg.permit_static_owning is expected

    def test_dashes_are_accepted(self):
        cfg = AnalysisConfig.from_mapping({"no-lightweight-ownership": "true"})
        assert cfg.no_lightweight_ownership

    def test_bad_boolean(self):
        with pytest.raises(ValueError, match="expects a boolean"):
            AnalysisConfig.from_mapping({"count_must_call": "maybe"})

    def test_unknown_option(self):
        with pytest.raises(ValueError, match="unknown analysis option"):
            AnalysisConfig.from_mapping({"frobnicate": "1"})

    def test_exception_list(self):
        cfg = AnalysisConfig.from_mapping({"ignored_exceptions": "IOException, Error,"})
        assert cfg.ignored_exceptions == frozenset({"IOException", "Error"})

    def test_numbers_and_patterns(self):
        cfg = AnalysisConfig.from_mapping({"max_worklist_items": "50", "skip_uses": ""})
        assert cfg.max_worklist_items == 50
        assert cfg.skip_uses is None


class TestValidate:

    def test_valid(self):
        assert AnalysisConfig().validate() == []

    def test_problems_are_listed(self):
        cfg = AnalysisConfig(max_worklist_items=0, skip_uses="(")
        warnings = cfg.validate()
        assert len(warnings) == 2
        assert warnings[0] == "max_worklist_items must be positive"


class TestSwitches:

    def test_skip_uses_matches_from_the_start(self):
        cfg = AnalysisConfig(skip_uses="Sock")
        assert cfg.skips("Socket")
        assert not cfg.skips("java.net.Socket")
        assert not AnalysisConfig().skips("Socket")

    def test_ignored_exception_by_simple_name(self):
        cfg = AnalysisConfig()
        assert cfg.is_ignored_exception("java.lang.ClassCastException")
        assert not cfg.is_ignored_exception("java.io.IOException")
        assert not cfg.is_ignored_exception(None)

    def test_skipped_type_is_not_reported(self, program):
        b = builder(program, "skipped")
        open_socket(b)
        b.goto("exit")
        assert analyze(b.build(), AnalysisConfig(skip_uses="Sock.*")) == []

    def test_static_owning_field_reassignment(self, program):
        define_field(program, "Demo", "shared", "Socket", "owning", static=True)
        b = builder(program, "reopen")
        node = b.new("Socket")
        b.assign("this.shared", node.result)
        b.goto("exit")
        routine = b.build()
        assert ids(analyze(routine)) == [
            "missing.creates.mustcall.for", "required.method.not.called",
        ]
        assert analyze(routine, AnalysisConfig(permit_static_owning=True)) == []
