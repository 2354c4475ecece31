"""
mustcall_shims.config
=====================

Tuning knobs for the must-call consistency analysis.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, FrozenSet, List, Mapping, Optional

DEFAULT_IGNORED_EXCEPTIONS: FrozenSet[str] = frozenset({
    "NullPointerException",
    "ClassCastException",
    "ArrayIndexOutOfBoundsException",
    "NegativeArraySizeException",
    "ArithmeticException",
    "IllegalMonitorStateException",
})


@dataclass
class AnalysisConfig:
    """Options of one analysis run.

    no_lightweight_ownership
        Ignore ``@Owning``/``@NotOwning`` on parameters and returns:
        passing a resource never transfers ownership and every return does.
    permit_static_owning
        Do not check reassignments of static owning fields.
    permit_initialization_leak
        Do not check the first assignment of an owning field in a
        constructor.
    count_must_call
        Count tracked resources whose type name starts with ``java``.
    skip_uses
        Regular expression; obligations whose type name matches are never
        reported.
    ignored_exceptions
        Exception types whose exceptional edges are not followed.
    max_worklist_items
        Safety bound on the number of dequeued worklist items per routine.
    """
    no_lightweight_ownership: bool = False
    permit_static_owning: bool = False
    permit_initialization_leak: bool = False
    count_must_call: bool = False
    skip_uses: Optional[str] = None
    ignored_exceptions: FrozenSet[str] = field(
        default_factory=lambda: DEFAULT_IGNORED_EXCEPTIONS
    )
    max_worklist_items: int = 1_000_000

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if self.max_worklist_items <= 0:
            warnings.append("max_worklist_items must be positive")
        if self.skip_uses:
            try:
                re.compile(self.skip_uses)
            except re.error as exc:
                warnings.append(f"skip_uses is not a valid regular expression: {exc}")
        return warnings

    def skips(self, type_name: Optional[str]) -> bool:
        """Should obligations of *type_name* be left unreported?"""
        if not self.skip_uses or not type_name:
            return False
        return re.match(self.skip_uses, type_name) is not None

    def is_ignored_exception(self, exception_type: Optional[str]) -> bool:
        if not exception_type:
            return False
        simple = exception_type.rsplit(".", 1)[-1]
        return exception_type in self.ignored_exceptions or simple in self.ignored_exceptions

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from ``key=value`` style options.

        Strings are coerced to the field's type; unknown keys raise
        ``ValueError``.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, raw in options.items():
            name = key.replace("-", "_")
            if name not in known:
                raise ValueError(f"unknown analysis option {key!r}")
            kwargs[name] = _coerce(name, raw)
        return cls(**kwargs)


def _coerce(name: str, raw: Any) -> Any:
    if name == "skip_uses":
        return None if raw in (None, "") else str(raw)
    if name == "ignored_exceptions":
        if isinstance(raw, str):
            return frozenset(p.strip() for p in raw.split(",") if p.strip())
        return frozenset(raw)
    if name == "max_worklist_items":
        return int(raw)
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"option {name!r} expects a boolean, got {raw!r}")
    return bool(raw)


__all__ = ["AnalysisConfig", "DEFAULT_IGNORED_EXCEPTIONS"]
