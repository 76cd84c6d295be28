"""
Slicing configuration: override rules for calls known not to mutate state.

A `SliceConfiguration` is an immutable value. Updating rules produces a new
configuration; analyses that already ran keep the edges they computed.
"""
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple

from .utils import load_yaml

OBJECT = "OBJECT"
ARGUMENTS = "ARGUMENTS"
MODIFIABLE = frozenset({OBJECT, ARGUMENTS})


class OverrideRule(NamedTuple):
    object_name: Optional[str]
    function_name: str
    does_not_modify: FrozenSet[str]

    def matches(self, object_name: Optional[str], function_name: str) -> bool:
        if self.function_name != function_name:
            return False
        return self.object_name is None or self.object_name == object_name


def make_rule(function_name: str, does_not_modify: Iterable[str],
              object_name: Optional[str] = None) -> OverrideRule:
    if not function_name:
        raise ValueError("override rule needs a function name")
    members = frozenset(str(m).upper() for m in does_not_modify)
    unknown = members - MODIFIABLE
    if unknown:
        raise ValueError(f"unknown does_not_modify value(s): {sorted(unknown)}")
    return OverrideRule(object_name, function_name, members)


class SliceConfiguration:
    __slots__ = ("_rules",)

    def __init__(self, rules: Iterable[OverrideRule] = ()):
        object.__setattr__(self, "_rules", tuple(rules))

    def __setattr__(self, name, value):
        raise AttributeError("SliceConfiguration is immutable")

    @property
    def rules(self) -> Tuple[OverrideRule, ...]:
        return self._rules

    def with_rules(self, rules: Iterable[OverrideRule]) -> "SliceConfiguration":
        return SliceConfiguration(rules)

    def extended(self, rules: Iterable[OverrideRule]) -> "SliceConfiguration":
        return SliceConfiguration(self._rules + tuple(rules))

    def find_rule(self, object_name: Optional[str], function_name: str) -> Optional[OverrideRule]:
        for rule in self._rules:
            if rule.matches(object_name, function_name):
                return rule
        return None

    def __eq__(self, other):
        return isinstance(other, SliceConfiguration) and self._rules == other._rules

    def __hash__(self):
        return hash(self._rules)

    def __repr__(self):
        return f"SliceConfiguration(rules={list(self._rules)!r})"


DEFAULT_CONFIGURATION = SliceConfiguration()

# Opt-in list of common read-only dataframe and plotting calls.
PURE_CALL_RULES: List[OverrideRule] = [
    make_rule(name, [OBJECT, ARGUMENTS])
    for name in ("head", "tail", "describe", "info", "count", "mean", "sum",
                 "min", "max", "nunique", "value_counts", "isnull", "isna",
                 "copy", "to_string", "to_csv", "to_json", "to_parquet")
] + [
    make_rule(name, [OBJECT, ARGUMENTS], object_name="plt")
    for name in ("show", "plot", "scatter", "hist", "bar", "title", "xlabel",
                 "ylabel", "legend", "savefig")
] + [
    make_rule(name, [ARGUMENTS], object_name=module)
    for module in ("np", "pd")
    for name in ("array", "mean", "sum", "concat", "DataFrame", "Series")
]


def _rule_from_mapping(entry: Dict[str, Any]) -> OverrideRule:
    if not isinstance(entry, dict):
        raise ValueError(f"override rule must be a mapping, got {entry!r}")
    function_name = entry.get("function") or entry.get("function_name") or entry.get("functionName")
    object_name = entry.get("object") or entry.get("object_name") or entry.get("objectName")
    members = entry.get("does_not_modify") or entry.get("doesNotModify") or []
    if isinstance(members, str):
        members = [members]
    return make_rule(function_name, members, object_name=object_name)


def load_slice_configuration(path: Optional[str], include_pure_calls: bool = False) -> SliceConfiguration:
    """
    Read override rules from a YAML file of the form::

        include_pure_calls: true
        rules:
          - object: df
            function: head
            does_not_modify: [OBJECT]

    Entries are kept in file order; the curated pure-call rules are appended
    after them when requested either by argument or by the file.
    """
    data = load_yaml(path)
    entries = data.get("rules") or []
    if not isinstance(entries, list):
        raise ValueError(f"'rules' in {path} must be a list")
    rules = [_rule_from_mapping(e) for e in entries]
    if include_pure_calls or data.get("include_pure_calls"):
        rules.extend(PURE_CALL_RULES)
    return SliceConfiguration(rules)
