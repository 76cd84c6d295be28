"""
Tests for override rules and slicing configuration.
"""

import textwrap

import pytest

from cellgather.config import (
    ARGUMENTS,
    DEFAULT_CONFIGURATION,
    OBJECT,
    PURE_CALL_RULES,
    SliceConfiguration,
    load_slice_configuration,
    make_rule,
)


class TestMakeRule:

    def test_members_are_uppercased(self):
        rule = make_rule("head", ["object", "Arguments"], object_name="df")
        assert rule.does_not_modify == frozenset({OBJECT, ARGUMENTS})
        assert rule.object_name == "df"

    def test_missing_function_name(self):
        with pytest.raises(ValueError):
            make_rule("", [OBJECT])

    def test_unknown_member(self):
        with pytest.raises(ValueError):
            make_rule("head", ["RECEIVER"])

    def test_rule_without_object_matches_any_receiver(self):
        rule = make_rule("head", [OBJECT])
        assert rule.matches("df", "head")
        assert rule.matches(None, "head")
        assert not rule.matches("df", "tail")


class TestSliceConfiguration:

    def test_is_immutable(self):
        configuration = SliceConfiguration([make_rule("head", [OBJECT])])
        with pytest.raises(AttributeError):
            configuration.rules = ()

    def test_extended_returns_new_value(self):
        extended = DEFAULT_CONFIGURATION.extended([make_rule("head", [OBJECT])])
        assert DEFAULT_CONFIGURATION.rules == ()
        assert len(extended.rules) == 1
        assert extended != DEFAULT_CONFIGURATION

    def test_with_rules_replaces(self):
        first = SliceConfiguration([make_rule("head", [OBJECT])])
        second = first.with_rules([make_rule("tail", [OBJECT])])
        assert [r.function_name for r in second.rules] == ["tail"]

    def test_first_matching_rule_wins(self):
        specific = make_rule("show", [OBJECT], object_name="plt")
        general = make_rule("show", [ARGUMENTS])
        configuration = SliceConfiguration([specific, general])
        assert configuration.find_rule("plt", "show") is specific
        assert configuration.find_rule("fig", "show") is general
        assert configuration.find_rule("fig", "plot") is None

    def test_equal_configurations_hash_alike(self):
        rules = [make_rule("head", [OBJECT])]
        assert SliceConfiguration(rules) == SliceConfiguration(rules)
        assert hash(SliceConfiguration(rules)) == hash(SliceConfiguration(rules))


class TestLoadSliceConfiguration:

    def write(self, tmp_path, text):
        path = tmp_path / "rules.yaml"
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return str(path)

    def test_no_path_gives_empty_configuration(self):
        assert load_slice_configuration(None) == DEFAULT_CONFIGURATION
        assert load_slice_configuration(None, include_pure_calls=True).rules == tuple(PURE_CALL_RULES)

    def test_rules_keep_file_order(self, tmp_path):
        path = self.write(tmp_path, """
            rules:
              - object: df
                function: head
                does_not_modify: [OBJECT]
              - functionName: display
                doesNotModify: arguments
        """)
        rules = load_slice_configuration(path).rules
        assert [(r.object_name, r.function_name) for r in rules] == [("df", "head"), (None, "display")]
        assert rules[1].does_not_modify == frozenset({ARGUMENTS})

    def test_pure_calls_flag_in_file(self, tmp_path):
        path = self.write(tmp_path, """
            include_pure_calls: true
            rules:
              - function: render
                does_not_modify: [OBJECT]
        """)
        rules = load_slice_configuration(path).rules
        assert rules[0].function_name == "render"
        assert rules[1:] == tuple(PURE_CALL_RULES)

    def test_entry_must_be_mapping(self, tmp_path):
        path = self.write(tmp_path, """
            rules:
              - head
        """)
        with pytest.raises(ValueError):
            load_slice_configuration(path)

    def test_rules_must_be_list(self, tmp_path):
        path = self.write(tmp_path, """
            rules:
              function: head
        """)
        with pytest.raises(ValueError):
            load_slice_configuration(path)

    def test_file_must_be_mapping(self, tmp_path):
        path = self.write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ValueError):
            load_slice_configuration(path)
