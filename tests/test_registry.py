from __future__ import annotations

import pytest

from rulegraph import rule
from rulegraph.errors import (
    AmbiguousRuleError,
    ConfigurationError,
    DuplicateRuleError,
    NoRuleError,
    WildcardError,
)
from rulegraph.registry import RuleRegistry


def test_duplicate_rule_name():
    with pytest.raises(DuplicateRuleError):
        RuleRegistry([rule("a", output="a.txt"), rule("a", output="b.txt")])


def test_lookup_binds_wildcards():
    reg = RuleRegistry([rule("align", input="reads/{s}.fq", output="mapped/{s}.sam", shell="x")])
    found = reg.lookup_by_output("mapped/A.sam")
    assert found.rule.name == "align"
    assert found.wildcards == {"s": "A"}


def test_lookup_ambiguous_without_ruleorder(workdir):
    reg = RuleRegistry([
        rule("a", output="{x}.txt", shell="touch {output}"),
        rule("b", output="{x}.txt", shell="touch {output}"),
    ])
    with pytest.raises(AmbiguousRuleError) as exc:
        reg.lookup_by_output("f.txt", workdir)
    assert "a, b" in str(exc.value)


def test_ruleorder_resolves_ambiguity(workdir):
    reg = RuleRegistry([
        rule("a", output="{x}.txt", shell="touch {output}"),
        rule("b", output="{x}.txt", shell="touch {output}"),
    ])
    reg.ruleorder("b", "a")
    assert reg.lookup_by_output("f.txt", workdir).rule.name == "b"


def test_ruleorder_clauses_chain(workdir):
    reg = RuleRegistry([
        rule(name, output="{x}.txt", shell="touch {output}") for name in ("a", "b", "c")
    ])
    reg.ruleorder("a", "b")
    reg.ruleorder("b", "c")
    assert reg.lookup_by_output("f.txt", workdir).rule.name == "a"


def test_contradicting_ruleorder_stays_ambiguous(workdir):
    reg = RuleRegistry([
        rule("a", output="{x}.txt", shell="touch {output}"),
        rule("b", output="{x}.txt", shell="touch {output}"),
    ])
    reg.ruleorder("a", "b")
    reg.ruleorder("b", "a")
    with pytest.raises(AmbiguousRuleError):
        reg.lookup_by_output("f.txt", workdir)


def test_constraints_remove_ambiguity(workdir):
    reg = RuleRegistry([
        rule("num", output="{x}.txt", wildcard_constraints={"x": r"\d+"}, shell="touch {output}"),
        rule("word", output="{x}.txt", wildcard_constraints={"x": "[a-z]+"}, shell="touch {output}"),
    ])
    assert reg.lookup_by_output("12.txt", workdir).rule.name == "num"
    assert reg.lookup_by_output("ab.txt", workdir).rule.name == "word"


def test_no_rule_for_missing_file(workdir):
    reg = RuleRegistry([rule("a", output="a.txt", shell="touch a.txt")])
    with pytest.raises(NoRuleError):
        reg.lookup_by_output("b.txt", workdir)


def test_existing_source_file_has_no_rule(workdir, write):
    write("data/in.txt")
    reg = RuleRegistry([rule("a", output="a.txt", shell="touch a.txt")])
    assert reg.lookup_by_output("data/in.txt", workdir) is None


def test_outputs_must_share_wildcards():
    with pytest.raises(WildcardError):
        RuleRegistry([rule("a", output=["{x}.txt", "{y}.log"], shell="true")])


def test_input_wildcards_must_come_from_output():
    with pytest.raises(WildcardError):
        RuleRegistry([rule("a", input="{y}.in", output="{x}.txt", shell="true")])


def test_aggregate_rule_cannot_have_action():
    with pytest.raises(ConfigurationError):
        RuleRegistry([rule("all", input="a.txt", shell="true")])


def test_ruleorder_unknown_rule():
    reg = RuleRegistry([rule("a", output="a.txt", shell="true")])
    with pytest.raises(ConfigurationError):
        reg.ruleorder("a", "missing")


def test_first_rule_and_mapping():
    reg = RuleRegistry([rule("all", input="a.txt"), rule("a", output="a.txt", shell="true")])
    assert reg.first_rule.name == "all"
    assert "a" in reg
    assert [r.name for r in reg] == ["all", "a"]
    assert len(reg) == 2
