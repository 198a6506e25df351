from __future__ import annotations

import pytest

from rulegraph import expand, protected, rule, temp, wf
from rulegraph.model import flags_of


def test_expand_product():
    assert expand("mapped/{sample}.sam", sample=["A", "B"]) == ["mapped/A.sam", "mapped/B.sam"]
    assert expand("{a}_{b}.txt", a=["x", "y"], b=[1, 2]) == ["x_1.txt", "x_2.txt", "y_1.txt", "y_2.txt"]


def test_expand_zip():
    assert expand("{a}_{b}.txt", zip, a=["x", "y"], b=["1", "2"]) == ["x_1.txt", "y_2.txt"]


def test_expand_keeps_escaped_wildcards():
    assert expand("{sample}.{{ext}}", sample=["A"]) == ["A.{ext}"]


def test_temp_and_protected_flags():
    assert "temp" in flags_of(temp("a.txt"))
    assert "protected" in flags_of(protected("a.txt"))
    assert temp("a.txt") == "a.txt"


def test_rule_named_inputs_and_outputs():
    r = rule(
        "align",
        input={"reads": "reads/{s}.fq", "ref": "ref.fa"},
        output=temp("mapped/{s}.sam"),
        shell="bwa {input.ref} {input.reads} > {output}",
    )
    assert r.input == [("reads", "reads/{s}.fq"), ("ref", "ref.fa")]
    assert r.output_patterns == ["mapped/{s}.sam"]
    assert r.wildcard_names == ["s"]
    assert not r.is_aggregate


def test_rule_rejects_shell_and_run():
    with pytest.raises(ValueError):
        rule("x", output="x.txt", shell="touch x.txt", run=lambda job: None)


def test_aggregate_rule():
    r = rule("all", input=["a.txt", "b.txt"])
    assert r.is_aggregate
    assert wf(r) == [r]


def test_rule_fingerprint_tracks_action():
    a = rule("x", output="x.txt", shell="echo 1 > {output}")
    b = rule("x", output="x.txt", shell="echo 2 > {output}")
    assert a.fingerprint() == rule("x", output="x.txt", shell="echo 1 > {output}").fingerprint()
    assert a.fingerprint() != b.fingerprint()
