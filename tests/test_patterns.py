from __future__ import annotations

import pytest

from rulegraph.errors import WildcardError
from rulegraph.patterns import (
    apply_wildcards,
    has_wildcards,
    inline_constraints,
    match,
    wildcard_names,
)


def test_wildcard_names_in_order_without_duplicates():
    assert wildcard_names("{sample}/{lane}_{sample}.fq") == ["sample", "lane"]
    assert wildcard_names("plain.txt") == []
    assert not has_wildcards("plain.txt")


def test_match_binds_wildcards():
    assert match("mapped/{sample}.sam", "mapped/A.sam") == {"sample": "A"}
    assert match("mapped/{sample}.sam", "sorted/A.sam") is None


def test_default_wildcard_does_not_cross_directories():
    assert match("{sample}.sam", "sub/A.sam") is None
    assert match("{sample}.sam", "A.sam") == {"sample": "A"}


def test_constraint_from_rule_and_inline():
    assert match("calls/{chrom}.vcf", "calls/chrX.vcf", {"chrom": r"chr\d+"}) is None
    assert match("calls/{chrom}.vcf", "calls/chr2.vcf", {"chrom": r"chr\d+"}) == {"chrom": "chr2"}
    assert inline_constraints("calls/{chrom,chr[0-9]+}.vcf") == {"chrom": "chr[0-9]+"}
    assert match("calls/{chrom,chr[0-9]+}.vcf", "calls/chr7.vcf") == {"chrom": "chr7"}


def test_repeated_wildcard_must_bind_same_value():
    assert match("{s}/{s}.txt", "A/A.txt") == {"s": "A"}
    assert match("{s}/{s}.txt", "A/B.txt") is None


def test_pattern_without_wildcards_matches_exactly():
    assert match("results/summary.txt", "results/summary.txt") == {}
    assert match("results/summary.txt", "results/summaryXtxt") is None


def test_apply_wildcards():
    assert apply_wildcards("mapped/{sample}.sam", {"sample": "B"}) == "mapped/B.sam"
    assert apply_wildcards("calls/{chrom,chr\\d+}.vcf", {"chrom": "chr1"}) == "calls/chr1.vcf"


def test_apply_wildcards_missing_name():
    with pytest.raises(WildcardError):
        apply_wildcards("{sample}/{lane}.fq", {"sample": "A"})


def test_invalid_constraint_regex():
    with pytest.raises(WildcardError):
        match("{x}.txt", "a.txt", {"x": "("})
