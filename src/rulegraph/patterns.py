# patterns.py
# Wildcard path patterns: "mapped/{sample}.sam", "calls/{chrom,chr[0-9]+}.vcf".
# A wildcard binds any non-separator characters unless the pattern (or the
# rule) gives it an explicit regular expression.

from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import WildcardError

DEFAULT_WILDCARD_REGEX = r"[^/]+"

_WILDCARD_RE = re.compile(
    r"""
    \{
        \s*(?P<name>\w+)\s*
        (?:,\s*(?P<constraint>(?:[^{}]+|\{\d+(?:,\d*)?\})*))?
    \}
    """,
    re.VERBOSE,
)


def wildcard_names(pattern: str) -> List[str]:
    """Return the wildcard names of a pattern, in order of first appearance."""
    seen: List[str] = []
    for m in _WILDCARD_RE.finditer(pattern):
        name = m.group("name")
        if name not in seen:
            seen.append(name)
    return seen


def inline_constraints(pattern: str) -> Dict[str, str]:
    """Constraints written inside the pattern itself, e.g. {sample,[A-Z]+}."""
    out: Dict[str, str] = {}
    for m in _WILDCARD_RE.finditer(pattern):
        if m.group("constraint"):
            out.setdefault(m.group("name"), m.group("constraint").strip())
    return out


def has_wildcards(pattern: str) -> bool:
    return _WILDCARD_RE.search(pattern) is not None


@lru_cache(maxsize=1024)
def _compile(pattern: str, constraints: Tuple[Tuple[str, str], ...]) -> "re.Pattern[str]":
    given = dict(constraints)
    parts: List[str] = []
    seen: set = set()
    last = 0
    for m in _WILDCARD_RE.finditer(pattern):
        parts.append(re.escape(pattern[last:m.start()]))
        name = m.group("name")
        if name in seen:
            # same wildcard twice must bind the same value
            parts.append(f"(?P={name})")
        else:
            seen.add(name)
            inline = m.group("constraint")
            regex = inline.strip() if inline else given.get(name, DEFAULT_WILDCARD_REGEX)
            parts.append(f"(?P<{name}>{regex})")
        last = m.end()
    parts.append(re.escape(pattern[last:]))
    try:
        return re.compile("".join(parts))
    except re.error as e:
        raise WildcardError(
            message=f"Invalid wildcard constraint in pattern {pattern!r}: {e}",
            details={"pattern": pattern},
        )


def regex_for(pattern: str, constraints: Optional[Mapping[str, str]] = None) -> "re.Pattern[str]":
    return _compile(pattern, tuple(sorted((constraints or {}).items())))


def match(
    pattern: str,
    path: str,
    constraints: Optional[Mapping[str, str]] = None,
) -> Optional[Dict[str, str]]:
    """
    Match a concrete path against a pattern.

    Returns:
      dict of wildcard bindings (empty for a pattern without wildcards),
      or None if the path does not match.
    """
    m = regex_for(pattern, constraints).fullmatch(path)
    if m is None:
        return None
    return {name: m.group(name) for name in wildcard_names(pattern)}


def apply_wildcards(pattern: str, wildcards: Mapping[str, str]) -> str:
    """Substitute bound wildcard values into a pattern."""

    def _sub(m: "re.Match[str]") -> str:
        name = m.group("name")
        try:
            return str(wildcards[name])
        except KeyError:
            raise WildcardError(
                message=f"Wildcard {name!r} in {pattern!r} cannot be determined from the output files",
                details={"pattern": pattern, "known": sorted(wildcards)},
            )

    return _WILDCARD_RE.sub(_sub, pattern)
