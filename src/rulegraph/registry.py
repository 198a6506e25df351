# registry.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from .errors import AmbiguousRuleError, ConfigurationError, DuplicateRuleError, NoRuleError, WildcardError
from .model import Rule
from .patterns import inline_constraints, match, wildcard_names


@dataclass(frozen=True)
class RuleMatch:
    rule: Rule
    wildcards: Dict[str, str]


# ---------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------

def validate_rule(rule: Rule) -> None:
    """
    Check the structural invariants of a rule:
      - an action needs outputs to produce
      - every output pattern carries the same wildcards
      - wildcards in inputs/log/benchmark come from the outputs
    """
    if not rule.name or not rule.name.replace("_", "").replace("-", "").isalnum():
        raise ConfigurationError(
            message=f"Invalid rule name: {rule.name!r}",
            details={"rule": rule.name},
        )

    if rule.is_aggregate:
        if rule.shell is not None or rule.run is not None:
            raise ConfigurationError(
                message=f"Rule '{rule.name}' has an action but no output files",
                details={"rule": rule.name},
            )
        return

    outputs = rule.output_patterns
    expected = set(wildcard_names(outputs[0]))
    for pattern in outputs[1:]:
        got = set(wildcard_names(pattern))
        if got != expected:
            raise WildcardError(
                message=f"Rule '{rule.name}': all output patterns must use the same wildcards",
                details={"rule": rule.name, "pattern": pattern, "expected": sorted(expected)},
            )

    dependent = [s for _, s in rule.input if isinstance(s, str)]
    dependent += [p for _, p in rule.log]
    if rule.benchmark:
        dependent.append(rule.benchmark)
    for pattern in dependent:
        extra = set(wildcard_names(pattern)) - expected
        if extra:
            raise WildcardError(
                message=f"Rule '{rule.name}': wildcards {sorted(extra)} in {pattern!r} do not appear in the outputs",
                details={"rule": rule.name, "pattern": pattern},
            )

    unknown = set(rule.wildcard_constraints) - expected
    if unknown:
        raise WildcardError(
            message=f"Rule '{rule.name}': constraints given for unknown wildcards {sorted(unknown)}",
            details={"rule": rule.name},
        )


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class RuleRegistry:
    """
    Holds the rule templates of a workflow and answers
    "which rule produces this path?".
    """

    def __init__(self, rules: Sequence[Rule] = ()):
        self._rules: Dict[str, Rule] = {}
        self._order: List[List[str]] = []
        for r in rules:
            self.register(r)

    def register(self, rule: Rule) -> Rule:
        if rule.name in self._rules:
            raise DuplicateRuleError(
                message=f"Duplicate rule name: {rule.name}",
                details={"rule": rule.name},
            )
        validate_rule(rule)
        self._rules[rule.name] = rule
        return rule

    def ruleorder(self, *names: str) -> None:
        """Declare that earlier rules win over later ones when both match a path."""
        for n in names:
            if n not in self._rules:
                raise ConfigurationError(
                    message=f"ruleorder refers to unknown rule '{n}'",
                    details={"known": sorted(self._rules)},
                )
        self._order.append(list(names))

    # ---- mapping protocol ----

    def get(self, name: str) -> Optional[Rule]:
        return self._rules.get(name)

    def __getitem__(self, name: str) -> Rule:
        return self._rules[name]

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def first_rule(self) -> Optional[Rule]:
        return next(iter(self._rules.values()), None)

    # ---- lookup ----

    def matches(self, path: str) -> List[RuleMatch]:
        """All rules with an output pattern matching path (constraints applied)."""
        found: List[RuleMatch] = []
        for r in self._rules.values():
            for pattern in r.output_patterns:
                constraints = dict(r.wildcard_constraints)
                constraints.update(inline_constraints(pattern))
                bound = match(pattern, path, constraints)
                if bound is not None:
                    found.append(RuleMatch(rule=r, wildcards=bound))
                    break
        return found

    def _precedes(self, a: str, b: str) -> bool:
        """True if a chain of ruleorder clauses puts a before b (a > x, x > b)."""
        seen = {a}
        stack = [a]
        while stack:
            name = stack.pop()
            for clause in self._order:
                if name not in clause:
                    continue
                for later in clause[clause.index(name) + 1:]:
                    if later == b:
                        return True
                    if later not in seen:
                        seen.add(later)
                        stack.append(later)
        return False

    def lookup_by_output(self, path: str, workdir: str | Path = ".") -> Optional[RuleMatch]:
        """
        Find the unique rule producing path.

        Returns:
          RuleMatch, or None when no rule matches but the file exists
          (a source file).

        Raises:
          AmbiguousRuleError if several rules match and no ruleorder
          clause decides between them.
          NoRuleError if no rule matches and the file does not exist.
        """
        found = self.matches(path)

        if len(found) > 1:
            winners = [
                m for m in found
                if all(m is o or self._precedes(m.rule.name, o.rule.name) for o in found)
            ]
            if len(winners) == 1:
                return winners[0]
            raise AmbiguousRuleError(
                message=f"Rules {sorted(m.rule.name for m in found)} are ambiguous for the file {path}",
                details={
                    "path": path,
                    "rules": ", ".join(sorted(m.rule.name for m in found)),
                    "hint": "add wildcard_constraints or a ruleorder clause",
                },
            )

        if found:
            return found[0]

        if (Path(workdir) / path).exists():
            return None

        raise NoRuleError(
            message=f"No rule to produce {path}",
            details={"path": path},
        )
