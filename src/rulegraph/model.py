# model.py
from __future__ import annotations

import hashlib
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .patterns import wildcard_names


# ---------------------------------------------------------------------
# Output markers
# ---------------------------------------------------------------------

class AnnotatedPath(str):
    """A path string carrying flags such as "temp" or "protected"."""

    flags: frozenset

    def __new__(cls, value: str, flags: Iterable[str] = ()):
        obj = super().__new__(cls, value)
        existing = getattr(value, "flags", frozenset())
        obj.flags = frozenset(existing) | frozenset(flags)
        return obj


def flags_of(path: Any) -> frozenset:
    return getattr(path, "flags", frozenset())


# ---------------------------------------------------------------------
# Name-addressable containers used for {input.reads}, {params.k}, ...
# ---------------------------------------------------------------------

class Namespace(dict):
    """dict with attribute access; used for wildcards, params and resources."""

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


class Paths(list):
    """
    Ordered list of concrete paths with optional names.

    str(paths) joins the entries with spaces, so "{input}" in a shell
    command renders every input file.
    """

    def __init__(self, items: Iterable[str] = (), names: Optional[Dict[str, Tuple[int, int]]] = None):
        super().__init__(items)
        self._names: Dict[str, Tuple[int, int]] = dict(names or {})

    def __getattr__(self, name: str) -> Any:
        names = self.__dict__.get("_names", {})
        if name not in names:
            raise AttributeError(name)
        start, end = names[name]
        if end - start == 1:
            return self[start]
        return Paths(self[start:end])

    def __str__(self) -> str:
        return " ".join(str(p) for p in self)

    def keys(self) -> List[str]:
        return list(self._names)


# ---------------------------------------------------------------------
# Rule template
# ---------------------------------------------------------------------

InputSpec = Union[str, Callable[[Namespace], Any]]


@dataclass
class Rule:
    """
    A named production template: input patterns -> output patterns.

    Inputs may be strings with wildcards or callables receiving the bound
    wildcards. Named inputs/outputs are kept as (name, spec) pairs so they
    can be addressed as {input.reads} in shell commands.
    """
    name: str
    input: List[Tuple[Optional[str], InputSpec]] = field(default_factory=list)
    output: List[Tuple[Optional[str], str]] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)
    threads: Union[int, Callable[[Namespace], int]] = 1
    resources: Dict[str, Any] = field(default_factory=dict)
    log: List[Tuple[Optional[str], str]] = field(default_factory=list)
    benchmark: Optional[str] = None
    priority: int = 0
    wildcard_constraints: Dict[str, str] = field(default_factory=dict)
    container: Optional[str] = None
    shell: Optional[str] = None
    run: Optional[Callable[["Job"], None]] = None
    message: Optional[str] = None

    @property
    def output_patterns(self) -> List[str]:
        return [p for _, p in self.output]

    @property
    def wildcard_names(self) -> List[str]:
        names: List[str] = []
        for pattern in self.output_patterns:
            for n in wildcard_names(pattern):
                if n not in names:
                    names.append(n)
        return names

    @property
    def has_wildcards(self) -> bool:
        return bool(self.wildcard_names)

    @property
    def is_aggregate(self) -> bool:
        """Output-less rule such as `all`: it only pulls in its inputs."""
        return not self.output

    def fingerprint(self) -> str:
        """
        Stable hash of the rule definition.

        A change in the action, params, container or patterns makes
        previously built outputs of this rule stale.
        """
        payload = {
            "v": 1,
            "name": self.name,
            "input": [[n, _describe(s)] for n, s in self.input],
            "output": [[n, str(p)] for n, p in self.output],
            "params": {k: _describe(v) for k, v in sorted(self.params.items())},
            "container": self.container,
            "shell": self.shell,
            "run": _describe(self.run) if self.run is not None else None,
        }
        data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _describe(value: Any) -> Any:
    if callable(value):
        try:
            return inspect.getsource(value).strip()
        except (OSError, TypeError):
            return getattr(value, "__qualname__", repr(value))
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return repr(value)


# ---------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------

@dataclass
class Job:
    """A concrete, wildcard-bound instantiation of a Rule."""
    rule: Rule
    wildcards: Namespace
    input: Paths
    output: Paths
    params: Namespace = field(default_factory=Namespace)
    log: Paths = field(default_factory=Paths)
    benchmark: Optional[str] = None
    threads: int = 1
    resources: Namespace = field(default_factory=Namespace)
    priority: int = 0
    index: int = -1  # position in the JobGraph arena

    @property
    def key(self) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return job_key(self.rule.name, self.wildcards)

    @property
    def temp_outputs(self) -> List[str]:
        return [o for o, (_, p) in zip(self.output, self.rule.output) if "temp" in flags_of(p)]

    @property
    def protected_outputs(self) -> List[str]:
        return [o for o, (_, p) in zip(self.output, self.rule.output) if "protected" in flags_of(p)]

    @property
    def products(self) -> List[str]:
        """Everything the job writes: outputs, logs and the benchmark file."""
        out = list(self.output) + list(self.log)
        if self.benchmark:
            out.append(self.benchmark)
        return out

    def __str__(self) -> str:
        if not self.wildcards:
            return self.rule.name
        bound = ", ".join(f"{k}={v}" for k, v in self.wildcards.items())
        return f"{self.rule.name}[{bound}]"


def job_key(rule_name: str, wildcards: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    return rule_name, tuple(sorted(wildcards.items()))
