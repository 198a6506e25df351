# dsl.py
from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .model import AnnotatedPath, Job, Rule


# ---------------------------------------------------------------------
# Output markers
# ---------------------------------------------------------------------

def temp(path: str) -> AnnotatedPath:
    """Mark an output for deletion once every consuming job has succeeded."""
    return AnnotatedPath(path, {"temp"})


def protected(path: str) -> AnnotatedPath:
    """Mark an output read-only after it has been built."""
    return AnnotatedPath(path, {"protected"})


# ---------------------------------------------------------------------
# expand()
# ---------------------------------------------------------------------

def expand(
    pattern: Union[str, Sequence[str]],
    combinator: Callable[..., Iterable] = itertools.product,
    **values: Any,
) -> List[str]:
    """
    Fill wildcards in a pattern with every combination of the given values.

    Example:
        expand("mapped/{sample}.sam", sample=["A", "B"])
          -> ["mapped/A.sam", "mapped/B.sam"]
        expand("{a}_{b}.txt", zip, a=["x", "y"], b=["1", "2"])
          -> ["x_1.txt", "y_2.txt"]

    Double braces ({{name}}) are left as single-brace wildcards.
    """
    patterns = [pattern] if isinstance(pattern, str) else list(pattern)

    keys = list(values)
    columns = []
    for k in keys:
        v = values[k]
        if isinstance(v, str) or not isinstance(v, Iterable):
            v = [v]
        columns.append([(k, item) for item in v])

    out: List[str] = []
    for p in patterns:
        for combo in combinator(*columns):
            out.append(p.format(**dict(combo)))
    return out


# ---------------------------------------------------------------------
# Rule helper
# ---------------------------------------------------------------------

def _named(spec: Any) -> List[Tuple[Optional[str], Any]]:
    """Normalize str | list | dict into ordered (name, value) pairs."""
    if spec is None:
        return []
    if isinstance(spec, dict):
        return [(k, v) for k, v in spec.items()]
    if isinstance(spec, str) or callable(spec):
        return [(None, spec)]
    return [(None, v) for v in spec]


def rule(
    name: str,
    *,
    input: Any = None,
    output: Any = None,
    shell: Optional[str] = None,
    run: Optional[Callable[[Job], None]] = None,
    params: Optional[Dict[str, Any]] = None,
    threads: Union[int, Callable] = 1,
    resources: Optional[Dict[str, Any]] = None,
    log: Any = None,
    benchmark: Optional[str] = None,
    priority: int = 0,
    wildcard_constraints: Optional[Dict[str, str]] = None,
    container: Optional[str] = None,
    message: Optional[str] = None,
) -> Rule:
    """
    Create a rule.

    Example:
        rule(
            "align",
            input="reads/{sample}.fastq",
            output="mapped/{sample}.sam",
            shell="bwa mem ref.fa {input} > {output}",
            threads=4,
        )
    """
    if shell is not None and run is not None:
        raise ValueError(f"rule({name!r}) cannot have both shell and run")

    return Rule(
        name=name,
        input=_named(input),
        output=_named(output),
        params=dict(params or {}),
        threads=threads,
        resources=dict(resources or {}),
        log=_named(log),
        benchmark=benchmark,
        priority=priority,
        wildcard_constraints=dict(wildcard_constraints or {}),
        container=container,
        shell=shell,
        run=run,
        message=message,
    )


def wf(*rules: Rule) -> List[Rule]:
    """
    Workflow definition helper.

    Users can write:
        from rulegraph import wf, rule

        def workflow():
            return wf(
                rule(...),
                rule(...),
            )

    Or use RULES directly:
        RULES = wf(rule(...), rule(...))
    """
    return list(rules)
