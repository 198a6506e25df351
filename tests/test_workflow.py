from __future__ import annotations

import textwrap

import pytest

from rulegraph.errors import WorkflowLoadError
from rulegraph.workflow import Workflow, load_workflow


def _rules_file(workdir, body, name="rulegraph_workflow.py"):
    p = workdir / name
    p.write_text(textwrap.dedent(body))
    return p


def test_load_rules_list(workdir):
    path = _rules_file(workdir, """
        from rulegraph import rule
        config = {"n": 1}
        ruleorder = ["a", "b"]
        rules = [
            rule("a", output="{x}.txt", shell="echo a > {output}"),
            rule("b", output="{x}.txt", shell="echo b > {output}"),
        ]
    """)
    loaded = load_workflow(path)
    assert [r.name for r in loaded.rules] == ["a", "b"]
    assert loaded.ruleorder == [["a", "b"]]
    assert loaded.config == {"n": 1}


def test_load_workflow_function(workdir):
    path = _rules_file(workdir, """
        from rulegraph import rule, wf

        def workflow():
            return wf(rule("a", output="a.txt", shell="touch a.txt"))
    """)
    assert [r.name for r in load_workflow(path).rules] == ["a"]


def test_load_errors(workdir):
    with pytest.raises(WorkflowLoadError):
        load_workflow(workdir / "missing.py")
    bad = _rules_file(workdir, "rules = ['not a rule']\n", name="bad_workflow.py")
    with pytest.raises(WorkflowLoadError):
        load_workflow(bad)
    broken = _rules_file(workdir, "raise RuntimeError('broken')\n", name="broken_workflow.py")
    with pytest.raises(WorkflowLoadError) as exc:
        load_workflow(broken)
    assert "broken" in exc.value.message


def test_from_file_applies_ruleorder_and_config(workdir):
    path = _rules_file(workdir, """
        from rulegraph import rule
        config = {"greeting": "hello"}
        ruleorder = ["b", "a"]
        rules = [
            rule("a", output="{x}.txt", shell="echo a > {output}"),
            rule("b", output="{x}.txt", shell="echo {config[greeting]} > {output}"),
        ]
    """)
    wf = Workflow.from_file(path, workdir=workdir, config_overrides={"greeting": "hi"})
    wf.settings.latency_wait = 0
    summary = wf.run(["f.txt"])
    assert summary.ok
    assert (workdir / "f.txt").read_text() == "hi\n"
