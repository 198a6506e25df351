from __future__ import annotations

import os
import time

import pytest

from conftest import copy_job
from rulegraph import expand, rule, temp
from rulegraph.planner import FORCED, NEEDED_TEMP, UPSTREAM

SAMPLES = ["A", "B"]


def rules(sort_action=copy_job):
    return [
        rule("all", input=expand("sorted/{s}.txt", s=SAMPLES)),
        rule("align", input="reads/{s}.txt", output=temp("mapped/{s}.txt"), run=copy_job),
        rule("sort", input="mapped/{s}.txt", output="sorted/{s}.txt", run=sort_action),
    ]


@pytest.fixture
def reads(write):
    for s in SAMPLES:
        write(f"reads/{s}.txt", f"{s}\n", age=100)


def _touch_future(path):
    future = time.time() + 30
    os.utime(path, (future, future))


def _reasons(p):
    return {str(pj.job): pj.reason for pj in p}


def test_first_run_plans_everything(make_workflow, reads):
    wf = make_workflow(rules())
    graph = wf.build()
    p = wf.plan(graph)
    reasons = _reasons(p)
    assert reasons["align[s=A]"] == "missing output"
    assert reasons["sort[s=B]"] == "missing output"
    assert reasons["all"] == UPSTREAM
    order = [str(pj.job) for pj in p]
    assert order.index("align[s=A]") < order.index("sort[s=A]") < order.index("all")


def test_nothing_to_do_after_successful_run(make_workflow, reads, workdir):
    wf = make_workflow(rules())
    assert wf.run().ok
    assert not (workdir / "mapped/A.txt").exists()

    p = wf.plan(wf.build())
    assert len(p) == 0


def test_deleted_temp_is_rebuilt_only_when_needed(make_workflow, reads, workdir):
    wf = make_workflow(rules())
    assert wf.run().ok

    # the consumer's output vanished: it needs mapped/A.txt again
    (workdir / "sorted/A.txt").unlink()
    reasons = _reasons(wf.plan(wf.build()))
    assert reasons == {
        "align[s=A]": NEEDED_TEMP,
        "sort[s=A]": "missing output",
        "all": UPSTREAM,
    }


def test_changed_source_behind_temp_file_propagates(make_workflow, reads, workdir):
    wf = make_workflow(rules())
    assert wf.run().ok

    _touch_future(workdir / "reads/B.txt")
    reasons = _reasons(wf.plan(wf.build()))
    assert reasons["align[s=B]"] == "stale input"
    assert reasons["sort[s=B]"] == UPSTREAM
    assert "align[s=A]" not in reasons


def test_stale_input_propagates_downstream(make_workflow, write):
    write("src.txt", age=100)
    wf = make_workflow([
        rule("a", input="src.txt", output="a.txt", run=copy_job),
        rule("b", input="a.txt", output="b.txt", run=copy_job),
        rule("c", input="b.txt", output="c.txt", run=copy_job),
    ])
    assert wf.run(["c.txt"]).ok
    _touch_future(wf.workdir / "src.txt")
    reasons = _reasons(wf.plan(wf.build(["c.txt"])))
    assert reasons == {"a": "stale input", "b": UPSTREAM, "c": UPSTREAM}


def chained_temp_rules():
    return [
        rule("all", input="final/A.txt"),
        rule("align", input="reads/{s}.txt", output=temp("mapped/{s}.txt"), run=copy_job),
        rule("sort", input="mapped/{s}.txt", output=temp("sorted/{s}.txt"), run=copy_job),
        rule("final", input="sorted/{s}.txt", output="final/{s}.txt", run=copy_job),
    ]


def test_chained_temp_outputs_are_not_rebuilt(make_workflow, reads, workdir):
    wf = make_workflow(chained_temp_rules())
    assert wf.run().ok
    assert not (workdir / "mapped/A.txt").exists()
    assert not (workdir / "sorted/A.txt").exists()

    assert len(wf.plan(wf.build())) == 0
    again = wf.run()
    assert again.ok
    assert again.executed == []


def test_changed_source_behind_temp_chain_propagates(make_workflow, reads, workdir):
    wf = make_workflow(chained_temp_rules())
    assert wf.run().ok

    _touch_future(workdir / "reads/A.txt")
    reasons = _reasons(wf.plan(wf.build()))
    assert reasons == {
        "align[s=A]": "stale input",
        "sort[s=A]": UPSTREAM,
        "final[s=A]": UPSTREAM,
        "all": UPSTREAM,
    }


def test_rule_change_reruns_rule(make_workflow, reads):
    wf = make_workflow(rules())
    assert wf.run().ok

    def other_sort(job):
        copy_job(job)

    wf2 = make_workflow(rules(sort_action=other_sort))
    reasons = _reasons(wf2.plan(wf2.build()))
    assert reasons["sort[s=A]"] == "rule changed"
    assert reasons["align[s=A]"] == NEEDED_TEMP


def test_forcerun_and_forceall(make_workflow, reads):
    wf = make_workflow(rules())
    assert wf.run().ok
    graph = wf.build()

    forced = wf.plan(graph, forcerun=["sort"])
    reasons = _reasons(forced)
    assert reasons["sort[s=A]"] == FORCED
    assert reasons["all"] == UPSTREAM
    assert reasons["align[s=A]"] == NEEDED_TEMP

    everything = wf.plan(graph, forceall=True)
    assert len(everything) == len(graph)
    assert all(r == FORCED for r in _reasons(everything).values())


def test_dry_run_has_no_side_effects(make_workflow, reads, workdir, quiet_console, capsys):
    quiet_console.quiet = False
    wf = make_workflow(rules())
    assert wf.run(dry_run=True) is None
    out = capsys.readouterr().out
    assert "align[s=A] (missing output)" in out
    assert not (workdir / "sorted").exists()
    assert not (workdir / ".rulegraph").exists()
