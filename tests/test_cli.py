from __future__ import annotations

import textwrap

import pytest
from click.testing import CliRunner

from rulegraph.cli import cli, find_workflow_files

RULES = """
from rulegraph import expand, rule, temp

config = {"suffix": "!"}

rules = [
    rule("all", input=expand("upper/{name}.txt", name=["a", "b"])),
    rule("lower", input="src/{name}.txt", output=temp("lower/{name}.txt"),
         shell="tr A-Z a-z < {input} > {output}"),
    rule("upper", input="lower/{name}.txt", output="upper/{name}.txt",
         shell="tr a-z A-Z < {input} > {output} && echo '{config[suffix]}' >> {output}"),
]
"""


@pytest.fixture
def project(workdir, write):
    (workdir / "rulegraph_workflow.py").write_text(textwrap.dedent(RULES))
    write("src/a.txt", "Alpha\n", age=100)
    write("src/b.txt", "Beta\n", age=100)
    return workdir


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


def test_run_builds_everything(project):
    result = invoke("run", "--cores", "2", "--latency-wait", "0")
    assert result.exit_code == 0, result.output
    assert (project / "upper/a.txt").read_text() == "ALPHA\n!\n"
    assert not (project / "lower/a.txt").exists()
    assert "RESULTS" in result.output

    again = invoke("run", "--latency-wait", "0")
    assert again.exit_code == 0
    assert "Nothing to be done" in again.output


def test_dry_run_lists_jobs_without_running(project):
    result = invoke("run", "-n")
    assert result.exit_code == 0, result.output
    assert "lower[name=a] (missing output)" in result.output
    assert "upper[name=b] (missing output)" in result.output
    assert not (project / "upper").exists()


def test_run_single_target_with_config_override(project):
    result = invoke("run", "--config", "suffix=?", "--latency-wait", "0", "upper/b.txt")
    assert result.exit_code == 0, result.output
    assert (project / "upper/b.txt").read_text() == "BETA\n?\n"
    assert not (project / "upper/a.txt").exists()


def test_failed_job_exits_1(project):
    (project / "rulegraph_workflow.py").write_text(textwrap.dedent(RULES).replace("tr a-z A-Z", "false &&"))
    result = invoke("run", "--latency-wait", "0")
    assert result.exit_code == 1
    assert "JOB FAILED" in result.output


def test_missing_input_exits_2(project):
    (project / "src/a.txt").unlink()
    result = invoke("run")
    assert result.exit_code == 2
    assert "src/a.txt" in result.output


def test_malformed_resources_flag_exits_2(project):
    result = invoke("run", "--resources", "mem_mb")
    assert result.exit_code == 2


def test_debug_shows_traceback(project):
    plain = invoke("run", "--resources", "mem_mb")
    assert "Traceback" not in plain.output

    result = invoke("--debug", "run", "--resources", "mem_mb")
    assert result.exit_code == 2
    assert "Traceback (most recent call last)" in result.output
    assert "ConfigurationError" in result.output


def test_missing_rules_file(workdir):
    result = invoke("run")
    assert result.exit_code == 2
    assert "No rules file found" in result.output


def test_rules_command(project):
    result = invoke("rules")
    assert result.exit_code == 0
    assert "all: (aggregate)" in result.output
    assert "upper: upper/{name}.txt" in result.output


def test_dag_command(project):
    result = invoke("dag")
    assert result.exit_code == 0
    assert result.output.startswith("digraph rulegraph {")
    assert result.output.count("->") == 4


def test_find_workflow_files(workdir):
    (workdir / "rulegraph_workflow.py").write_text("")
    (workdir / "other_workflow.py").write_text("")
    assert [p.name for p in find_workflow_files(workdir)] == ["other_workflow.py", "rulegraph_workflow.py"]
