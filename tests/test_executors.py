from __future__ import annotations

import pytest

from rulegraph import rule
from rulegraph.containers import container_command
from rulegraph.errors import ExecutionError
from rulegraph.executors import ClusterExecutor, LocalExecutor, write_benchmark
from rulegraph.formatting import format_command
from rulegraph.graph import build_graph
from rulegraph.registry import RuleRegistry


def make_job(workdir, write, **kw):
    write("reads/A.fq")
    write("ref.fa")
    kw.setdefault("shell", "true")
    reg = RuleRegistry([
        rule(
            "align",
            input={"reads": "reads/{sample}.fq", "ref": "ref.fa"},
            output="mapped/{sample}.sam",
            params={"k": 19},
            threads=4,
            resources={"mem_mb": 2000},
            log="logs/{sample}.log",
            **kw,
        )
    ])
    return build_graph(reg, ["mapped/A.sam"], workdir=workdir).jobs[0]


def test_format_command_names(workdir, write):
    job = make_job(workdir, write)
    cmd = format_command(
        "bwa -k {params.k} -t {threads} {input.ref} {input.reads} > {output} 2> {log} "
        "# {wildcards.sample} {resources.mem_mb} {rule} {input[0]} {config[genome]} {{literal}}",
        job,
        {"genome": "hg38"},
    )
    assert cmd == (
        "bwa -k 19 -t 4 ref.fa reads/A.fq > mapped/A.sam 2> logs/A.log "
        "# A 2000 align reads/A.fq hg38 {literal}"
    )


def test_format_lists_join_with_spaces(workdir, write):
    job = make_job(workdir, write)
    assert format_command("cat {input}", job) == "cat reads/A.fq ref.fa"


def test_format_unknown_name(workdir, write):
    job = make_job(workdir, write)
    with pytest.raises(ExecutionError) as exc:
        format_command("{params.missing}", job)
    assert exc.value.kind == "format_error"


def test_container_command(workdir, write):
    job = make_job(workdir, write, container="docker://biocontainers/bwa:0.7.17")
    cmd = container_command(job, "bwa mem x > y", workdir=workdir, args="--bind /data")
    assert cmd.startswith("singularity exec --home ")
    assert "--bind /data docker://biocontainers/bwa:0.7.17 bash -c 'bwa mem x > y'" in cmd


def test_container_command_without_image(workdir, write):
    job = make_job(workdir, write)
    assert container_command(job, "echo hi", workdir=workdir) == "echo hi"


def test_local_executor_writes_log(workdir, write):
    job = make_job(workdir, write, shell="echo aligned {wildcards.sample} && touch {output}")
    (workdir / "logs").mkdir()
    (workdir / "mapped").mkdir()
    LocalExecutor(workdir).run(job)
    assert (workdir / "logs/A.log").read_text() == "aligned A\n"
    assert (workdir / "mapped/A.sam").exists()


def test_local_executor_failure_points_to_log(workdir, write):
    job = make_job(workdir, write, shell="exit 2")
    with pytest.raises(ExecutionError) as exc:
        LocalExecutor(workdir).run(job)
    assert exc.value.exit_code == 2
    assert exc.value.cmd == "exit 2"
    assert exc.value.details["log"] == "logs/A.log"


def test_cluster_executor_submits_jobscript(workdir, write):
    job = make_job(workdir, write, shell="touch {output}")
    (workdir / "mapped").mkdir()
    # "submission" runs the script locally and records the template values
    ex = ClusterExecutor("echo {threads} {resources.mem_mb} > submitted.txt && sh", workdir)
    ex.run(job)
    assert (workdir / "submitted.txt").read_text() == "4 2000\n"
    assert (workdir / "mapped/A.sam").exists()
    assert not list(ex.script_dir.glob("*.sh"))


def test_write_benchmark(workdir):
    write_benchmark(workdir / "b/x.tsv", 3725.5)
    assert (workdir / "b/x.tsv").read_text() == "s\th:m:s\n3725.5000\t1:02:05\n"
