# rulegraph_workflow.py
# Example pipeline: align reads per sample, sort, then summarize all samples.
#   rulegraph run -n            # show what would run
#   rulegraph run --cores 4
from __future__ import annotations
from rulegraph import expand, protected, rule, temp, wf

SAMPLES = ["A", "B", "C"]

config = {
    "reference": "data/ref.txt",
}

ruleorder = ["sort", "copy_sorted"]


def _count_lines(job):
    with open(job.output[0], "w") as out:
        for path in job.input:
            with open(path) as f:
                out.write(f"{path}\t{sum(1 for _ in f)}\n")


def workflow():
    return wf(
        # Aggregate target: everything the pipeline produces
        rule(
            "all",
            input=["results/summary.tsv"],
        ),

        # One job per sample, parallel where cores allow
        rule(
            "align",
            input={"reads": "data/reads/{sample}.txt", "ref": config["reference"]},
            output=temp("mapped/{sample}.sam"),
            log="logs/align/{sample}.log",
            threads=2,
            shell="cat {input.ref} {input.reads} > {output}",
        ),

        rule(
            "sort",
            input="mapped/{sample}.sam",
            output="sorted/{sample}.sam",
            benchmark="benchmarks/sort/{sample}.tsv",
            shell="sort {input} > {output}",
        ),

        # Same output as sort; ruleorder above makes sort win
        rule(
            "copy_sorted",
            input="precomputed/{sample}.sam",
            output="sorted/{sample}.sam",
            shell="cp {input} {output}",
        ),

        rule(
            "summary",
            input=expand("sorted/{sample}.sam", sample=SAMPLES),
            output=protected("results/summary.tsv"),
            run=_count_lines,
        ),
    )
