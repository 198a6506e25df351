# tracker.py
from __future__ import annotations

import hashlib
import json
import os
import shutil
import stat
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .model import Job

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# One provenance record per output file:
#   record = {
#       path, build_time, producing job (rule + wildcards),
#       fingerprint of the output,
#       fingerprint of every input at build time,
#       fingerprint of the rule definition,
#   }
#
# Layout:
#   <state_dir>/
#     records/<sha256(path)>.json
#     incomplete/<sha256(path)>.json   (outputs of a job that has not finished)
#
# Records are written only after a job succeeded; an incomplete marker is
# written before the job starts and cleared with the record, so anything
# left behind by a crash or abort is never trusted as fresh.
# ---------------------------------------------------------------------


DEFAULT_STATE_DIR = ".rulegraph"
FINGERPRINT_MODES = ("sha256", "mtime")


@dataclass
class ArtifactRecord:
    path: str
    build_time: float
    rule: str
    wildcards: Dict[str, str]
    fingerprint: str
    inputs: Dict[str, str] = field(default_factory=dict)
    rule_fingerprint: str = ""
    protected: bool = False
    temp: bool = False

    @property
    def job_key(self) -> str:
        bound = ",".join(f"{k}={v}" for k, v in sorted(self.wildcards.items()))
        return f"{self.rule}[{bound}]"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "ArtifactRecord":
        return cls(
            path=data["path"],
            build_time=float(data["build_time"]),
            rule=data["rule"],
            wildcards=dict(data.get("wildcards", {})),
            fingerprint=data.get("fingerprint", ""),
            inputs=dict(data.get("inputs", {})),
            rule_fingerprint=data.get("rule_fingerprint", ""),
            protected=bool(data.get("protected", False)),
            temp=bool(data.get("temp", False)),
        )


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def fingerprint(path: Path, mode: str = "sha256") -> str:
    """
    Content (sha256) or version (mtime:size) fingerprint of a file or directory.
    """
    if mode not in FINGERPRINT_MODES:
        raise ValueError(f"Unknown fingerprint mode {mode!r}; expected one of {FINGERPRINT_MODES}")

    if path.is_dir():
        parts = []
        for f in _iter_files_under(path):
            rel = f.relative_to(path).as_posix()
            parts.append(f"{rel}:{fingerprint(f, mode)}")
        return "dir:" + _sha256_str("\n".join(parts))

    if mode == "mtime":
        st = path.stat()
        return f"mtime:{st.st_mtime_ns}:{st.st_size}"
    return "sha256:" + _hash_file_contents(path)


class ArtifactTracker:
    """
    File-based provenance store keyed by output path.

    All paths are relative to workdir, which is also where the job outputs
    live. The store itself sits under workdir/state_dir unless an absolute
    state_dir is given.
    """

    def __init__(
        self,
        workdir: str | Path = ".",
        state_dir: str | Path = DEFAULT_STATE_DIR,
        *,
        fingerprint_mode: str = "sha256",
    ):
        self.workdir = Path(workdir).resolve()
        root = Path(state_dir)
        self.root = root if root.is_absolute() else self.workdir / root
        self.fingerprint_mode = fingerprint_mode
        self.records_dir = self.root / "records"
        self.incomplete_dir = self.root / "incomplete"

    # ---- paths ----

    def _abs(self, path: str) -> Path:
        return self.workdir / path

    def record_path(self, path: str) -> Path:
        return self.records_dir / f"{_sha256_str(path)}.json"

    def marker_path(self, path: str) -> Path:
        return self.incomplete_dir / f"{_sha256_str(path)}.json"

    @staticmethod
    def _write_atomic(target: Path, text: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(".json.tmp")
        try:
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(target)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    # ---- records ----

    def get(self, path: str) -> Optional[ArtifactRecord]:
        rp = self.record_path(path)
        if not rp.exists():
            return None
        try:
            return ArtifactRecord.from_dict(json.loads(rp.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            # A corrupt record is the same as no record: the output is rebuilt.
            return None

    def fingerprint(self, path: str) -> str:
        return fingerprint(self._abs(path), self.fingerprint_mode)

    def record(self, job: Job, outputs: Optional[Iterable[str]] = None) -> List[ArtifactRecord]:
        """Store one ArtifactRecord per output of a successful job."""
        outputs = list(job.output if outputs is None else outputs)
        temp = set(job.temp_outputs)
        protected = set(job.protected_outputs)
        inputs = {p: self.fingerprint(p) for p in job.input if self._abs(p).exists()}
        rule_fp = job.rule.fingerprint()
        now = time.time()

        records: List[ArtifactRecord] = []
        for out in outputs:
            rec = ArtifactRecord(
                path=out,
                build_time=now,
                rule=job.rule.name,
                wildcards=dict(job.wildcards),
                fingerprint=self.fingerprint(out),
                inputs=inputs,
                rule_fingerprint=rule_fp,
                protected=out in protected,
                temp=out in temp,
            )
            self._write_atomic(self.record_path(out), _json_dumps_stable(rec.to_dict()))
            records.append(rec)
        self.clear_incomplete(outputs)
        return records

    def forget(self, path: str) -> None:
        self.record_path(path).unlink(missing_ok=True)

    # ---- staleness ----

    def staleness_reason(
        self,
        path: str,
        inputs: Optional[Iterable[str]] = None,
        rule_fingerprint: Optional[str] = None,
    ) -> Optional[str]:
        """
        Why path must be rebuilt, or None if it is up to date.

        With no record, the output's own mtime stands in for the build time
        when the inputs are known (files produced before tracking started).
        """
        target = self._abs(path)
        if not target.exists():
            return "missing output"
        if self.is_incomplete(path):
            return "incomplete output"

        rec = self.get(path)
        if rec is None:
            if inputs is None:
                return "no provenance record"
            built = target.stat().st_mtime
            for inp in inputs:
                ip = self._abs(inp)
                if ip.exists() and ip.stat().st_mtime > built:
                    return "no provenance record"
            return None

        check = list(rec.inputs) if inputs is None else list(inputs)
        for inp in check:
            ip = self._abs(inp)
            if not ip.exists():
                # e.g. a temp input that was cleaned up after this output was built
                continue
            if ip.stat().st_mtime >= rec.build_time:
                return "stale input"
            recorded = rec.inputs.get(inp)
            if recorded is None:
                return "input changed"
            if recorded != self.fingerprint(inp):
                return "input changed"

        if rule_fingerprint is not None and rec.rule_fingerprint != rule_fingerprint:
            return "rule changed"
        return None

    def is_stale(
        self,
        path: str,
        inputs: Optional[Iterable[str]] = None,
        rule_fingerprint: Optional[str] = None,
    ) -> bool:
        return self.staleness_reason(path, inputs, rule_fingerprint) is not None

    # ---- temp / protected ----

    def cleanup(self, path: str) -> bool:
        """Delete a temp output and its record. Returns True if a file was removed."""
        target = self._abs(path)
        removed = False
        if target.is_dir():
            shutil.rmtree(target)
            removed = True
        elif target.exists():
            target.unlink()
            removed = True
        self.forget(path)
        self.clear_incomplete([path])
        return removed

    def protect(self, path: str) -> None:
        """Make a built output read-only and remember it as protected."""
        target = self._abs(path)
        if target.is_file():
            mode = target.stat().st_mode
            os.chmod(target, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))
        rec = self.get(path)
        if rec is not None and not rec.protected:
            rec.protected = True
            self._write_atomic(self.record_path(path), _json_dumps_stable(rec.to_dict()))

    def unprotect(self, path: str) -> None:
        target = self._abs(path)
        if target.is_file():
            os.chmod(target, target.stat().st_mode | stat.S_IWUSR)

    def is_protected(self, path: str) -> bool:
        rec = self.get(path)
        return bool(rec and rec.protected)

    # ---- incomplete markers ----

    def mark_incomplete(self, paths: Iterable[str]) -> None:
        for p in paths:
            self._write_atomic(self.marker_path(p), json.dumps({"path": p, "since": time.time()}))

    def clear_incomplete(self, paths: Iterable[str]) -> None:
        for p in paths:
            self.marker_path(p).unlink(missing_ok=True)

    def is_incomplete(self, path: str) -> bool:
        return self.marker_path(path).exists()

    def incomplete_paths(self) -> List[str]:
        if not self.incomplete_dir.exists():
            return []
        out: List[str] = []
        for m in sorted(self.incomplete_dir.glob("*.json")):
            try:
                out.append(json.loads(m.read_text(encoding="utf-8"))["path"])
            except (json.JSONDecodeError, KeyError):
                m.unlink(missing_ok=True)
        return sorted(out)
