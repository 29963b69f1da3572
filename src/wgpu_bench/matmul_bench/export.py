from __future__ import annotations

import json
import platform
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from .bench import BenchmarkRun
from .config import tiling_to_dict
from .validate import ValidationOutcome

SCHEMA_VERSION = "1.0.0"


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def default_results_schema_path() -> Path:
    return Path(__file__).resolve().parent / "results.schema.json"


def validate_results_schema(results: dict[str, Any], *, schema_path: Path | None = None) -> None:
    schema_path = default_results_schema_path() if schema_path is None else schema_path
    schema = json.loads(schema_path.read_text())
    Draft202012Validator(schema).validate(results)


def git_info(repo_root: Path) -> dict[str, Any]:
    try:
        branch = (
            subprocess.check_output(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_root, stderr=subprocess.DEVNULL)
            .decode()
            .strip()
        )
        commit = (
            subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=repo_root, stderr=subprocess.DEVNULL)
            .decode()
            .strip()
        )
        dirty = bool(
            subprocess.check_output(["git", "status", "--porcelain"], cwd=repo_root, stderr=subprocess.DEVNULL)
            .decode()
            .strip()
        )
        return {"branch": branch, "commit": commit, "dirty": dirty}
    except (OSError, subprocess.CalledProcessError):
        return {"branch": "unknown", "commit": "unknown", "dirty": False}


def build_record(run: BenchmarkRun, outcome: ValidationOutcome | None) -> dict[str, Any]:
    plan = run.plan
    if outcome is None:
        verification: dict[str, Any] = {
            "status": "skipped",
            "max_abs_error": None,
            "max_rel_error": None,
            "mismatches": None,
        }
    else:
        verification = outcome.to_dict()

    return {
        "variant": plan.variant,
        "variant_name": plan.variant_name,
        "shape": {"m": plan.shape.m, "k": plan.shape.k, "n": plan.shape.n},
        "precision": plan.precision.value,
        "tiling": tiling_to_dict(plan.tiling),
        "workgroup_size": list(plan.code.workgroup_size),
        "n_workgroups": list(plan.n_workgroups),
        "iterations": run.result.iterations,
        "timing": {"elapsed_s": run.result.elapsed_s, "ms_per_dispatch": run.result.ms_per_dispatch},
        "gflops": run.result.gflops,
        "flop_count": plan.shape.flop_count,
        "known_defect": plan.known_defect,
        "verification": verification,
    }


def run_status(records: list[dict[str, Any]]) -> tuple[str, str]:
    """Derive (status, failure_reason). Known-defect records never fail a run."""
    failures = [
        r for r in records if r["verification"]["status"] == "fail" and not r.get("known_defect", False)
    ]
    if failures:
        return "fail", f"{len(failures)} record(s) failed verification"
    return "pass", ""


def build_results(
    records: list[dict[str, Any]],
    *,
    run_id: str,
    started_at: str,
    git: dict[str, Any],
    adapter_info: dict[str, str],
    artifacts_dir: Path,
) -> dict[str, Any]:
    status, failure_reason = run_status(records)
    out = {
        "schema_version": SCHEMA_VERSION,
        "run": {
            "run_id": run_id,
            "started_at": started_at,
            "finished_at": now_rfc3339(),
            "status": status,
            "failure_reason": failure_reason,
            "git": git,
            "environment": {
                "platform": {"os": platform.system().lower(), "arch": platform.machine().lower()},
                "adapter": dict(adapter_info),
            },
            "artifacts_dir": str(artifacts_dir),
        },
        "records": records,
    }
    validate_results_schema(out)
    return out


def _record_key(rec: dict[str, Any]) -> tuple:
    s = rec.get("shape", {})
    return (
        int(rec.get("variant", 0)),
        int(s.get("m", 0)),
        int(s.get("k", 0)),
        int(s.get("n", 0)),
        str(rec.get("precision", "")),
        tuple(sorted((rec.get("tiling") or {}).items())),
    )


def merge_results(existing: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
    """Merge ``new`` into ``existing``; newer records replace same-key records."""
    merged = dict(new)
    merged_run = dict(new.get("run", {}))
    old_started = existing.get("run", {}).get("started_at")
    if old_started:
        merged_run["started_at"] = old_started

    by_key: dict[tuple, dict[str, Any]] = {}
    for r in existing.get("records", []) or []:
        by_key[_record_key(r)] = r
    for r in new.get("records", []) or []:
        by_key[_record_key(r)] = r
    merged["records"] = list(by_key.values())

    # Status is derived from the merged records, not carried over.
    merged_run["status"], merged_run["failure_reason"] = run_status(merged["records"])
    merged["run"] = merged_run
    validate_results_schema(merged)
    return merged


def write_results(path: Path, results: dict[str, Any]) -> None:
    path.write_text(json.dumps(results, indent=2, sort_keys=True) + "\n")


def write_or_merge_results(path: Path, results: dict[str, Any]) -> dict[str, Any]:
    if path.exists():
        results = merge_results(json.loads(path.read_text()), results)
    write_results(path, results)
    return results
