from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from wgpu_bench.matmul_bench.export import (
    default_results_schema_path,
    merge_results,
    run_status,
    validate_results_schema,
)
from wgpu_bench.matmul_bench.report import generate_report, report_run


def _record(*, variant: int = 1, status: str = "pass", known_defect: bool = False, gflops: float = 12.5) -> dict:
    names = {1: "naive", 2: "shared_tiled", 3: "blocktiled_1d"}
    return {
        "variant": variant,
        "variant_name": names[variant],
        "shape": {"m": 256, "k": 128, "n": 512},
        "precision": "f32",
        "tiling": {"tile_size": 16} if variant == 2 else {"workgroup_x": 16, "workgroup_y": 16, "workgroup_z": 1},
        "workgroup_size": [16, 16, 1],
        "n_workgroups": [16, 32, 1],
        "iterations": 4,
        "timing": {"elapsed_s": 0.004, "ms_per_dispatch": 1.0},
        "gflops": gflops,
        "flop_count": 2 * 256 * 128 * 512,
        "known_defect": known_defect,
        "verification": {"status": status, "max_abs_error": 0.0, "max_rel_error": 0.0, "mismatches": 0},
    }


def _results(records: list[dict]) -> dict:
    status, reason = run_status(records)
    return {
        "schema_version": "1.0.0",
        "run": {
            "run_id": "2026-01-01T00-00-00Z",
            "started_at": "2026-01-01T00:00:00Z",
            "finished_at": "2026-01-01T00:00:01Z",
            "status": status,
            "failure_reason": reason,
            "git": {"branch": "main", "commit": "deadbeef", "dirty": False},
            "environment": {
                "platform": {"os": "linux", "arch": "x86_64"},
                "adapter": {"device": "Test GPU", "backend_type": "Vulkan"},
            },
            "artifacts_dir": "/tmp/out",
        },
        "records": records,
    }


def test_results_schema_file_exists() -> None:
    assert default_results_schema_path().exists()


def test_results_schema_minimal_payload_validates() -> None:
    validate_results_schema(_results([_record()]))


def test_results_schema_rejects_bad_precision() -> None:
    rec = _record()
    rec["precision"] = "f64"
    with pytest.raises(jsonschema.ValidationError):
        validate_results_schema(_results([rec]))


@pytest.mark.parametrize(
    "status,known_defect,expected",
    [("pass", False, "pass"), ("fail", False, "fail"), ("fail", True, "pass"), ("skipped", False, "pass")],
)
def test_run_status(status: str, known_defect: bool, expected: str) -> None:
    assert run_status([_record(status=status, known_defect=known_defect)])[0] == expected


def test_merge_replaces_same_key_and_rederives_status() -> None:
    existing = _results([_record(status="fail"), _record(variant=2)])
    assert existing["run"]["status"] == "fail"

    rerun = _results([_record(status="pass", gflops=99.0)])
    merged = merge_results(existing, rerun)
    assert len(merged["records"]) == 2
    by_variant = {r["variant"]: r for r in merged["records"]}
    assert by_variant[1]["gflops"] == 99.0
    assert merged["run"]["status"] == "pass"
    assert merged["run"]["started_at"] == existing["run"]["started_at"]


def test_generate_report_lists_records() -> None:
    results = _results([_record(), _record(variant=3, status="fail", known_defect=True)])
    text = generate_report(results).get_md_text()
    assert "wgpu Matmul Benchmark Report" in text
    assert "1 (naive)" in text
    assert "fail (known defect)" in text
    assert "12.500" in text


def test_report_run_writes_markdown(tmp_path: Path) -> None:
    (tmp_path / "results.json").write_text(json.dumps(_results([_record()])))
    assert report_run(out_dir=tmp_path) == 0
    assert "Test GPU" in (tmp_path / "report.md").read_text()


def test_report_run_requires_results(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        report_run(out_dir=tmp_path)
