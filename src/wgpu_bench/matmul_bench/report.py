from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

REPORT_COLUMNS = [
    "variant",
    "M",
    "K",
    "N",
    "precision",
    "tiling",
    "n_workgroups",
    "ms_per_dispatch",
    "GFLOP/s",
    "verify",
]


def _load_results(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())


def _format_float(v: float | None) -> str:
    if v is None:
        return "NA"
    return f"{v:.3f}"


def _tiling_label(tiling: dict[str, int]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(tiling.items()))


def _verify_label(rec: dict[str, Any]) -> str:
    status = rec.get("verification", {}).get("status", "NA")
    if rec.get("known_defect") and status != "pass":
        return f"{status} (known defect)"
    return status


def _sort_key(rec: dict[str, Any]) -> tuple:
    s = rec["shape"]
    return (s["m"], s["k"], s["n"], rec["precision"], rec["variant"])


def generate_report(results: dict[str, Any], *, file_name: str = "report") -> MdUtils:
    md = MdUtils(file_name=file_name, title="wgpu Matmul Benchmark Report")
    run = results.get("run", {})
    git = run.get("git", {})
    adapter = run.get("environment", {}).get("adapter", {})
    md.new_list(
        [
            f"Branch: `{git.get('branch', '')}`",
            f"Commit: `{git.get('commit', '')}`",
            f"Adapter: `{adapter.get('device', 'unknown')}` ({adapter.get('backend_type', 'unknown')})",
            f"Status: `{run.get('status', '')}`",
        ]
    )

    md.new_header(level=1, title="Results")
    cells: list[str] = list(REPORT_COLUMNS)
    records = sorted(results.get("records", []), key=_sort_key)
    for r in records:
        s = r["shape"]
        cells += [
            f"{r['variant']} ({r['variant_name']})",
            str(s["m"]),
            str(s["k"]),
            str(s["n"]),
            r["precision"],
            f"`{_tiling_label(r.get('tiling', {}))}`",
            "x".join(str(v) for v in r["n_workgroups"]),
            _format_float(r.get("timing", {}).get("ms_per_dispatch")),
            _format_float(r.get("gflops")),
            _verify_label(r),
        ]
    md.new_table(columns=len(REPORT_COLUMNS), rows=len(records) + 1, text=cells, text_align="left")

    md.new_header(level=1, title="Column Definitions")
    md.new_list(
        [
            "`variant`: kernel variant (1 naive, 2 shared-memory tiled, 3 1-D block-tiled).",
            "`M,K,N`: C[M,N] = A[M,K] @ B[N,K]^T.",
            "`tiling`: tiling parameters the shader was instantiated with.",
            "`n_workgroups`: launch grid.",
            "`ms_per_dispatch`: wall-clock time of all dispatches divided by the iteration count.",
            "`GFLOP/s`: 2*M*N*K*iterations / (elapsed_s * 1e9).",
            "`verify`: CPU reference comparison (`skipped` for large problems).",
        ]
    )
    md.new_paragraph("`NA` means the value is missing. Variant 3 rows are tracked as a known defect.")
    return md


def report_run(*, out_dir: Path) -> int:
    results_path = out_dir / "results.json"
    if not results_path.exists():
        raise FileNotFoundError(f"Missing results.json at {results_path}")

    results = _load_results(results_path)
    md = generate_report(results, file_name=str(out_dir / "report"))
    md.create_md_file()
    return 0
