from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from .bench import init_data, run_test
from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_SEED,
    VALIDATION_MAX_ELEMENTS,
    NumType,
    Shape,
    Tiling,
    default_tiling,
    validation_tolerance,
)
from .export import build_record, build_results, git_info, now_rfc3339, write_or_merge_results
from .runtime import GpuRuntime, WgpuRuntime
from .validate import ValidationOutcome, check_cpu

logger = logging.getLogger(__name__)

ValidateMode = Literal["auto", "always", "never"]


def find_repo_root() -> Path:
    """Search upwards from this file for the directory holding `pyproject.toml`."""
    start = Path(__file__).resolve()
    for parent in start.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return Path.cwd()


def should_validate(shape: Shape, mode: ValidateMode) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    return shape.m * shape.n <= VALIDATION_MAX_ELEMENTS


def run_variants(
    *,
    runtime: GpuRuntime,
    variants: list[int],
    shape: Shape,
    precision: NumType = NumType.F32,
    tilings: Mapping[int, Tiling] | None = None,
    iterations: int = DEFAULT_ITERATIONS,
    seed: int = DEFAULT_SEED,
    validate: ValidateMode = "auto",
    skip_incompatible: bool = False,
) -> list[dict[str, Any]]:
    """Benchmark each variant on the same operands and return result records."""
    inp, weights = init_data(shape, seed=seed)
    records: list[dict[str, Any]] = []
    for variant in variants:
        tiling = (tilings or {}).get(variant) or default_tiling(variant)
        try:
            run = run_test(
                runtime=runtime,
                variant=variant,
                shape=shape,
                inp=inp,
                weights=weights,
                tiling=tiling,
                precision=precision,
                iterations=iterations,
            )
        except ValueError as e:
            if not skip_incompatible:
                raise
            logger.warning("Skipping variant %d for %s: %s", variant, shape.to_axis_value(), e)
            continue

        outcome: ValidationOutcome | None = None
        if should_validate(shape, validate):
            rtol, atol = validation_tolerance(precision, shape.k)
            if precision is NumType.F16:
                logger.info("f16 run: validating with rtol=%g atol=%g", rtol, atol)
            outcome = check_cpu(inp, weights, run.output, rtol=rtol, atol=atol)
        records.append(build_record(run, outcome))
    return records


def timing_run(
    *,
    out_dir: Path,
    variants: list[int],
    shape: Shape,
    precision: NumType = NumType.F32,
    tilings: Mapping[int, Tiling] | None = None,
    iterations: int = DEFAULT_ITERATIONS,
    seed: int = DEFAULT_SEED,
    validate: ValidateMode = "auto",
    skip_incompatible: bool = False,
    strict: bool = False,
    runtime: GpuRuntime | None = None,
) -> int:
    out_dir.mkdir(parents=True, exist_ok=True)
    runtime = WgpuRuntime() if runtime is None else runtime

    started_at = now_rfc3339()
    records = run_variants(
        runtime=runtime,
        variants=variants,
        shape=shape,
        precision=precision,
        tilings=tilings,
        iterations=iterations,
        seed=seed,
        validate=validate,
        skip_incompatible=skip_incompatible,
    )

    git = git_info(find_repo_root())
    results = build_results(
        records,
        run_id=started_at.replace(":", "-"),
        started_at=started_at,
        git=git,
        adapter_info=runtime.last_adapter_info,
        artifacts_dir=out_dir,
    )
    results = write_or_merge_results(out_dir / "results.json", results)

    status = results["run"]["status"]
    if status != "pass":
        logger.error("Run status: %s (%s)", status, results["run"]["failure_reason"])
    if strict and status != "pass":
        return 1
    return 0
