from __future__ import annotations

import logging
import time

import attrs
import numpy as np

from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_SEED,
    BlockTiling,
    NumType,
    Shape,
    SharedTiling,
    Tiling,
    default_tiling,
)
from .dispatch import DispatchSession, run_iterations
from .kernels import LaunchPlan, blocktiling_defects, plan_kernel
from .runtime import GpuRuntime
from .validate import show_matrix

logger = logging.getLogger(__name__)


def compute_gflops(shape: Shape, iterations: int, elapsed_s: float) -> float:
    if elapsed_s <= 0:
        raise ValueError(f"elapsed_s must be > 0, got {elapsed_s}")
    return shape.flop_count * iterations / (elapsed_s * 1e9)


@attrs.define(frozen=True, slots=True)
class BenchmarkResult:
    shape: Shape
    iterations: int
    elapsed_s: float

    @property
    def gflops(self) -> float:
        return compute_gflops(self.shape, self.iterations, self.elapsed_s)

    @property
    def ms_per_dispatch(self) -> float:
        return self.elapsed_s * 1e3 / self.iterations


@attrs.define(frozen=True, slots=True)
class BenchmarkRun:
    plan: LaunchPlan
    result: BenchmarkResult
    output: np.ndarray
    dispatch_count: int


def init_data(shape: Shape, *, seed: int = DEFAULT_SEED) -> tuple[np.ndarray, np.ndarray]:
    """Return (A[M, K], B[N, K]) drawn from N(0, 1) with an MT19937 generator."""
    rng = np.random.RandomState(seed)
    inp = rng.standard_normal((shape.m, shape.k)).astype(np.float32)
    weights = rng.standard_normal((shape.n, shape.k)).astype(np.float32)
    logger.debug("%s", show_matrix(inp, "Input"))
    logger.debug("%s", show_matrix(weights, "Weights"))
    return inp, weights


def check_tiling_compatible(variant: int, shape: Shape, tiling: Tiling) -> None:
    """Reject tilings the chosen kernel cannot handle, before any GPU work."""
    if variant == 2 and isinstance(tiling, SharedTiling):
        t = tiling.tile_size
        bad = [name for name, dim in (("M", shape.m), ("K", shape.k), ("N", shape.n)) if dim % t != 0]
        if bad:
            raise ValueError(f"shared_tiled kernel does not mask loads: tile_size={t} must divide {', '.join(bad)}")
    if variant == 3 and isinstance(tiling, BlockTiling):
        for reason in blocktiling_defects(tiling):
            logger.warning("blocktiled_1d: %s", reason)


def run_test(
    *,
    runtime: GpuRuntime,
    variant: int,
    shape: Shape,
    inp: np.ndarray,
    weights: np.ndarray,
    tiling: Tiling | None = None,
    precision: NumType = NumType.F32,
    iterations: int = DEFAULT_ITERATIONS,
) -> BenchmarkRun:
    if inp.shape != (shape.m, shape.k):
        raise ValueError(f"inp has shape {inp.shape}, expected {(shape.m, shape.k)}")
    if weights.shape != (shape.n, shape.k):
        raise ValueError(f"weights has shape {weights.shape}, expected {(shape.n, shape.k)}")

    tiling = default_tiling(variant) if tiling is None else tiling
    check_tiling_compatible(variant, shape, tiling)
    plan = plan_kernel(variant, shape, tiling, precision=precision)
    if plan.known_defect:
        logger.warning("Variant %d (%s) is a known-defect kernel; results are tracked, not trusted", variant, plan.variant_name)

    ctx = runtime.create_context(precision=precision)
    try:
        a = runtime.create_tensor(ctx, (shape.m, shape.k), precision, inp)
        b = runtime.create_tensor(ctx, (shape.n, shape.k), precision, weights)
        c = runtime.create_tensor(ctx, (shape.m, shape.n), precision)

        logger.info("Creating kernel: variant=%d (%s) workgroup_size=%s n_workgroups=%s",
                    variant, plan.variant_name, plan.code.workgroup_size, plan.n_workgroups)
        kernel = runtime.create_kernel(ctx, plan.code, (a, b, c), plan.n_workgroups)
        session = DispatchSession(runtime=runtime, ctx=ctx, kernel=kernel)

        logger.info("Dispatching + waiting")
        start = time.perf_counter()
        dispatch_count = run_iterations(session, iterations)
        elapsed_s = time.perf_counter() - start

        result = BenchmarkResult(shape=shape, iterations=iterations, elapsed_s=elapsed_s)
        logger.info(
            "Execution Time: (M = %d, K = %d, N = %d) x %d iterations : %.3f ms / dispatch ~ %.2f GFLOP/s",
            shape.m, shape.k, shape.n, iterations, result.ms_per_dispatch, result.gflops,
        )

        logger.info("Copying result to CPU")
        output = runtime.to_cpu(ctx, c, shape.m * shape.n * precision.itemsize).reshape(shape.m, shape.n)
        logger.debug("%s", show_matrix(output, "Output"))
    finally:
        runtime.release_context(ctx)

    return BenchmarkRun(plan=plan, result=result, output=output, dispatch_count=dispatch_count)
