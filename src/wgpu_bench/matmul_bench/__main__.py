from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_SEED,
    BlockTiling,
    NaiveTiling,
    NumType,
    SharedTiling,
    Tiling,
    default_tiling,
    iter_variants,
    resolve_size,
)
from .kernels import plan_kernel
from .report import report_run
from .runner import timing_run
from .sweep import sweep_run


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def _triple(v: str) -> tuple[int, int, int]:
    parts = [int(x) for x in v.replace("x", ",").split(",") if x.strip()]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected three integers, got {v!r}")
    return parts[0], parts[1], parts[2]


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--precision", default="f32", choices=[t.value for t in NumType])
    p.add_argument("--workgroup-size", type=_triple, default=None, help="Variant 1 workgroup size, e.g. 16,16,1.")
    p.add_argument("--tile-size", type=int, default=None, help="Variant 2 square tile extent.")
    p.add_argument("--bm", type=int, default=None, help="Variant 3 block rows.")
    p.add_argument("--bk", type=int, default=None, help="Variant 3 block depth.")
    p.add_argument("--bn", type=int, default=None, help="Variant 3 block columns.")
    p.add_argument("--tm", type=int, default=None, help="Variant 3 rows per invocation.")


def _add_run_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    p.add_argument("--seed", type=int, default=DEFAULT_SEED)
    p.add_argument(
        "--validate",
        default="auto",
        choices=["auto", "always", "never"],
        help="CPU reference check (auto: small problems only).",
    )
    p.add_argument("--strict", action="store_true", help="Exit 1 when verification fails.")


def build_tilings(ns: argparse.Namespace) -> dict[int, Tiling]:
    tilings: dict[int, Tiling] = {}
    if ns.workgroup_size is not None:
        tilings[1] = NaiveTiling(workgroup_size=ns.workgroup_size)
    if ns.tile_size is not None:
        tilings[2] = SharedTiling(tile_size=ns.tile_size)
    block = {k: getattr(ns, k) for k in ("bm", "bk", "bn", "tm") if getattr(ns, k) is not None}
    if block:
        tilings[3] = BlockTiling(**block)
    return tilings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wgpu_bench.matmul_bench",
        description="WebGPU matmul kernel benchmark (naive, shared-memory tiled, 1-D block-tiled).",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Benchmark one or all kernel variants on one problem size.")
    run.add_argument("--out-dir", type=_abs_path, required=True)
    run.add_argument("--variant", default="1", help="Kernel variant 1, 2, 3 (or 'all').")
    run.add_argument("--size", default="small", help="tiny, small, large or MxKxN.")
    _add_common(run)
    _add_run_options(run)

    sweep = sub.add_parser("sweep", help="Benchmark all variants over several problem sizes.")
    sweep.add_argument("--out-dir", type=_abs_path, required=True)
    sweep.add_argument("--sizes", default="tiny,small", help="Comma-separated sizes (names or MxKxN).")
    _add_common(sweep)
    _add_run_options(sweep)

    report = sub.add_parser("report", help="Generate report.md from results.json (no benchmark run).")
    report.add_argument("--out-dir", type=_abs_path, required=True)

    emit = sub.add_parser("emit", help="Write an instantiated shader without running it.")
    emit.add_argument("--variant", type=int, required=True, choices=[1, 2, 3])
    emit.add_argument("--size", default="small", help="tiny, small, large or MxKxN.")
    emit.add_argument("--out", type=_abs_path, default=None, help="Output .wgsl path (default: stdout).")
    _add_common(emit)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, ns.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if ns.cmd == "run":
            return timing_run(
                out_dir=ns.out_dir,
                variants=list(iter_variants(ns.variant)),
                shape=resolve_size(ns.size),
                precision=NumType.parse(ns.precision),
                tilings=build_tilings(ns),
                iterations=ns.iterations,
                seed=ns.seed,
                validate=ns.validate,
                strict=ns.strict,
            )
        if ns.cmd == "sweep":
            return sweep_run(
                out_dir=ns.out_dir,
                shapes=[resolve_size(s.strip()) for s in ns.sizes.split(",") if s.strip()],
                precision=NumType.parse(ns.precision),
                tilings=build_tilings(ns),
                iterations=ns.iterations,
                validate=ns.validate,
                strict=ns.strict,
            )
        if ns.cmd == "report":
            return report_run(out_dir=ns.out_dir)
        if ns.cmd == "emit":
            tiling = build_tilings(ns).get(ns.variant) or default_tiling(ns.variant)
            plan = plan_kernel(ns.variant, resolve_size(ns.size), tiling, precision=NumType.parse(ns.precision))
            if ns.out is None:
                sys.stdout.write(plan.code.text)
            else:
                ns.out.parent.mkdir(parents=True, exist_ok=True)
                ns.out.write_text(plan.code.text)
            print(f"workgroup_size={plan.code.workgroup_size} n_workgroups={plan.n_workgroups}", file=sys.stderr)
            return 0
    except (KeyError, ValueError, TypeError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    raise AssertionError(f"Unhandled cmd: {ns.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
