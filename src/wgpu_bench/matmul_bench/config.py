from __future__ import annotations

import enum
import math
import os
from collections.abc import Iterable

import attrs
import numpy as np


def cdiv(n: int, d: int) -> int:
    """Ceiling division for positive integers."""
    return (n + d - 1) // d


def cdiv_shape(total: tuple[int, int, int], group: tuple[int, int, int]) -> tuple[int, int, int]:
    return (cdiv(total[0], group[0]), cdiv(total[1], group[1]), cdiv(total[2], group[2]))


class NumType(enum.Enum):
    """Scalar kinds a run can be configured with (value is the WGSL type name)."""

    F16 = "f16"
    F32 = "f32"

    @property
    def wgsl_name(self) -> str:
        return self.value

    @property
    def np_dtype(self) -> np.dtype:
        return np.dtype(np.float16) if self is NumType.F16 else np.dtype(np.float32)

    @property
    def itemsize(self) -> int:
        return self.np_dtype.itemsize

    @staticmethod
    def parse(v: str) -> "NumType":
        try:
            return NumType(v.strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported precision {v!r}. Known: {[t.value for t in NumType]}") from None


@attrs.define(frozen=True, slots=True)
class Shape:
    """Problem dimensions for C[M,N] = A[M,K] @ B[N,K]^T."""

    m: int
    k: int
    n: int

    @property
    def flop_count(self) -> int:
        # multiply + accumulate
        return 2 * self.m * self.n * self.k

    def to_axis_value(self) -> str:
        return f"{self.m}x{self.k}x{self.n}"

    @staticmethod
    def from_axis_value(v: str) -> "Shape":
        parts = v.split("x")
        if len(parts) != 3:
            raise ValueError(f"Invalid shape value: {v!r} (expected MxKxN)")
        m_s, k_s, n_s = parts
        return Shape(m=int(m_s), k=int(k_s), n=int(n_s))


@attrs.define(frozen=True, slots=True)
class NaiveTiling:
    workgroup_size: tuple[int, int, int] = (16, 16, 1)


@attrs.define(frozen=True, slots=True)
class SharedTiling:
    tile_size: int = 16

    @property
    def workgroup_size(self) -> tuple[int, int, int]:
        return (self.tile_size * self.tile_size, 1, 1)


@attrs.define(frozen=True, slots=True)
class BlockTiling:
    bm: int = 4
    bk: int = 4
    bn: int = 4
    tm: int = 1

    @property
    def workgroup_size(self) -> tuple[int, int, int]:
        # BM * BN outputs per workgroup, TM rows per invocation.
        return (self.bm * self.bn // self.tm, 1, 1)


Tiling = NaiveTiling | SharedTiling | BlockTiling


VARIANTS: dict[int, str] = {
    1: "naive",
    2: "shared_tiled",
    3: "blocktiled_1d",
}

DEFAULT_TILINGS: dict[int, Tiling] = {
    1: NaiveTiling(),
    2: SharedTiling(),
    3: BlockTiling(),
}

# Named problem sizes from the reference driver.
SIZES: dict[str, Shape] = {
    "tiny": Shape(m=16, k=4, n=8),
    "small": Shape(m=256, k=128, n=512),
    "large": Shape(m=4096, k=4096, n=2 * 4096),
}

DEFAULT_ITERATIONS = 4
DEFAULT_SEED = 314159

# CPU reference is only computed at or below this many output elements.
VALIDATION_MAX_ELEMENTS = 256 * 512

DEFAULT_RTOL = 1e-3
DEFAULT_ATOL = 1e-3

# f16 shaders accumulate in half precision; rounding error grows with sqrt(K).
F16_RTOL = 1e-2
F16_ATOL_PER_SQRT_K = 1e-2

POWER_PREFERENCE_ENV = "WGPU_BENCH_POWER_PREFERENCE"
POWER_PREFERENCES: tuple[str, ...] = ("high-performance", "low-power")


def power_preference() -> str:
    pref = os.environ.get(POWER_PREFERENCE_ENV, "high-performance")
    if pref not in POWER_PREFERENCES:
        raise ValueError(f"{POWER_PREFERENCE_ENV}={pref!r} is not one of {list(POWER_PREFERENCES)}")
    return pref


def validation_tolerance(precision: NumType, k: int) -> tuple[float, float]:
    """Return (rtol, atol) for comparing a device result against the CPU reference."""
    if precision is NumType.F16:
        return F16_RTOL, F16_ATOL_PER_SQRT_K * math.sqrt(k)
    return DEFAULT_RTOL, DEFAULT_ATOL


def resolve_size(size: str) -> Shape:
    if size in SIZES:
        return SIZES[size]
    if "x" in size:
        return Shape.from_axis_value(size)
    raise KeyError(f"Unknown size={size!r}. Known: {sorted(SIZES)} or MxKxN")


def iter_variants(variant: str) -> Iterable[int]:
    if variant == "all":
        return tuple(VARIANTS)
    v = int(variant)
    if v not in VARIANTS:
        raise KeyError(f"Unknown variant={variant!r}. Known: {sorted(VARIANTS)}")
    return (v,)


def default_tiling(variant: int) -> Tiling:
    if variant not in DEFAULT_TILINGS:
        raise KeyError(f"Unknown variant={variant!r}. Known: {sorted(VARIANTS)}")
    return DEFAULT_TILINGS[variant]


def tiling_to_dict(tiling: Tiling) -> dict[str, int]:
    if isinstance(tiling, NaiveTiling):
        x, y, z = tiling.workgroup_size
        return {"workgroup_x": x, "workgroup_y": y, "workgroup_z": z}
    return attrs.asdict(tiling)
