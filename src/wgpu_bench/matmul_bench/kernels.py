"""WGSL matmul kernel variants for C = A @ B^T.

B is stored as B^T (N x K, row-major), so both operands are read along K
with unit stride.

Variants:

1. naive: one invocation per output element, dot product straight from
   global memory.
2. shared_tiled: T x T tiles of A and B^T staged in workgroup memory,
   T = isqrt(workgroup_size.x). Loads are not masked, so T must divide M, K
   and N.
3. blocktiled_1d: each workgroup owns a BM x BN block of C, each invocation
   accumulates TM rows of it in registers. Only verified for
   BM = BK = BN = 4, TM = 1; see ``blocktiling_defects``.
"""

from __future__ import annotations

import math

import attrs

from .config import (
    BlockTiling,
    NaiveTiling,
    NumType,
    Shape,
    SharedTiling,
    Tiling,
    VARIANTS,
    cdiv,
    cdiv_shape,
)
from .template import ShaderTemplate


@attrs.define(frozen=True, slots=True)
class ShaderCode:
    text: str
    workgroup_size: tuple[int, int, int]
    entry_point: str = "main"

    def __attrs_post_init__(self) -> None:
        if len(self.workgroup_size) != 3 or any(int(v) < 1 for v in self.workgroup_size):
            raise ValueError(f"workgroup_size must be 3 positive ints, got {self.workgroup_size!r}")


MATMUL_NAIVE = ShaderTemplate(
    name="matmul_naive",
    source="""
@group(0) @binding(0) var<storage, read_write> A: array<{{precision}}>;
@group(0) @binding(1) var<storage, read_write> B: array<{{precision}}>;
@group(0) @binding(2) var<storage, read_write> C: array<{{precision}}>;

@compute @workgroup_size({{workgroup_size}})
fn main(@builtin(global_invocation_id) globalID: vec3<u32>) {
    // x indexes rows so the launch grid reads as (M, N, 1)
    let row = globalID.x;
    let col = globalID.y;
    if (row >= {{M}} || col >= {{N}}) {
        return;
    }
    var total: {{precision}} = 0.0;
    for (var k = 0u; k < {{K}}; k = k + 1u) {
        total += A[row * {{K}} + k] * B[col * {{K}} + k];
    }
    C[row * {{N}} + col] = total;
}
""",
)


MATMUL_SHARED_TILED = ShaderTemplate(
    name="matmul_shared_tiled",
    source="""
@group(0) @binding(0) var<storage, read_write> A: array<{{precision}}>;
@group(0) @binding(1) var<storage, read_write> B: array<{{precision}}>;
@group(0) @binding(2) var<storage, read_write> C: array<{{precision}}>;
var<workgroup> As: array<{{precision}}, {{tile_size}} * {{tile_size}}>;
var<workgroup> Bs: array<{{precision}}, {{tile_size}} * {{tile_size}}>;

@compute @workgroup_size({{workgroup_size}})
fn main(
    @builtin(local_invocation_index) localIdx: u32,
    @builtin(workgroup_id) groupID: vec3<u32>) {
    let loadRow = localIdx / {{tile_size}};
    let loadCol = localIdx % {{tile_size}};
    let row = groupID.x * {{tile_size}} + loadRow;
    let col = groupID.y * {{tile_size}} + loadCol;
    let aRow = groupID.x * {{tile_size}} + loadRow;
    let bRow = groupID.y * {{tile_size}} + loadCol;
    var total: {{precision}} = 0.0;
    for (var tile = 0u;
         tile < ({{K}} + {{tile_size}} - 1) / {{tile_size}};
         tile = tile + 1u) {
        let aCol = tile * {{tile_size}} + loadCol;
        let bCol = tile * {{tile_size}} + loadRow;
        // unmasked: tile_size must divide M, K and N
        As[loadRow * {{tile_size}} + loadCol] = A[aRow * {{K}} + aCol];
        Bs[loadCol * {{tile_size}} + loadRow] = B[bRow * {{K}} + bCol];
        workgroupBarrier();
        for (var k = 0u; k < {{tile_size}}; k = k + 1u) {
            total += As[loadRow * {{tile_size}} + k] * Bs[loadCol * {{tile_size}} + k];
        }
        workgroupBarrier();
    }
    if (row >= {{M}} || col >= {{N}}) {
        return;
    }
    C[row * {{N}} + col] = total;
}
""",
)


MATMUL_BLOCKTILED_1D = ShaderTemplate(
    name="matmul_blocktiled_1d",
    source="""
@group(0) @binding(0) var<storage, read_write> A: array<{{precision}}>;
@group(0) @binding(1) var<storage, read_write> B: array<{{precision}}>;
@group(0) @binding(2) var<storage, read_write> C: array<{{precision}}>;
var<workgroup> tileA: array<{{precision}}, {{BM}} * {{BK}}>;
var<workgroup> tileB: array<{{precision}}, {{BK}} * {{BN}}>;

@compute @workgroup_size({{workgroup_size}})
fn main(
    @builtin(local_invocation_id) localID: vec3<u32>,
    @builtin(workgroup_id) groupID: vec3<u32>) {

    var threadResults: array<{{precision}}, {{TM}}>;

    let cRow: u32 = groupID.x;
    let cCol: u32 = groupID.y;

    // first C element owned by this invocation
    let threadRow: u32 = localID.x / {{BN}};
    let threadCol: u32 = localID.x % {{BN}};

    let loadColA = localID.x % {{BK}};
    let loadRowA = localID.x / {{BK}};
    // B is stored as B^T
    let loadColB = localID.x % {{BK}};
    let loadRowB = localID.x / {{BK}};

    var aPtr = cRow * {{BM}} * {{K}};
    var bPtr = cCol * {{BN}} * {{K}};
    let cPtr = cRow * {{BM}} * {{N}} + cCol * {{BN}};

    for (var bkIdx = 0; bkIdx < {{K}}; bkIdx += {{BK}}) {
        tileA[loadRowA * {{BK}} + loadColA] = A[aPtr + loadRowA * {{K}} + loadColA];
        tileB[loadRowB * {{BK}} + loadColB] = B[bPtr + loadRowB * {{K}} + loadColB];

        aPtr += {{BK}};
        bPtr += {{BK}};

        workgroupBarrier();

        for (var dotIdx: u32 = 0; dotIdx < {{BK}}; dotIdx = dotIdx + 1) {
            let tmp = tileB[threadCol * {{BK}} + dotIdx];
            for (var resIdx: u32 = 0; resIdx < {{TM}}; resIdx = resIdx + 1) {
                // multiply by 0/1 instead of branching
                let mask = {{precision}}(threadRow * {{TM}} + resIdx < {{BM}}
                                && threadCol < {{BN}}
                                && threadRow * {{TM}} + resIdx < {{M}}
                                && cCol * {{BN}} + threadCol < {{N}}
                                && cRow * {{BM}} + threadRow < {{M}});
                threadResults[resIdx] += mask * tileA[(threadRow * {{TM}} + resIdx) * {{BK}} + dotIdx] * tmp;
            }
        }

        workgroupBarrier();
    }

    for (var resIdx: u32 = 0; resIdx < {{TM}}; resIdx = resIdx + 1) {
        C[cPtr + (threadRow * {{TM}} + resIdx) * {{N}} + threadCol] = threadResults[resIdx];
    }
}
""",
)


TEMPLATES: dict[int, ShaderTemplate] = {
    1: MATMUL_NAIVE,
    2: MATMUL_SHARED_TILED,
    3: MATMUL_BLOCKTILED_1D,
}


def _finish(text: str, precision: NumType) -> str:
    if precision is NumType.F16:
        return "enable f16;\n" + text
    return text


def create_matmul1(
    m: int,
    k: int,
    n: int,
    *,
    workgroup_size: tuple[int, int, int] = (16, 16, 1),
    precision: NumType = NumType.F32,
    template: ShaderTemplate = MATMUL_NAIVE,
) -> ShaderCode:
    text = template.render(
        {"precision": precision, "workgroup_size": workgroup_size, "M": m, "K": k, "N": n}
    )
    return ShaderCode(text=_finish(text, precision), workgroup_size=workgroup_size)


def create_matmul2(
    m: int,
    k: int,
    n: int,
    *,
    workgroup_size: tuple[int, int, int] = (256, 1, 1),
    precision: NumType = NumType.F32,
    template: ShaderTemplate = MATMUL_SHARED_TILED,
) -> ShaderCode:
    tile_size = math.isqrt(workgroup_size[0])
    text = template.render(
        {
            "precision": precision,
            "workgroup_size": workgroup_size,
            "M": m,
            "K": k,
            "N": n,
            "tile_size": tile_size,
        }
    )
    return ShaderCode(text=_finish(text, precision), workgroup_size=workgroup_size)


def create_matmul3(
    m: int,
    k: int,
    n: int,
    *,
    bm: int,
    bk: int,
    bn: int,
    tm: int,
    workgroup_size: tuple[int, int, int] = (256, 1, 1),
    precision: NumType = NumType.F32,
    template: ShaderTemplate = MATMUL_BLOCKTILED_1D,
) -> ShaderCode:
    text = template.render(
        {
            "precision": precision,
            "workgroup_size": workgroup_size,
            "M": m,
            "K": k,
            "N": n,
            "BM": bm,
            "BK": bk,
            "BN": bn,
            "TM": tm,
        }
    )
    return ShaderCode(text=_finish(text, precision), workgroup_size=workgroup_size)


def blocktiling_defects(tiling: BlockTiling) -> list[str]:
    """List the structural assumptions of the 1-D block-tiled kernel that
    ``tiling`` violates.

    The kernel loads exactly one element of each shared tile per invocation
    and sizes grid.x as cdiv(cdiv(M, BM), TM) while each workgroup writes BM
    rows. Parameter sets outside those assumptions produce wrong results; an
    empty list does not mean the kernel has been verified for them.
    """
    reasons: list[str] = []
    invocations = tiling.bm * tiling.bn // tiling.tm
    if (tiling.bm * tiling.bn) % tiling.tm != 0:
        reasons.append(f"BM*BN={tiling.bm * tiling.bn} is not a multiple of TM={tiling.tm}")
    if invocations != tiling.bm * tiling.bk:
        reasons.append(
            f"{invocations} invocations load one element each but tileA holds BM*BK={tiling.bm * tiling.bk}"
        )
    if invocations != tiling.bn * tiling.bk:
        reasons.append(
            f"{invocations} invocations load one element each but tileB holds BK*BN={tiling.bk * tiling.bn}"
        )
    if tiling.tm != 1:
        reasons.append(f"grid.x divides the BM row-block count by TM={tiling.tm} but each workgroup covers BM rows")
    return reasons


@attrs.define(frozen=True, slots=True)
class LaunchPlan:
    variant: int
    shape: Shape
    precision: NumType
    tiling: Tiling
    code: ShaderCode
    n_workgroups: tuple[int, int, int]
    # Per-dimension extent covered by one grid step, as implied by the grid formula.
    grid_extent: tuple[int, int, int]
    known_defect: bool = False

    @property
    def variant_name(self) -> str:
        return VARIANTS[self.variant]


def plan_kernel(variant: int, shape: Shape, tiling: Tiling, *, precision: NumType = NumType.F32) -> LaunchPlan:
    """Instantiate the variant's shader and compute its launch grid."""
    m, k, n = shape.m, shape.k, shape.n

    if variant == 1:
        if not isinstance(tiling, NaiveTiling):
            raise TypeError(f"variant 1 expects NaiveTiling, got {type(tiling).__name__}")
        wg = tiling.workgroup_size
        code = create_matmul1(m, k, n, workgroup_size=wg, precision=precision)
        extent = wg
        grid = cdiv_shape((m, n, 1), extent)
        return LaunchPlan(variant, shape, precision, tiling, code, grid, extent)

    if variant == 2:
        if not isinstance(tiling, SharedTiling):
            raise TypeError(f"variant 2 expects SharedTiling, got {type(tiling).__name__}")
        t = tiling.tile_size
        code = create_matmul2(m, k, n, workgroup_size=tiling.workgroup_size, precision=precision)
        extent = (t, t, 1)
        grid = cdiv_shape((m, n, 1), extent)
        return LaunchPlan(variant, shape, precision, tiling, code, grid, extent)

    if variant == 3:
        if not isinstance(tiling, BlockTiling):
            raise TypeError(f"variant 3 expects BlockTiling, got {type(tiling).__name__}")
        code = create_matmul3(
            m,
            k,
            n,
            bm=tiling.bm,
            bk=tiling.bk,
            bn=tiling.bn,
            tm=tiling.tm,
            workgroup_size=tiling.workgroup_size,
            precision=precision,
        )
        grid = (cdiv(cdiv(m, tiling.bm), tiling.tm), cdiv(n, tiling.bn), 1)
        extent = (tiling.bm * tiling.tm, tiling.bn, 1)
        return LaunchPlan(variant, shape, precision, tiling, code, grid, extent, known_defect=True)

    raise KeyError(f"Unknown variant={variant!r}. Known: {sorted(VARIANTS)}")
