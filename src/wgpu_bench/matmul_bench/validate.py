from __future__ import annotations

import logging

import attrs
import numpy as np

from .config import DEFAULT_ATOL, DEFAULT_RTOL

logger = logging.getLogger(__name__)


@attrs.define(frozen=True, slots=True)
class ValidationOutcome:
    passed: bool
    max_abs_error: float
    max_rel_error: float
    mismatches: int = 0

    @property
    def status(self) -> str:
        return "pass" if self.passed else "fail"

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "max_abs_error": self.max_abs_error,
            "max_rel_error": self.max_rel_error,
            "mismatches": self.mismatches,
        }


def matmul_forward_cpu(inp: np.ndarray, weight: np.ndarray, bias: np.ndarray | None = None) -> np.ndarray:
    """out[M, N] = inp[M, K] @ weight[N, K]^T (+ bias[N]), accumulated in float64."""
    out = inp.astype(np.float64) @ weight.astype(np.float64).T
    if bias is not None:
        out = out + bias.astype(np.float64)
    return out.astype(np.float32)


def compare(
    actual: np.ndarray, expected: np.ndarray, *, rtol: float = DEFAULT_RTOL, atol: float = DEFAULT_ATOL
) -> ValidationOutcome:
    if actual.shape != expected.shape:
        raise ValueError(f"Shape mismatch: actual {actual.shape} vs expected {expected.shape}")
    a = actual.astype(np.float64)
    e = expected.astype(np.float64)
    abs_err = np.abs(a - e)
    rel_err = abs_err / np.maximum(np.abs(e), np.finfo(np.float64).tiny)
    close = np.isclose(a, e, rtol=rtol, atol=atol)
    return ValidationOutcome(
        passed=bool(close.all()),
        max_abs_error=float(abs_err.max()) if abs_err.size else 0.0,
        max_rel_error=float(rel_err.max()) if rel_err.size else 0.0,
        mismatches=int((~close).sum()),
    )


def check_cpu(
    inp: np.ndarray,
    weight: np.ndarray,
    output: np.ndarray,
    *,
    rtol: float = DEFAULT_RTOL,
    atol: float = DEFAULT_ATOL,
) -> ValidationOutcome:
    """Compare a device result against the CPU reference. Never raises on mismatch."""
    logger.info("Computing CPU reference implementation")
    reference = matmul_forward_cpu(inp, weight)
    outcome = compare(output.reshape(reference.shape), reference, rtol=rtol, atol=atol)
    if outcome.passed:
        logger.info("PASS")
    else:
        logger.error(
            "FAIL: %d mismatched element(s), max_abs_error=%.3g max_rel_error=%.3g",
            outcome.mismatches,
            outcome.max_abs_error,
            outcome.max_rel_error,
        )
    return outcome


def show_matrix(a: np.ndarray, name: str = "", *, edge: int = 4) -> str:
    """Render a 2-D array with rows/cols elided past ``edge`` at each end."""
    rows, cols = a.shape
    lines = [f"{name} ({rows}, {cols})"]
    row_idx = list(range(rows)) if rows <= 2 * edge else [*range(edge), -1, *range(rows - edge, rows)]
    col_idx = list(range(cols)) if cols <= 2 * edge else [*range(edge), -1, *range(cols - edge, cols)]
    for r in row_idx:
        if r == -1:
            lines.append("  ...")
            continue
        cells = ["..." if c == -1 else f"{float(a[r, c]):9.4f}" for c in col_idx]
        lines.append("  " + " ".join(cells))
    return "\n".join(lines)
