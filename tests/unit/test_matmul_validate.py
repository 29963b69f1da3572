from __future__ import annotations

import numpy as np
import pytest

from wgpu_bench.matmul_bench.validate import check_cpu, compare, matmul_forward_cpu, show_matrix


def test_matmul_forward_cpu_uses_transposed_weights() -> None:
    inp = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
    weight = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]], dtype=np.float32)
    out = matmul_forward_cpu(inp, weight)
    np.testing.assert_array_equal(out, np.array([[1.0, 2.0, 3.0], [3.0, 4.0, 7.0]], dtype=np.float32))

    bias = np.array([1.0, 1.0, 1.0], dtype=np.float32)
    np.testing.assert_array_equal(matmul_forward_cpu(inp, weight, bias), out + 1.0)


def test_compare_within_tolerance() -> None:
    expected = np.ones((4, 4), dtype=np.float32)
    outcome = compare(expected + 5e-4, expected)
    assert outcome.passed
    assert outcome.mismatches == 0
    assert outcome.max_abs_error == pytest.approx(5e-4, rel=1e-2)


def test_compare_reports_mismatch() -> None:
    expected = np.zeros((2, 2), dtype=np.float32)
    actual = expected.copy()
    actual[1, 1] = 1.0
    outcome = compare(actual, expected)
    assert not outcome.passed
    assert outcome.status == "fail"
    assert outcome.mismatches == 1
    assert outcome.max_abs_error == 1.0


def test_check_cpu_mismatch_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    inp = np.ones((2, 3), dtype=np.float32)
    weight = np.ones((4, 3), dtype=np.float32)
    wrong = np.zeros((2, 4), dtype=np.float32)
    with caplog.at_level("INFO"):
        outcome = check_cpu(inp, weight, wrong)
    assert not outcome.passed
    assert any(r.message.startswith("FAIL") for r in caplog.records)


def test_compare_shape_mismatch_raises() -> None:
    with pytest.raises(ValueError):
        compare(np.zeros((2, 2)), np.zeros((2, 3)))


def test_show_matrix_elides_large_arrays() -> None:
    text = show_matrix(np.arange(100, dtype=np.float32).reshape(10, 10), "X", edge=2)
    lines = text.splitlines()
    assert lines[0] == "X (10, 10)"
    assert "  ..." in lines
    assert len(lines) == 1 + 2 + 1 + 2
