from __future__ import annotations

import math
from collections.abc import Sequence
from concurrent.futures import Future
from typing import Any

import attrs
import numpy as np
import pytest

from wgpu_bench.matmul_bench.config import NumType
from wgpu_bench.matmul_bench.kernels import ShaderCode


@attrs.define(slots=True)
class _Tensor:
    data: np.ndarray
    num_type: NumType


@attrs.define(slots=True)
class _Kernel:
    code: ShaderCode
    bindings: tuple[_Tensor, ...]
    n_workgroups: tuple[int, int, int]
    armed: bool = True


class NumpyRuntime:
    """In-process stand-in for the GPU: each dispatch computes C = A @ B^T with numpy."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.kernels: list[_Kernel] = []
        self.released = 0
        self.last_adapter_info: dict[str, str] = {"device": "numpy", "backend_type": "cpu"}

    def create_context(self, *, precision: NumType = NumType.F32) -> dict[str, Any]:
        self.events.append("context")
        return {"precision": precision}

    def create_tensor(
        self, ctx: Any, shape: tuple[int, ...], num_type: NumType, data: np.ndarray | None = None
    ) -> _Tensor:
        if data is None:
            arr = np.zeros(shape, dtype=num_type.np_dtype)
        else:
            arr = np.array(data, dtype=num_type.np_dtype).reshape(shape)
        return _Tensor(data=arr, num_type=num_type)

    def create_kernel(
        self, ctx: Any, code: ShaderCode, bindings: Sequence[_Tensor], n_workgroups: tuple[int, int, int]
    ) -> _Kernel:
        kernel = _Kernel(code=code, bindings=tuple(bindings), n_workgroups=n_workgroups)
        self.kernels.append(kernel)
        return kernel

    def dispatch_kernel(self, ctx: Any, kernel: _Kernel) -> Future:
        if not kernel.armed:
            raise RuntimeError("command buffer already submitted")
        kernel.armed = False
        self.events.append("dispatch")
        a, b, c = kernel.bindings
        c.data[...] = (a.data.astype(np.float32) @ b.data.astype(np.float32).T).astype(c.data.dtype)
        token: Future = Future()
        token.set_result(None)
        return token

    def wait(self, ctx: Any, token: Future) -> None:
        self.events.append("wait")
        token.result()

    def reset_command_buffer(self, ctx: Any, kernel: _Kernel) -> None:
        self.events.append("reset")
        kernel.armed = True

    def to_cpu(self, ctx: Any, tensor: _Tensor, nbytes: int) -> np.ndarray:
        count = nbytes // tensor.num_type.itemsize
        assert count <= math.prod(tensor.data.shape)
        return tensor.data.reshape(-1)[:count].copy()

    def release_context(self, ctx: Any) -> None:
        self.released += 1


@pytest.fixture
def numpy_runtime() -> NumpyRuntime:
    return NumpyRuntime()
