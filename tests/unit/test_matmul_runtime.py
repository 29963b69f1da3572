from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from wgpu_bench.matmul_bench.runtime import FENCE_NBYTES, WgpuContext, WgpuKernel, WgpuRuntime


class _Queue:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def submit(self, buffers: list[Any]) -> None:
        self.calls.append(("submit", tuple(buffers)))

    def read_buffer(self, buffer: Any, offset: int = 0, size: int | None = None) -> memoryview:
        self.calls.append(("read_buffer", (buffer, offset, size)))
        return memoryview(bytes(size or 0))


class _Device:
    def __init__(self) -> None:
        self.queue = _Queue()


@pytest.fixture
def wgpu_ctx():
    executor = ThreadPoolExecutor(max_workers=1)
    ctx = WgpuContext(adapter=None, device=_Device(), executor=executor, fence="fence-buffer")
    yield ctx
    executor.shutdown(wait=True)


def test_dispatch_token_resolves_after_fence_readback(wgpu_ctx) -> None:
    rt = WgpuRuntime(power_preference_override="low-power")
    kernel = WgpuKernel(pipeline=None, bind_group=None, n_workgroups=(1, 1, 1), command_buffer="cmd-0")

    token = rt.dispatch_kernel(wgpu_ctx, kernel)
    rt.wait(wgpu_ctx, token)

    assert token.done()
    assert kernel.command_buffer is None
    assert wgpu_ctx.device.queue.calls == [
        ("submit", ("cmd-0",)),
        ("read_buffer", ("fence-buffer", 0, FENCE_NBYTES)),
    ]


def test_dispatch_requires_an_encoded_command_buffer(wgpu_ctx) -> None:
    rt = WgpuRuntime(power_preference_override="low-power")
    kernel = WgpuKernel(pipeline=None, bind_group=None, n_workgroups=(1, 1, 1))
    with pytest.raises(RuntimeError, match="already submitted"):
        rt.dispatch_kernel(wgpu_ctx, kernel)
    assert wgpu_ctx.device.queue.calls == []
