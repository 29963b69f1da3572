"""GPU runtime boundary and its wgpu-py implementation.

The benchmark loop only talks to a ``GpuRuntime``. ``WgpuRuntime`` maps each
operation onto WebGPU through wgpu-py:

- a kernel is a compute pipeline + bind group + one pre-encoded command
  buffer; WebGPU command buffers are single-use, so "reset" re-encodes it;
- a dispatch submits that command buffer and returns a one-shot
  ``concurrent.futures.Future`` resolved by a single worker thread once a
  blocking readback of a small fence buffer returns. The readback is queued
  behind the dispatch, so it cannot finish before the dispatch has.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

import attrs
import numpy as np
import wgpu

from .config import NumType, power_preference
from .kernels import ShaderCode

logger = logging.getLogger(__name__)

CompletionToken = Future

FENCE_NBYTES = 4


class GpuRuntime(Protocol):
    last_adapter_info: dict[str, str]

    def create_context(self, *, precision: NumType = NumType.F32) -> Any: ...

    def create_tensor(
        self, ctx: Any, shape: tuple[int, ...], num_type: NumType, data: np.ndarray | None = None
    ) -> Any: ...

    def create_kernel(
        self, ctx: Any, code: ShaderCode, bindings: Sequence[Any], n_workgroups: tuple[int, int, int]
    ) -> Any: ...

    def dispatch_kernel(self, ctx: Any, kernel: Any) -> CompletionToken: ...

    def wait(self, ctx: Any, token: CompletionToken) -> None: ...

    def reset_command_buffer(self, ctx: Any, kernel: Any) -> None: ...

    def to_cpu(self, ctx: Any, tensor: Any, nbytes: int) -> np.ndarray:
        """Return the first ``nbytes`` of ``tensor`` as a flat host array."""
        ...

    def release_context(self, ctx: Any) -> None: ...


@attrs.define(slots=True)
class WgpuContext:
    adapter: Any
    device: Any
    executor: ThreadPoolExecutor
    fence: Any = None
    adapter_info: dict[str, str] = attrs.field(factory=dict)


@attrs.define(frozen=True, slots=True)
class WgpuTensor:
    buffer: Any
    shape: tuple[int, ...]
    num_type: NumType

    @property
    def nbytes(self) -> int:
        return math.prod(self.shape) * self.num_type.itemsize


@attrs.define(slots=True)
class WgpuKernel:
    pipeline: Any
    bind_group: Any
    n_workgroups: tuple[int, int, int]
    command_buffer: Any = None


def _adapter_info(adapter: Any) -> dict[str, str]:
    info = getattr(adapter, "info", None)
    if not info:
        return {}
    return {k: str(v) for k, v in dict(info).items() if k in {"vendor", "device", "adapter_type", "backend_type"}}


def _drain_queue(ctx: WgpuContext) -> None:
    ctx.device.queue.read_buffer(ctx.fence, 0, size=FENCE_NBYTES)


class WgpuRuntime:
    def __init__(self, *, power_preference_override: str | None = None) -> None:
        self._power_preference = power_preference_override or power_preference()
        self.last_adapter_info: dict[str, str] = {}

    def create_context(self, *, precision: NumType = NumType.F32) -> WgpuContext:
        adapter = wgpu.gpu.request_adapter_sync(power_preference=self._power_preference)
        if adapter is None:
            raise RuntimeError("No WebGPU adapter available")

        required_features: list[str] = []
        if precision is NumType.F16:
            if "shader-f16" not in adapter.features:
                raise RuntimeError("Adapter does not support shader-f16 (required for f16 precision)")
            required_features.append("shader-f16")

        device = adapter.request_device_sync(required_features=required_features)
        info = _adapter_info(adapter)
        self.last_adapter_info = info
        logger.info("Created WebGPU context: %s", info or "unknown adapter")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="wgpu-completion")
        fence = device.create_buffer(size=FENCE_NBYTES, usage=wgpu.BufferUsage.COPY_SRC)
        return WgpuContext(adapter=adapter, device=device, executor=executor, fence=fence, adapter_info=info)

    def create_tensor(
        self, ctx: WgpuContext, shape: tuple[int, ...], num_type: NumType, data: np.ndarray | None = None
    ) -> WgpuTensor:
        usage = wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_SRC | wgpu.BufferUsage.COPY_DST
        if data is None:
            size = math.prod(shape) * num_type.itemsize
            buffer = ctx.device.create_buffer(size=size, usage=usage)
        else:
            host = np.ascontiguousarray(data, dtype=num_type.np_dtype)
            if host.size != math.prod(shape):
                raise ValueError(f"Host data has {host.size} elements, expected shape {shape}")
            buffer = ctx.device.create_buffer_with_data(data=host, usage=usage)
        return WgpuTensor(buffer=buffer, shape=tuple(shape), num_type=num_type)

    def create_kernel(
        self,
        ctx: WgpuContext,
        code: ShaderCode,
        bindings: Sequence[WgpuTensor],
        n_workgroups: tuple[int, int, int],
    ) -> WgpuKernel:
        module = ctx.device.create_shader_module(code=code.text)
        pipeline = ctx.device.create_compute_pipeline(
            layout="auto",
            compute={"module": module, "entry_point": code.entry_point},
        )
        entries = [
            {"binding": i, "resource": {"buffer": t.buffer, "offset": 0, "size": t.nbytes}}
            for i, t in enumerate(bindings)
        ]
        bind_group = ctx.device.create_bind_group(layout=pipeline.get_bind_group_layout(0), entries=entries)
        kernel = WgpuKernel(pipeline=pipeline, bind_group=bind_group, n_workgroups=n_workgroups)
        kernel.command_buffer = self._encode(ctx, kernel)
        return kernel

    def _encode(self, ctx: WgpuContext, kernel: WgpuKernel) -> Any:
        encoder = ctx.device.create_command_encoder()
        compute_pass = encoder.begin_compute_pass()
        compute_pass.set_pipeline(kernel.pipeline)
        compute_pass.set_bind_group(0, kernel.bind_group)
        compute_pass.dispatch_workgroups(*kernel.n_workgroups)
        compute_pass.end()
        return encoder.finish()

    def dispatch_kernel(self, ctx: WgpuContext, kernel: WgpuKernel) -> CompletionToken:
        if kernel.command_buffer is None:
            raise RuntimeError("Kernel command buffer was already submitted; reset it before dispatching again")
        ctx.device.queue.submit([kernel.command_buffer])
        kernel.command_buffer = None
        return ctx.executor.submit(_drain_queue, ctx)

    def wait(self, ctx: WgpuContext, token: CompletionToken) -> None:
        # No timeout: a device that never signals blocks here.
        token.result()

    def reset_command_buffer(self, ctx: WgpuContext, kernel: WgpuKernel) -> None:
        kernel.command_buffer = self._encode(ctx, kernel)

    def to_cpu(self, ctx: WgpuContext, tensor: WgpuTensor, nbytes: int) -> np.ndarray:
        raw = ctx.device.queue.read_buffer(tensor.buffer, 0, size=nbytes)
        return np.frombuffer(raw, dtype=tensor.num_type.np_dtype).copy()

    def release_context(self, ctx: WgpuContext) -> None:
        ctx.executor.shutdown(wait=True)
