from __future__ import annotations

import enum
import logging
from typing import Any

import attrs

from .runtime import CompletionToken, GpuRuntime

logger = logging.getLogger(__name__)


class KernelState(enum.Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"


class KernelStateError(RuntimeError):
    """Raised on a dispatch/wait/reset call that is invalid in the current state."""


@attrs.define(slots=True)
class DispatchSession:
    """Per-kernel dispatch state: IDLE -> IN_FLIGHT -> COMPLETED -> IDLE.

    The device owns the bound buffers while the session is IN_FLIGHT; the host
    may touch them again only after ``wait`` has returned.
    """

    runtime: GpuRuntime
    ctx: Any
    kernel: Any
    state: KernelState = KernelState.IDLE
    token: CompletionToken | None = None
    dispatch_count: int = 0

    def _require(self, expected: KernelState, op: str) -> None:
        if self.state is not expected:
            raise KernelStateError(f"Cannot {op} kernel in state {self.state.value} (expected {expected.value})")

    def dispatch(self) -> CompletionToken:
        self._require(KernelState.IDLE, "dispatch")
        self.token = self.runtime.dispatch_kernel(self.ctx, self.kernel)
        self.state = KernelState.IN_FLIGHT
        self.dispatch_count += 1
        return self.token

    def wait(self) -> None:
        self._require(KernelState.IN_FLIGHT, "wait on")
        if self.token is None:
            raise KernelStateError("Cannot wait on kernel: no completion token for the in-flight dispatch")
        self.runtime.wait(self.ctx, self.token)
        self.state = KernelState.COMPLETED

    def reset(self) -> None:
        self._require(KernelState.COMPLETED, "reset")
        self.runtime.reset_command_buffer(self.ctx, self.kernel)
        self.token = None
        self.state = KernelState.IDLE

    def run_once(self) -> None:
        self.dispatch()
        self.wait()
        self.reset()


def run_iterations(session: DispatchSession, iterations: int) -> int:
    """Run ``iterations`` strictly sequential dispatch/wait/reset cycles."""
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}")
    for i in range(iterations):
        session.run_once()
        logger.debug("Dispatch %d/%d completed", i + 1, iterations)
    return session.dispatch_count
