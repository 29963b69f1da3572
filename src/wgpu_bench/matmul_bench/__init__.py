"""WebGPU matmul kernel benchmark.

This package instantiates WGSL matmul kernels (naive, shared-memory tiled and
1-D block-tiled) from templates, dispatches them repeatedly through wgpu-py,
reports throughput, and optionally checks the result against a CPU reference.
"""

from __future__ import annotations
