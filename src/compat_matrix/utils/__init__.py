"""asyncio helpers shared by the matrix runner and the CLI."""

from compat_matrix.utils.concurrency import CancellationToken, run_bounded, run_with_timeout

__all__ = ["CancellationToken", "run_bounded", "run_with_timeout"]
