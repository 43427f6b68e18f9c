"""Async-friendly subprocess helpers.

`subprocess.run()` is executed via `asyncio.to_thread()` rather than
`asyncio.create_subprocess_exec()`; its `timeout` kills the child, which keeps
external tool calls strictly bounded.
"""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from typing import Sequence

from liveuploader.exceptions import ExternalToolError


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    def output_text(self) -> str:
        return f"stdout=[{self.stdout.decode(errors='ignore')}] stderr=[{self.stderr.decode(errors='ignore')}]"


async def run_subprocess(
    args: Sequence[str],
    *,
    capture_output: bool = True,
    timeout_s: float | None = None,
) -> RunResult:
    """Run `args` and return its result; never raises on non-zero exit.

    Raises `ExternalToolError` when the binary is missing or the timeout hits.
    """
    tool = str(args[0]) if args else ""

    def _run() -> subprocess.CompletedProcess[bytes]:
        return subprocess.run(
            list(args),
            stdout=subprocess.PIPE if capture_output else subprocess.DEVNULL,
            stderr=subprocess.PIPE if capture_output else subprocess.DEVNULL,
            check=False,
            timeout=timeout_s,
        )

    try:
        cp = await asyncio.to_thread(_run)
    except subprocess.TimeoutExpired as exc:
        raise ExternalToolError(
            tool,
            f"timed out after {timeout_s}s",
            stdout=exc.stdout or b"",
            stderr=exc.stderr or b"",
        ) from exc
    except OSError as exc:
        raise ExternalToolError(tool, f"failed to start: {exc}") from exc
    return RunResult(
        returncode=int(cp.returncode),
        stdout=cp.stdout or b"",
        stderr=cp.stderr or b"",
    )
