"""Subprocess helper shared by the iperf3 runner and the platform adapters."""

import asyncio
import subprocess
from typing import List


async def run_command(command: List[str]) -> subprocess.CompletedProcess:
    """Run a command asynchronously and capture its decoded output."""
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )
    stdout, stderr = await process.communicate()

    return subprocess.CompletedProcess(
        args=command,
        returncode=process.returncode,
        stdout=stdout.decode(errors='replace'),
        stderr=stderr.decode(errors='replace')
    )
