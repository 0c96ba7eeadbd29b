"""Async command execution utilities."""

import asyncio
import logging

DEFAULT_TIMEOUT = 30
INSTALL_TIMEOUT = 600

_logging = logging.getLogger(__name__)


async def run_command_async(command: str, timeout: int = DEFAULT_TIMEOUT) -> tuple[str, int]:
    """Run a shell command and return its combined output and return code.

    A timeout kills the process and reports return code 1.
    """
    process = None
    try:
        _logging.debug(f"Running command: {command}")
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            _ = await process.wait()
            _logging.error(f"Command timed out after {timeout} seconds: {command}")
            return f"Command timed out after {timeout} seconds", 1

        output = stdout.decode().strip()
        errors = stderr.decode().strip()
        if errors:
            _logging.debug(f"stderr: {errors}")
            output = f"{output}\n{errors}" if output else errors
        return output, process.returncode if process.returncode is not None else 1
    except OSError as e:
        _logging.error(f"Command execution failed: {type(e).__name__}: {e} | Command: {command}")
        return f"Error: {e}", 1
    finally:
        if process:
            transport = getattr(process, "_transport", None)
            if transport:
                transport.close()


def run_command(command: str, timeout: int = DEFAULT_TIMEOUT) -> tuple[str, int]:
    """Blocking wrapper around :func:`run_command_async`."""
    return asyncio.run(run_command_async(command, timeout=timeout))
