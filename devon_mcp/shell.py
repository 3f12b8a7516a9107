"""
Command execution for the external macOS tools (plutil, PlistBuddy).

``run_command`` never raises; callers branch on ``result["success"]``.
Anything with the same signature can be passed as a ``runner`` to the
reader functions, which is how the tests replace the real binaries.
"""

import logging
import subprocess
import threading
import time
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_OUTPUT = 50 * 1024 * 1024

CHUNK_SIZE = 64 * 1024
# Readers left blocked by a surviving grandchild are abandoned after this
READER_GRACE = 1.0

CommandRunner = Callable[..., Dict[str, Any]]


class OutputLimitExceeded(Exception):
    """A command wrote more than the allowed number of bytes."""


class _CappedReader(threading.Thread):
    """Drains one pipe, keeping at most ``limit`` bytes."""

    def __init__(self, stream, limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.chunks: List[bytes] = []
        self.size = 0
        self.overflowed = False

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read1(CHUNK_SIZE)
                if not chunk:
                    return
                self.size += len(chunk)
                if self.size > self.limit:
                    self.overflowed = True
                    return
                self.chunks.append(chunk)
        except (OSError, ValueError):
            return

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


def _run_capped(args: List[str], timeout: float, max_output: int) -> str:
    """
    Run ``args`` and return stdout, never buffering more than ``max_output`` bytes.

    The process is killed as soon as stdout passes the cap or the timeout
    expires.

    Raises:
        subprocess.CalledProcessError: Non-zero exit status
        subprocess.TimeoutExpired: The command did not finish in time
        OutputLimitExceeded: stdout passed ``max_output`` bytes
        OSError: The executable could not be started
    """
    proc = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    stdout = _CappedReader(proc.stdout, max_output)
    stderr = _CappedReader(proc.stderr, max_output)
    deadline = time.monotonic() + timeout
    stdout.start()
    stderr.start()
    try:
        stdout.join(timeout)
        if stdout.is_alive():
            raise subprocess.TimeoutExpired(args, timeout)
        if stdout.overflowed:
            raise OutputLimitExceeded(f"Command output exceeded {max_output} bytes")
        # stdout is closed, the process may still be running
        returncode = proc.wait(timeout=max(0.0, deadline - time.monotonic()))
        stderr.join(READER_GRACE)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        for reader, stream in ((stdout, proc.stdout), (stderr, proc.stderr)):
            reader.join(READER_GRACE)
            if not reader.is_alive():
                stream.close()

    if returncode != 0:
        raise subprocess.CalledProcessError(returncode, args, stdout.text(), stderr.text())
    return stdout.text()


def run_command(
    args: List[str],
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT
) -> Dict[str, Any]:
    """
    Execute a command and return its stdout or error information.

    Args:
        args: Executable and its arguments (no shell is involved)
        timeout: Seconds before the process is killed
        max_output: Largest stdout accepted, in bytes; reading stops there

    Returns:
        Dictionary with ``success`` and either ``output`` or ``error``
    """
    logger.debug(f"Running command: {args}")
    try:
        output = _run_capped(args, timeout, max_output)
    except subprocess.CalledProcessError as e:
        error = (e.stderr or "").strip() or str(e)
        logger.warning(f"Command failed ({e.returncode}): {args[0]}: {error}")
        return {
            "success": False,
            "error": error,
            "command": args
        }
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out after {timeout:g} seconds: {args[0]}")
        return {
            "success": False,
            "error": f"Command timed out after {timeout:g} seconds",
            "command": args
        }
    except OutputLimitExceeded as e:
        logger.warning(f"{args[0]}: {e}")
        return {
            "success": False,
            "error": str(e),
            "command": args
        }
    except OSError as e:
        logger.warning(f"Could not start {args[0]}: {e}")
        return {
            "success": False,
            "error": f"Could not run {args[0]}: {e}",
            "command": args
        }

    return {
        "success": True,
        "output": output,
        "command": args
    }
