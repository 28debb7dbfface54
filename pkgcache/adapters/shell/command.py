"""
Shell command adapter — run external build tools.

This is the single place where ``subprocess.run`` is called. The git and
patch adapters build their argv lists and go through ``run_command`` too,
so timing, output capture and error shaping stay in one spot.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Keep the tail of captured output on receipts; make logs get long.
_OUTPUT_TAIL = 4000


def run_command(
    adapter: str,
    action_id: str,
    argv: list[str],
    *,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    timeout: int | None = None,
    capture: bool = True,
) -> Receipt:
    """Run ``argv`` and return a receipt. Never raises.

    Args:
        adapter: Adapter name recorded on the receipt.
        action_id: Action id recorded on the receipt.
        argv: Command and arguments (no shell).
        cwd: Working directory.
        env: Variables merged over the current environment.
        timeout: Seconds before the process is killed (None = no limit).
        capture: Capture stdout/stderr. When False the tool writes
            straight to the terminal (long builds).
    """
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    logger.debug("Executing: %s (cwd=%s)", shlex.join(argv), cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            env=full_env,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command timed out after {timeout}s",
            metadata={"command": argv, "timeout": timeout},
        )
    except FileNotFoundError:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command not found: {argv[0]}",
            return_code=127,
            metadata={"command": argv},
        )
    except OSError as e:
        return Receipt.failure(
            adapter=adapter,
            action_id=action_id,
            error=f"Command execution error: {e}",
            metadata={"command": argv},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = (result.stdout or "")[-_OUTPUT_TAIL:].strip()
    stderr = (result.stderr or "")[-_OUTPUT_TAIL:].strip()

    if result.returncode == 0:
        return Receipt.success(
            adapter=adapter,
            action_id=action_id,
            output=stdout,
            return_code=0,
            duration_ms=elapsed_ms,
            metadata={"command": argv, "stderr": stderr},
        )

    return Receipt.failure(
        adapter=adapter,
        action_id=action_id,
        error=stderr or stdout or f"Command exited with code {result.returncode}",
        output=stdout,
        return_code=result.returncode,
        duration_ms=elapsed_ms,
        metadata={"command": argv},
    )


class ShellCommandAdapter(Adapter):
    """Run a build command.

    Action params:
        command (list[str] | str): argv, or a string split with shlex.
        cwd (str): Working directory (default: context.cwd).
        env (dict): Extra environment, merged over context.env.
        timeout (int): Timeout in seconds (default: none).
        stream (bool): Let the tool write to the terminal (default: False).
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command")
        if not command:
            return False, "Missing required param: 'command'"

        cwd = context.working_dir
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.params["command"]
        argv = shlex.split(command) if isinstance(command, str) else [str(c) for c in command]
        env = {**context.env, **context.params.get("env", {})}

        return run_command(
            self.name,
            context.action.id,
            argv,
            cwd=context.working_dir,
            env=env,
            timeout=context.params.get("timeout"),
            capture=not context.params.get("stream", False),
        )
