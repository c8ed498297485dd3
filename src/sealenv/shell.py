# src/sealenv/shell.py: Subprocess execution wrapper.
# This module is the single subprocess boundary for the external collaborators
# (age-keygen, sops, keepassxc-cli). It maps a missing binary and a timeout to
# typed exceptions and keeps arguments and stdin out of the logs.

import logging
import os
import subprocess
from typing import Dict, List, Optional

from .errors import ToolTimeout, ToolUnavailable
from .tools import install_hint

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def run_tool(
    args: List[str],
    input: Optional[bytes] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Run an external tool and return the completed process without checking
    its return code; callers map stderr to their own error types.

    Args:
        args: The command line; args[0] is the binary name.
        input: Bytes fed to stdin (passphrases, plaintext). Never logged.
        env: Extra environment variables layered over os.environ.

    Raises:
        ToolUnavailable: If the binary is not installed.
        ToolTimeout: If the tool does not finish within `timeout` seconds.
    """
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    logger.debug("Running %s (%d args)", args[0], len(args) - 1)
    try:
        result = subprocess.run(
            args,
            input=input,
            env=full_env,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise ToolUnavailable(f"'{args[0]}' is not installed. {install_hint(args[0])}")
    except subprocess.TimeoutExpired:
        raise ToolTimeout(f"'{args[0]}' did not finish within {timeout:g} seconds.")

    logger.debug("%s exited with %d", args[0], result.returncode)
    return result


def stderr_text(result: subprocess.CompletedProcess) -> str:
    """Decode stderr of a completed process for diagnostics."""
    raw = result.stderr or b""
    if isinstance(raw, bytes):
        raw = raw.decode(errors="replace")
    return raw.strip()
