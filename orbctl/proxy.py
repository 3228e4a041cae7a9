"""Hand-off of commands to the job agent binary."""

from __future__ import annotations

import os
import shutil
from collections.abc import Sequence

_AGENT = "circleci-agent"


class ProxyError(Exception):
    """Raised when the agent cannot be found or started."""


def exec_agent(command: Sequence[str], args: Sequence[str]) -> None:
    """Replace the current process with the agent running ``command`` and ``args``."""
    agent = shutil.which(_AGENT)
    if agent is None:
        raise ProxyError(
            "Please ensure that circleci-agent is installed, expected this to be "
            f'called inside a job: exec: "{_AGENT}": executable file not found in $PATH'
        )

    arguments = [agent, *command, *args]
    try:
        os.execve(agent, arguments, dict(os.environ))
    except OSError as err:
        shown = "[" + " ".join(command) + "]"
        raise ProxyError(
            f"failed to proxy command {shown}, expected this to be called inside a job: {err}"
        ) from err