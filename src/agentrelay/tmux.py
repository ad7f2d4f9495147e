"""Detect the tmux session a reply should be routed back to."""

import logging
import subprocess

logger = logging.getLogger(__name__)


def current_tmux_session() -> str | None:
    """Name of the tmux session this process runs in, or None outside tmux."""
    try:
        result = subprocess.run(
            ["tmux", "display-message", "-p", "#S"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("tmux session lookup failed: %s", e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
