# git.py
# Small, focused wrapper around the Git CLI.
# The runner only needs a few facts about the surrounding repository:
# where it is, which commit it is on, and which remote it came from.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """URL configured for `remote`."""
    return _git(["remote", "get-url", remote], cwd=cwd)


_SCOPE_RE = re.compile(r"[:/]([^/:]+/[^/]+?)(?:\.git)?/?$")


def scope_from_url(url: str) -> Optional[str]:
    """
    Turn a remote URL into an "owner/repo" repository identifier.

        git@github.com:acme/widgets.git      -> acme/widgets
        https://github.com/acme/widgets.git  -> acme/widgets
    """
    m = _SCOPE_RE.search(url.strip())
    return m.group(1) if m else None


def repository_scope(cwd: Optional[str] = None) -> str:
    """
    Best-effort repository identifier for secret scoping.

    Uses the origin remote when there is one, otherwise the directory name.
    """
    try:
        scope = scope_from_url(get_remote_url("origin", cwd=cwd))
        if scope:
            return scope
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass
    return Path(cwd or ".").resolve().name
