"""Repo root resolver.

The single source of truth for "where is the project being gated?".
Default policy, reports and ledger paths derive from here, never from
``Path.cwd()`` alone, so ``secgate`` behaves the same when a pipeline step
runs it from ``app/`` or ``jenkins/``.

Algorithm
---------
Walk from *start* (default ``cwd()``) upward through parents looking for
a project marker (``.git``, ``Jenkinsfile``, ``pyproject.toml`` or
``package.json``).  The first directory that contains one is the root.
"""

from __future__ import annotations

from pathlib import Path

from secgate.core.errors import RepoRootNotFound

# Any of these identifies the repository root.
_MARKERS = (".git", "Jenkinsfile", "pyproject.toml", "package.json")


def find_repo_root(start: Path | None = None) -> Path:
    """Return the repo root directory.

    Parameters
    ----------
    start:
        Directory to start searching from.  Defaults to ``Path.cwd()``.

    Returns
    -------
    Path
        Absolute, resolved path to the repo root.

    Raises
    ------
    RepoRootNotFound
        If no marker is found in *start* or any of its parents.
    """
    origin = (start or Path.cwd()).resolve()
    for candidate in [origin, *origin.parents]:
        if any((candidate / marker).exists() for marker in _MARKERS):
            return candidate
    raise RepoRootNotFound(start_path=str(origin))
