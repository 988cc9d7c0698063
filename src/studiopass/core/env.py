"""
Project root and `.env` discovery.

The API (uvicorn), the CLI and pytest may all start from different working
directories. Relative settings such as `directory.catalog_path` are therefore
resolved against a detected project root instead of the current directory, and a
repo-local `.env` is loaded from that same root.

Root detection order:
1. `STUDIOPASS_PROJECT_ROOT`
2. the directory holding `STUDIOPASS_ENV_FILE`
3. the nearest ancestor of the cwd, then of this module, that looks like the repo
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv


def _is_repo_root(candidate: Path) -> bool:
    if (candidate / ".env").is_file() or (candidate / ".git").exists():
        return True
    # A checkout without .git still has both of these.
    return (candidate / "src" / "studiopass").is_dir() and (candidate / "data").is_dir()


def _first_repo_root(starts: Iterable[Path]) -> Path | None:
    for start in starts:
        start = start.resolve()
        for candidate in (start, *start.parents):
            if _is_repo_root(candidate):
                return candidate
    return None


def _env_file_override() -> Path | None:
    raw = os.getenv("STUDIOPASS_ENV_FILE")
    return Path(raw).expanduser().resolve() if raw else None


@lru_cache
def get_project_root() -> Path:
    """Detected project root (cached for the process)."""
    explicit = os.getenv("STUDIOPASS_PROJECT_ROOT")
    if explicit:
        return Path(explicit).expanduser().resolve()

    env_file = _env_file_override()
    if env_file is not None:
        return env_file.parent

    return _first_repo_root((Path.cwd(), Path(__file__).parent)) or Path.cwd().resolve()


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the project's `.env` at most once. Existing environment variables win."""
    env_file = _env_file_override() or get_project_root() / ".env"
    if not env_file.is_file():
        return None
    load_dotenv(dotenv_path=env_file, override=False)
    return env_file


def resolve_project_path(path: str | Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else (get_project_root() / p).resolve()
