"""
Environment + project-root helpers.

Source catalogs are referenced by relative paths (`data/catalogs/sources.yaml`), and the
service is started from uvicorn, the `featurescope` console script, or pytest, each with its
own working directory. These helpers pin relative paths to one project root and pick up a
repo-local `.env` (catalog path, log level, CORS origins) without clobbering real env vars.

Env vars:
- `FEATURESCOPE_PROJECT_ROOT`: use this directory as the root.
- `FEATURESCOPE_ENV_FILE`: load this `.env`; its parent directory becomes the root.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


def _is_project_root(path: Path) -> bool:
    if (path / ".env").is_file() or (path / ".git").exists():
        return True
    # A checkout without .git: `src/` next to the bundled catalogs.
    return (path / "src").is_dir() and (path / "data" / "catalogs").is_dir()


def _search_upwards(start: Path) -> Path | None:
    start = start.resolve()
    for candidate in (start, *start.parents):
        if _is_project_root(candidate):
            return candidate
    return None


def _explicit_env_file() -> Path | None:
    value = os.getenv("FEATURESCOPE_ENV_FILE")
    return Path(value).expanduser().resolve() if value else None


@lru_cache
def get_project_root() -> Path:
    """Return the best-guess project root directory (cached)."""
    override = os.getenv("FEATURESCOPE_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()

    env_file = _explicit_env_file()
    if env_file is not None:
        return env_file.parent

    # CWD first; then this module's location, for installed console scripts run elsewhere.
    found = _search_upwards(Path.cwd()) or _search_upwards(Path(__file__).parent)
    return found or Path.cwd().resolve()


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `.env` once if present and return its path; existing env vars always win."""
    env_path = _explicit_env_file() or get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    """Resolve a possibly-relative path (e.g. a catalog file) against the project root."""
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (get_project_root() / p).resolve()
