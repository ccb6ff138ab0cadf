"""Locate and load .env files before any configuration is read."""
import os
from pathlib import Path
from typing import List

from dotenv import find_dotenv, load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent

_loaded: List[Path] = []


def env_files() -> List[Path]:
    """Existing .env files in load order: TB_ENV_PATH, nearest to the working directory, repo root."""
    paths = []
    explicit = os.environ.get("TB_ENV_PATH")
    if explicit:
        paths.append(Path(explicit))

    nearest = find_dotenv(usecwd=True)
    if nearest:
        paths.append(Path(nearest))
    paths.append(REPO_ROOT / ".env")

    unique = dict.fromkeys(p.resolve() for p in paths)
    return [p for p in unique if p.is_file()]


def load_env(force: bool = False) -> List[Path]:
    """
    Load every discovered .env into os.environ, first file winning.

    Variables already set in the process are never overridden. Returns the
    files that were loaded.
    """
    global _loaded
    if _loaded and not force:
        return _loaded

    _loaded = env_files()
    for path in _loaded:
        load_dotenv(dotenv_path=path, override=False)
    return _loaded
