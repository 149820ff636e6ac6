"""Environment variable lookup and loading of .env files."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ENV_FILE = ".env"


def get_env(key: str, fallback: str = "") -> str:
    """Return the environment variable ``key`` or ``fallback`` when unset."""
    return os.environ.get(key, fallback)


def _default_root_dir() -> Path:
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).resolve().parent
    return Path.cwd()


def load_environment(*args: str | os.PathLike, root_dir: str | os.PathLike | None = None) -> None:
    """Load .env files from the usual places, then the files given in ``args``.

    Variables already present in the environment are never overridden;
    missing files are ignored.
    """
    root = Path(root_dir) if root_dir is not None else _default_root_dir()
    candidates = [
        Path("."),
        Path(".."),
        root,
        root.parent,
        root / "etc",
        root / "data",
    ]
    for directory in candidates:
        env_file = directory / ENV_FILE
        if env_file.is_file():
            load_dotenv(env_file, override=False)
    for file in args:
        if Path(file).is_file():
            load_dotenv(file, override=False)