"""
Dotenv loading for exchange credentials (BINANCE_API_KEY, BINANCE_API_SECRET)
and other ``${VAR}`` references in config.yaml.

Runs before the YAML config is read. ``.env`` never overrides variables
already set in the process; ``.env.local`` overrides everything. Nothing is
loaded when ENVIRONMENT=prod, where secrets come from the process only.

Must not import ``hedgebot.config.config``.
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

DOTENV_FILES = (".env", ".env.local")


def load_dotenv_files(root: Optional[Path] = None) -> List[Path]:
    """
    Load dotenv files from ``root`` (default: current directory).

    Returns:
        The files that were loaded, in load order
    """
    if os.getenv("ENVIRONMENT", "dev").strip().lower() == "prod":
        return []

    base = root or Path.cwd()
    loaded: List[Path] = []
    for name in DOTENV_FILES:
        path = base / name
        if path.is_file():
            load_dotenv(dotenv_path=path, override=name == ".env.local")
            loaded.append(path)
    return loaded
