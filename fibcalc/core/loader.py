"""
Fibcalc Engine - Environment Loader

Loads dotenv files into os.environ before Settings are built.

Precedence (highest to lowest):
    1. Variables already exported in the process environment
    2. .env.{env} file (env = FIBCALC_ENV, default 'dev')
    3. .env file

Missing files are not an error: in containers the variables come from the
platform, not from local files.

Usage:
    from fibcalc.core.loader import load_environment

    load_environment()  # MUST run before get_settings()
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

ENV_MARKER = "FIBCALC_ENV"


def _find_project_root() -> Path:
    """Walk up from cwd looking for pyproject.toml."""
    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return cwd


def _load_dotenv_file(env_file: Path) -> int:
    """
    Load variables from a dotenv file without overriding exported ones.

    Returns:
        Number of variables set
    """
    if not env_file.exists():
        return 0

    count = 0
    for key, value in dotenv_values(env_file, encoding="utf-8").items():
        if value is None or key in os.environ:
            continue
        os.environ[key] = value.strip()
        count += 1
        logger.debug(f"Loaded {key}={'***' if 'PASSWORD' in key or 'URL' in key else value}")
    return count


def load_environment(env: str | None = None, project_root: Path | None = None) -> str:
    """
    Load dotenv configuration for the given environment.

    Args:
        env: Environment name override (defaults to FIBCALC_ENV or 'dev')
        project_root: Directory holding the .env files

    Returns:
        The environment name that was loaded
    """
    from .config import reset_settings

    env = (env or os.environ.get(ENV_MARKER) or "dev").strip().lower()
    root = project_root or _find_project_root()

    loaded = 0
    # Specific file first so its values win over the shared .env
    for env_file in (root / f".env.{env}", root / ".env"):
        count = _load_dotenv_file(env_file)
        if count:
            logger.info(f"Loaded config from {env_file.name} ({count} vars)")
        loaded += count

    if not loaded:
        logger.info("No dotenv values loaded; relying on system environment variables")

    os.environ[ENV_MARKER] = env
    reset_settings()
    return env


__all__ = ["load_environment", "ENV_MARKER"]
