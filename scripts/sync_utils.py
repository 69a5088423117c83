#!/usr/bin/env python3
"""Shared helpers for the OpenAPI reconciliation scripts."""
from __future__ import annotations

import hashlib
import os
import sys
from pathlib import Path
from typing import Iterable

LOG_PREFIX = "[openapi-sync]"

DEFAULT_REFERENCE = Path("openapi") / "reference.yaml"
DEFAULT_TARGET = Path("openapi") / "openapi.yml"
DEFAULT_DIFF = Path("tmp") / "comparison_diff.json"


def log_info(message: str) -> None:
    print(f"{LOG_PREFIX} {message}")


def log_warn(message: str) -> None:
    print(f"{LOG_PREFIX} warning: {message}", file=sys.stderr)


def log_error(message: str) -> None:
    print(f"{LOG_PREFIX} error: {message}", file=sys.stderr)


def repo_root() -> Path:
    """Return the repository the documents live in (OPENAPI_SYNC_ROOT or cwd)."""
    env_root = os.getenv("OPENAPI_SYNC_ROOT")
    if env_root:
        return Path(env_root)
    return Path.cwd()


def default_path(env_var: str, fallback: Path) -> Path:
    """Resolve a default document path, letting an environment variable override it."""
    override = os.getenv(env_var)
    if override:
        return Path(override)
    return repo_root() / fallback


def text_sha256(*chunks: str) -> str:
    h = hashlib.sha256()
    for chunk in chunks:
        h.update(chunk.encode("utf-8"))
    return h.hexdigest()


def write_if_changed(dest: Path, content: str) -> bool:
    """Write content unless dest already holds it; return True when written."""
    if dest.exists() and dest.read_text(encoding="utf-8") == content:
        return False
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(content, encoding="utf-8")
    return True


def format_names(names: Iterable[str], limit: int = 10) -> str:
    """Comma-join names, eliding the tail past limit."""
    items = list(names)
    shown = ", ".join(items[:limit])
    if len(items) > limit:
        shown += f" ... and {len(items) - limit} more"
    return shown
