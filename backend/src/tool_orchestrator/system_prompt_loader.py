"""Loads the tool-router system prompt from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import DEFAULT_SYSTEM_PROMPT_PATH

logger = logging.getLogger(__name__)

_cached_prompt: Optional[str] = None


def _read_file(path: Path) -> str:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("System prompt not readable at %s: %s", path, exc)
        return ""
    return text.strip()


def get_default_system_prompt() -> str:
    """Return the tool-router system prompt, cached after the first read.

    A missing or unreadable prompt file yields an empty string; the orchestrator
    then sends no system message.
    """
    global _cached_prompt
    if _cached_prompt is None:
        _cached_prompt = _read_file(DEFAULT_SYSTEM_PROMPT_PATH)
    return _cached_prompt or ""
