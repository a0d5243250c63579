"""
Utility functions for the deliberation engine.
"""

import json
import re
from typing import Any, Dict, Optional

from loguru import logger


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Robustly extract a JSON object from model output."""
    text = text.strip()

    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        if end == -1:
            end = len(text)
        text = text[start:end].strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end == 0:
        return None

    json_str = text[start:end]
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.debug(f"JSON parse failed: {e}")
        return None
    return data if isinstance(data, dict) else None


def truncate(text: str, max_chars: int = 500) -> str:
    """Truncate with ellipsis."""
    return text[:max_chars] + "..." if len(text) > max_chars else text


def clean_response(text: str) -> str:
    """Clean common model artifacts."""
    text = re.sub(r"^Assistant:\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"^Response:\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
