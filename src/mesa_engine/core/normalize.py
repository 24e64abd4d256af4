from __future__ import annotations

import ast
import hashlib
import json
import re
from typing import Any


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def fingerprint(value: Any, length: int = 16) -> str:
    canonical = json.dumps(value, ensure_ascii=True, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:length]


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if "```" in text:
        text = re.sub(r"```\w*", "", text).strip()
    return text


def coerce_python_dict(text: str) -> dict[str, Any] | None:
    try:
        fixed = re.sub(r"\bnull\b", "None", text)
        fixed = re.sub(r"\btrue\b", "True", fixed)
        fixed = re.sub(r"\bfalse\b", "False", fixed)
        result = ast.literal_eval(fixed)
        if isinstance(result, dict):
            return result
    except Exception:
        return None
    return None


def parse_json_lenient(text: str) -> dict[str, Any] | None:
    """Parse a model-written JSON object, tolerating fences and Python literals."""
    text = strip_code_fences(text or "")
    if not text:
        return None
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return coerce_python_dict(text)
    return result if isinstance(result, dict) else None


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value or "").strip().lower() in {"true", "1", "yes", "sim"}


def format_player_input(character_name: str, text: str) -> str:
    trimmed = (text or "").strip()
    if trimmed.startswith("[PERSONAGEM:"):
        return trimmed
    return f"[PERSONAGEM: {character_name}] {text}"
