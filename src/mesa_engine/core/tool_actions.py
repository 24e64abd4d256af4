"""Turn raw narrative-generation output into typed tool actions.

Model replies carry actions two ways: inline ``<tool_code>{...}</tool_code>``
segments mixed into the prose, and a separate list of structured call
records. Both are folded into the same tagged union here; anything that
fails the shape check is dropped at this boundary and never reaches the
orchestrator as an untyped map.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable

from .errors import ParseError
from .normalize import coerce_bool, fingerprint, parse_json_lenient
from .types import (
    ATTRIBUTES,
    ApplyDamage,
    ApplyRest,
    DamageSeverity,
    Difficulty,
    GenerateImage,
    InventoryItem,
    ParsedReply,
    RequestRoll,
    RestType,
    ToolAction,
    TriggerGameOver,
    UpdateCharacter,
)

TOOL_CODE_PATTERN = re.compile(r"<tool_code>(.*?)</tool_code>", re.DOTALL | re.IGNORECASE)

KNOWN_ACTIONS = frozenset(
    {
        "request_roll",
        "apply_damage",
        "apply_rest",
        "generate_image",
        "trigger_game_over",
        "update_character",
    }
)

_ATTRIBUTE_ALIASES = {
    "PRESENCA": "PRESENÇA",
    "FINESSE": "DESTREZA",
}

DEFAULT_DEATH_CAUSE = "Causa desconhecida"
DEFAULT_WORLD_FUTURE = "Futuro incerto"


def image_fingerprint(prompt: str) -> str:
    return fingerprint(" ".join((prompt or "").lower().split()))


class ToolActionParser:
    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    def parse(self, text: str | None, tool_calls: Iterable[Any] | None = None) -> ParsedReply:
        cleaned, blocks = self.extract_segments(text or "")
        actions: list[ToolAction] = []
        seen: set[str] = set()
        seen_images: set[str] = set()

        candidates: list[tuple[str | None, dict[str, Any], str]] = []
        for block in blocks:
            name, params = self.reconcile_fields(block)
            candidates.append((name, params, f"tool_code:{name}:{fingerprint(params)}"))
        for call in tool_calls or []:
            record = self.normalize_call(call)
            if record is None:
                continue
            name, params = self.reconcile_fields({"action": record["name"], "params": record["args"], **record["extra"]})
            call_id = record["id"] or f"call:{name}:{fingerprint(params)}"
            candidates.append((name, params, call_id))

        for name, params, correlation_id in candidates:
            try:
                action = self.to_action(name, params, correlation_id)
            except ParseError as exc:
                self._logger.warning("Dropping tool action %r: %s", name, exc.reason)
                continue
            if action.correlation_id in seen:
                continue
            if isinstance(action, GenerateImage):
                if action.fingerprint in seen_images:
                    continue
                seen_images.add(action.fingerprint)
            seen.add(action.correlation_id)
            actions.append(action)

        return ParsedReply(cleaned_narrative=cleaned, actions=actions)

    def extract_segments(self, text: str) -> tuple[str, list[dict[str, Any]]]:
        blocks: list[dict[str, Any]] = []

        def _collect(match: re.Match) -> str:
            raw = (match.group(1) or "").strip()
            if not raw:
                return ""
            parsed = parse_json_lenient(raw)
            if parsed is None:
                self._logger.warning("Dropping malformed tool segment (%d chars)", len(raw))
                return ""
            blocks.append(parsed)
            return ""

        cleaned = TOOL_CODE_PATTERN.sub(_collect, text).strip()
        return cleaned, blocks

    def normalize_call(self, call: Any) -> dict[str, Any] | None:
        if not isinstance(call, dict):
            return None
        function = call.get("function") if isinstance(call.get("function"), dict) else {}
        name = function.get("name") or call.get("name")
        if not name:
            return None
        raw_args = function.get("arguments") if "arguments" in function else call.get("args")
        extra = {k: call[k] for k in ("type", "prompt") if k in call}
        return {
            "id": str(call.get("id") or "") or None,
            "name": str(name),
            "args": self._safe_args(raw_args),
            "extra": extra,
        }

    @staticmethod
    def _safe_args(raw: Any) -> dict[str, Any]:
        if not raw:
            return {}
        if isinstance(raw, dict):
            return dict(raw)
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                return {}
            return data if isinstance(data, dict) else {}
        return {}

    @staticmethod
    def reconcile_fields(block: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
        """Fold top-level primary arguments into the params map."""
        name = block.get("action") or block.get("name")
        name = str(name).strip() if name else None
        params: dict[str, Any] = {}
        for key in ("params", "args", "parameters"):
            value = block.get(key)
            if isinstance(value, dict) and value:
                params = dict(value)
                break
        if name in ("apply_damage", "apply_rest") and not params.get("type") and block.get("type"):
            params["type"] = block["type"]
        if name == "generate_image" and not params.get("prompt") and block.get("prompt"):
            params["prompt"] = block["prompt"]
        return name, params

    def to_action(self, name: str | None, params: dict[str, Any], correlation_id: str) -> ToolAction:
        if not name or name not in KNOWN_ACTIONS:
            raise ParseError("unknown_action", f"unknown tool action {name!r}")
        builder = getattr(self, f"_build_{name}")
        return builder(params, correlation_id)

    def _build_request_roll(self, params: dict[str, Any], correlation_id: str) -> RequestRoll:
        raw_attr = str(params.get("attribute") or "").strip().upper()
        attribute = _ATTRIBUTE_ALIASES.get(raw_attr, raw_attr)
        if attribute not in ATTRIBUTES:
            raise ParseError("invalid_attribute", f"attribute {raw_attr!r} is not one of {ATTRIBUTES}")
        raw_difficulty = str(params.get("difficulty") or "NORMAL").strip().upper()
        try:
            difficulty = Difficulty(raw_difficulty)
        except ValueError:
            self._logger.warning("Unknown difficulty %r, using NORMAL", raw_difficulty)
            difficulty = Difficulty.NORMAL
        reason = params.get("impossible_reason")
        return RequestRoll(
            correlation_id=correlation_id,
            attribute=attribute,
            profession_relevant=coerce_bool(params.get("is_profession_relevant")),
            difficulty=difficulty,
            impossible=coerce_bool(params.get("is_impossible")),
            impossible_reason=str(reason) if reason else None,
        )

    def _build_apply_damage(self, params: dict[str, Any], correlation_id: str) -> ApplyDamage:
        raw = str(params.get("type") or "").strip().upper()
        severity = DamageSeverity.HEAVY if raw == "HEAVY" else DamageSeverity.LIGHT
        return ApplyDamage(correlation_id=correlation_id, severity=severity)

    def _build_apply_rest(self, params: dict[str, Any], correlation_id: str) -> ApplyRest:
        raw = str(params.get("type") or "").strip().upper()
        rest_type = RestType.LONG if raw == "LONG" else RestType.SHORT
        return ApplyRest(correlation_id=correlation_id, rest_type=rest_type)

    def _build_generate_image(self, params: dict[str, Any], correlation_id: str) -> GenerateImage:
        prompt = str(params.get("prompt") or "").strip()
        if not prompt:
            raise ParseError("missing_prompt")
        return GenerateImage(
            correlation_id=correlation_id,
            prompt=prompt,
            fingerprint=image_fingerprint(prompt),
        )

    def _build_trigger_game_over(self, params: dict[str, Any], correlation_id: str) -> TriggerGameOver:
        cause = str(params.get("causeOfDeath") or params.get("cause_of_death") or "").strip()
        future = str(params.get("worldFuture") or params.get("world_future") or "").strip()
        return TriggerGameOver(
            correlation_id=correlation_id,
            cause_of_death=cause or DEFAULT_DEATH_CAUSE,
            world_future=future or DEFAULT_WORLD_FUTURE,
        )

    def _build_update_character(self, params: dict[str, Any], correlation_id: str) -> UpdateCharacter:
        profession = params.get("profession")
        profession = str(profession).strip() if isinstance(profession, str) and profession.strip() else None

        inventory: tuple[InventoryItem, ...] | None = None
        raw_inventory = params.get("inventory")
        if isinstance(raw_inventory, list):
            items: list[InventoryItem] = []
            for raw in raw_inventory:
                item = self._inventory_item(raw)
                if item is not None:
                    items.append(item)
            inventory = tuple(items)

        if profession is None and inventory is None:
            raise ParseError("empty_update")
        return UpdateCharacter(correlation_id=correlation_id, profession=profession, inventory=inventory)

    @staticmethod
    def _inventory_item(raw: Any) -> InventoryItem | None:
        if not isinstance(raw, dict):
            return None
        name = str(raw.get("name") or "").strip()
        if not name:
            return None
        kind = str(raw.get("type") or raw.get("kind") or "equipment").strip().lower()
        if kind not in ("consumable", "equipment"):
            kind = "equipment"
        try:
            quantity = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            quantity = 1
        item_id = str(raw.get("id") or "").strip() or fingerprint({"name": name, "type": kind}, length=12)
        return InventoryItem(id=item_id, name=name, kind=kind, quantity=max(0, quantity))
