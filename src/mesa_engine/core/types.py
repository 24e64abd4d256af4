from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

ATTRIBUTES: tuple[str, ...] = ("VIGOR", "DESTREZA", "MENTE", "PRESENÇA")


class HealthTier(str, Enum):
    HEALTHY = "HEALTHY"
    INJURED = "INJURED"
    CRITICAL = "CRITICAL"
    DEAD = "DEAD"


class Difficulty(str, Enum):
    NORMAL = "NORMAL"
    HARD = "HARD"
    VERY_HARD = "VERY_HARD"


class DamageSeverity(str, Enum):
    LIGHT = "LIGHT"
    HEAVY = "HEAVY"


class RestType(str, Enum):
    SHORT = "SHORT"
    LONG = "LONG"


class RollOutcome(str, Enum):
    CRITICAL_FAILURE = "CRITICAL_FAILURE"
    CRITICAL_SUCCESS = "CRITICAL_SUCCESS"
    MAJOR_FAILURE = "MAJOR_FAILURE"
    MINOR_FAILURE = "MINOR_FAILURE"
    COSTLY_SUCCESS = "COSTLY_SUCCESS"
    FULL_SUCCESS = "FULL_SUCCESS"
    IMPOSSIBLE = "IMPOSSIBLE"


class EventKind(str, Enum):
    NARRATIVE = "narrative"
    SYSTEM_NOTICE = "system_notice"
    TOOL_ACTION_RECORD = "tool_action_record"
    IMAGE = "image"
    DEATH = "death"


class SessionState(str, Enum):
    IDLE = "IDLE"
    AWAITING_MODEL = "AWAITING_MODEL"
    EXECUTING_ACTIONS = "EXECUTING_ACTIONS"
    AWAITING_ROLL = "AWAITING_ROLL"
    ADVANCING = "ADVANCING"
    PAUSED = "PAUSED"


class CampaignStatus(str, Enum):
    WAITING = "waiting_for_players"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


@dataclass
class InventoryItem:
    id: str
    name: str
    kind: str = "equipment"
    quantity: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.kind, "quantity": self.quantity}


@dataclass
class Health:
    tier: HealthTier = HealthTier.HEALTHY
    light_damage_counter: int = 0


@dataclass
class CharacterState:
    name: str = ""
    profession: str = ""
    attributes: dict[str, int] = field(default_factory=lambda: {name: 0 for name in ATTRIBUTES})
    health: Health = field(default_factory=Health)
    inventory: list[InventoryItem] = field(default_factory=list)

    @property
    def is_dead(self) -> bool:
        return self.health.tier is HealthTier.DEAD

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "profession": self.profession,
            "attributes": dict(self.attributes),
            "health": {
                "tier": self.health.tier.value,
                "lightDamageCounter": self.health.light_damage_counter,
            },
            "inventory": [item.to_dict() for item in self.inventory],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CharacterState":
        data = data if isinstance(data, dict) else {}
        raw_attrs = data.get("attributes")
        raw_attrs = raw_attrs if isinstance(raw_attrs, dict) else {}
        attributes: dict[str, int] = {}
        for name in ATTRIBUTES:
            try:
                attributes[name] = int(raw_attrs.get(name, 0))
            except (TypeError, ValueError):
                attributes[name] = 0

        raw_health = data.get("health")
        raw_health = raw_health if isinstance(raw_health, dict) else {}
        try:
            tier = HealthTier(str(raw_health.get("tier") or "HEALTHY").upper())
        except ValueError:
            tier = HealthTier.HEALTHY
        try:
            counter = int(raw_health.get("lightDamageCounter", 0))
        except (TypeError, ValueError):
            counter = 0

        inventory: list[InventoryItem] = []
        for raw in data.get("inventory") or []:
            if not isinstance(raw, dict):
                continue
            try:
                quantity = max(0, int(raw.get("quantity", 1)))
            except (TypeError, ValueError):
                quantity = 0
            inventory.append(
                InventoryItem(
                    id=str(raw.get("id") or ""),
                    name=str(raw.get("name") or ""),
                    kind=str(raw.get("type") or raw.get("kind") or "equipment"),
                    quantity=quantity,
                )
            )

        return cls(
            name=str(data.get("name") or ""),
            profession=str(data.get("profession") or ""),
            attributes=attributes,
            health=Health(tier=tier, light_damage_counter=min(2, max(0, counter))),
            inventory=inventory,
        )


@dataclass
class RollResult:
    outcome: RollOutcome
    label: str
    skipped: bool = False
    natural_roll: Optional[int] = None
    total: Optional[int] = None
    message: Optional[str] = None


# Tool actions: a tagged union keyed on ``kind``.


@dataclass(frozen=True)
class RequestRoll:
    correlation_id: str
    attribute: str
    profession_relevant: bool = False
    difficulty: Difficulty = Difficulty.NORMAL
    impossible: bool = False
    impossible_reason: Optional[str] = None
    kind: str = "request_roll"

    def params(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "attribute": self.attribute,
            "is_profession_relevant": self.profession_relevant,
            "difficulty": self.difficulty.value,
        }
        if self.impossible:
            out["is_impossible"] = True
            out["impossible_reason"] = self.impossible_reason
        return out


@dataclass(frozen=True)
class ApplyDamage:
    correlation_id: str
    severity: DamageSeverity = DamageSeverity.LIGHT
    kind: str = "apply_damage"

    def params(self) -> dict[str, Any]:
        return {"type": self.severity.value}


@dataclass(frozen=True)
class ApplyRest:
    correlation_id: str
    rest_type: RestType = RestType.SHORT
    kind: str = "apply_rest"

    def params(self) -> dict[str, Any]:
        return {"type": self.rest_type.value}


@dataclass(frozen=True)
class GenerateImage:
    correlation_id: str
    prompt: str
    fingerprint: str = ""
    kind: str = "generate_image"

    def params(self) -> dict[str, Any]:
        return {"prompt": self.prompt}


@dataclass(frozen=True)
class TriggerGameOver:
    correlation_id: str
    cause_of_death: str
    world_future: str
    kind: str = "trigger_game_over"

    def params(self) -> dict[str, Any]:
        return {"causeOfDeath": self.cause_of_death, "worldFuture": self.world_future}


@dataclass(frozen=True)
class UpdateCharacter:
    correlation_id: str
    profession: Optional[str] = None
    inventory: Optional[tuple[InventoryItem, ...]] = None
    kind: str = "update_character"

    def params(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.profession is not None:
            out["profession"] = self.profession
        if self.inventory is not None:
            out["inventory"] = [item.to_dict() for item in self.inventory]
        return out


ToolAction = Union[RequestRoll, ApplyDamage, ApplyRest, GenerateImage, TriggerGameOver, UpdateCharacter]


@dataclass
class ParsedReply:
    cleaned_narrative: str
    actions: list[ToolAction] = field(default_factory=list)


@dataclass
class SessionEvent:
    id: int
    campaign_id: str
    kind: EventKind
    payload: dict[str, Any]
    actor_id: Optional[str] = None
    content: str = ""
    created_at: Optional[datetime] = None

    @property
    def action(self) -> Optional[str]:
        value = self.payload.get("action")
        return str(value) if value is not None else None


@dataclass
class TurnActionEntry:
    player_id: str
    name: str
    text: str
    roll: Optional[int] = None


@dataclass
class TurnRound:
    round_id: str
    order: list[str]
    order_labels: list[str]
    current_index: int = 0
    status: str = "active"
    actions: list[TurnActionEntry] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def current_participant(self) -> Optional[str]:
        if not self.is_active or not (0 <= self.current_index < len(self.order)):
            return None
        return self.order[self.current_index]


@dataclass
class Participant:
    id: str
    label: str
    ranking_key: int = 0


@dataclass
class ToolResponse:
    name: str
    result: Any
    call_id: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class NarrativeRequest:
    system_prompt: str
    history: list[dict[str, str]]
    tools: list[dict[str, Any]]
    input_text: Optional[str] = None
    tool_response: Optional[ToolResponse] = None

    def to_messages(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.system_prompt}]
        messages.extend(self.history)
        if self.tool_response is not None:
            call_id = self.tool_response.call_id or f"call_{self.tool_response.name}"
            messages.append(
                {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {
                            "id": call_id,
                            "type": "function",
                            "function": {
                                "name": self.tool_response.name,
                                "arguments": _dump_args(self.tool_response.args),
                            },
                        }
                    ],
                }
            )
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": _dump_args(self.tool_response.result if self.tool_response.result is not None else ""),
                }
            )
        elif self.input_text and self.input_text.strip():
            messages.append({"role": "user", "content": self.input_text})
        return messages


def _dump_args(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


@dataclass
class ModelReply:
    text: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class IllustrationRequest:
    prompt: str
    seed: int
    width: int = 768
    height: int = 512


@dataclass
class Challenge:
    actor_id: str
    action: RequestRoll
    exchange_id: str


@dataclass
class ExchangeResult:
    status: str
    narration: Optional[str] = None
    roll: Optional[RollResult] = None
    challenge: Optional[Challenge] = None
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    round: Optional[TurnRound] = None
