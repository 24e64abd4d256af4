"""Deterministic rule resolution: attributes, dice outcomes and health.

Every function here is pure and total. Out-of-range numbers are clamped,
never rejected, and character transitions return a fresh ``CharacterState``.
"""
from __future__ import annotations

import copy
import logging
import math
import random
from typing import Any, Mapping

from .types import (
    ATTRIBUTES,
    CharacterState,
    DamageSeverity,
    Difficulty,
    HealthTier,
    InventoryItem,
    RestType,
    RollOutcome,
    RollResult,
)

logger = logging.getLogger(__name__)

ATTRIBUTE_MIN = 0
ATTRIBUTE_MAX = 5
ATTRIBUTE_TOTAL = 10
LIGHT_DAMAGE_THRESHOLD = 3

HEALTH_PENALTY: dict[HealthTier, int] = {
    HealthTier.HEALTHY: 0,
    HealthTier.INJURED: 2,
    HealthTier.CRITICAL: 5,
    HealthTier.DEAD: 999,
}

DIFFICULTY_PENALTY: dict[Difficulty, int] = {
    Difficulty.NORMAL: 0,
    Difficulty.HARD: 2,
    Difficulty.VERY_HARD: 5,
}

HEALTH_LADDER: tuple[HealthTier, ...] = (
    HealthTier.HEALTHY,
    HealthTier.INJURED,
    HealthTier.CRITICAL,
    HealthTier.DEAD,
)

OUTCOME_LABELS: dict[RollOutcome, str] = {
    RollOutcome.CRITICAL_FAILURE: "FALHA CRITICA",
    RollOutcome.CRITICAL_SUCCESS: "SUCESSO CRITICO",
    RollOutcome.MAJOR_FAILURE: "FALHA GRAVE",
    RollOutcome.MINOR_FAILURE: "FALHA LEVE",
    RollOutcome.COSTLY_SUCCESS: "SUCESSO COM CUSTO",
    RollOutcome.FULL_SUCCESS: "SUCESSO TOTAL",
    RollOutcome.IMPOSSIBLE: "IMPOSSIVEL",
}

DEFAULT_IMPOSSIBLE_MESSAGE = "Boa tentativa, mas nem o mestre consegue dobrar a realidade desse jeito."


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(math.floor(float(value)))
    except (TypeError, ValueError, OverflowError):
        return default


def _coerce_tier(value: Any) -> HealthTier:
    if isinstance(value, HealthTier):
        return value
    try:
        return HealthTier(str(value or "").strip().upper())
    except ValueError:
        return HealthTier.HEALTHY


def _coerce_difficulty(value: Any) -> Difficulty | None:
    if isinstance(value, Difficulty):
        return value
    try:
        return Difficulty(str(value or "").strip().upper())
    except ValueError:
        return None


def _pick_highest(values: dict[str, int], eligible) -> str | None:
    best: str | None = None
    best_value: int | None = None
    for name in ATTRIBUTES:
        value = values[name]
        if not eligible(value):
            continue
        if best_value is None or value > best_value:
            best = name
            best_value = value
    return best


def normalize_attributes(raw: Mapping[str, Any] | None) -> dict[str, int]:
    """Clamp the four attributes to [0,5] and rebalance them to sum to 10.

    Excess is removed from the currently-highest attribute, a shortfall is
    added to the currently-highest attribute still below the cap. Ties go to
    the earliest attribute in ``ATTRIBUTES``.
    """
    raw = raw if isinstance(raw, Mapping) else {}
    values = {
        name: _clamp(_coerce_int(raw.get(name, 0)), ATTRIBUTE_MIN, ATTRIBUTE_MAX)
        for name in ATTRIBUTES
    }

    total = sum(values.values())
    while total > ATTRIBUTE_TOTAL:
        target = _pick_highest(values, lambda v: v > ATTRIBUTE_MIN)
        if target is None:
            break
        values[target] -= 1
        total -= 1

    while total < ATTRIBUTE_TOTAL:
        target = _pick_highest(values, lambda v: v < ATTRIBUTE_MAX)
        if target is None:
            break
        values[target] += 1
        total += 1

    return values


def classify_roll(
    *,
    attribute: str,
    attribute_value: Any,
    profession_relevant: bool,
    difficulty: Any,
    health_tier: Any,
    natural_roll: Any,
    impossible: bool = False,
    impossible_reason: str | None = None,
) -> RollResult:
    """Resolve one d20 check.

    Natural 1 and natural 20 short-circuit every modifier. Otherwise::

        total = roll + ceil(attr / 2) + (2 if profession) - health - difficulty
    """
    if impossible:
        return RollResult(
            outcome=RollOutcome.IMPOSSIBLE,
            label=OUTCOME_LABELS[RollOutcome.IMPOSSIBLE],
            skipped=True,
            message=impossible_reason or DEFAULT_IMPOSSIBLE_MESSAGE,
        )

    roll = _clamp(_coerce_int(natural_roll, 1), 1, 20)
    if roll == 1:
        return RollResult(
            outcome=RollOutcome.CRITICAL_FAILURE,
            label=OUTCOME_LABELS[RollOutcome.CRITICAL_FAILURE],
            natural_roll=roll,
            total=1,
        )
    if roll == 20:
        return RollResult(
            outcome=RollOutcome.CRITICAL_SUCCESS,
            label=OUTCOME_LABELS[RollOutcome.CRITICAL_SUCCESS],
            natural_roll=roll,
            total=20,
        )

    attribute_bonus = math.ceil(_clamp(_coerce_int(attribute_value), ATTRIBUTE_MIN, ATTRIBUTE_MAX) / 2)
    profession_bonus = 2 if profession_relevant else 0
    health_penalty = HEALTH_PENALTY[_coerce_tier(health_tier)]
    resolved_difficulty = _coerce_difficulty(difficulty)
    difficulty_penalty = DIFFICULTY_PENALTY[resolved_difficulty] if resolved_difficulty is not None else 0

    total = roll + attribute_bonus + profession_bonus - health_penalty - difficulty_penalty
    if total <= 5:
        outcome = RollOutcome.MAJOR_FAILURE
    elif total <= 10:
        outcome = RollOutcome.MINOR_FAILURE
    elif total <= 15:
        outcome = RollOutcome.COSTLY_SUCCESS
    else:
        outcome = RollOutcome.FULL_SUCCESS

    logger.debug(
        "roll attribute=%s natural=%d total=%d outcome=%s",
        attribute,
        roll,
        total,
        outcome.value,
    )
    return RollResult(outcome=outcome, label=OUTCOME_LABELS[outcome], natural_roll=roll, total=total)


def roll_d20(rng: random.Random | None = None) -> int:
    return (rng or random).randint(1, 20)


def _downgrade(tier: HealthTier) -> HealthTier:
    index = HEALTH_LADDER.index(tier)
    return HEALTH_LADDER[min(index + 1, len(HEALTH_LADDER) - 1)]


def _upgrade(tier: HealthTier) -> HealthTier:
    index = HEALTH_LADDER.index(tier)
    return HEALTH_LADDER[max(index - 1, 0)]


def apply_damage(character: CharacterState, severity: Any) -> CharacterState:
    nxt = copy.deepcopy(character)
    if nxt.health.tier is HealthTier.DEAD:
        return nxt

    heavy = severity is DamageSeverity.HEAVY or str(getattr(severity, "value", severity)).upper() == "HEAVY"
    if not heavy:
        counter = _clamp(nxt.health.light_damage_counter + 1, 0, LIGHT_DAMAGE_THRESHOLD)
        if counter >= LIGHT_DAMAGE_THRESHOLD:
            nxt.health.light_damage_counter = 0
            nxt.health.tier = _downgrade(nxt.health.tier)
        else:
            nxt.health.light_damage_counter = counter
        return nxt

    nxt.health.light_damage_counter = 0
    nxt.health.tier = _downgrade(nxt.health.tier)
    return nxt


def apply_rest(character: CharacterState, rest_type: Any) -> CharacterState:
    nxt = copy.deepcopy(character)
    nxt.health.light_damage_counter = 0
    long_rest = rest_type is RestType.LONG or str(getattr(rest_type, "value", rest_type)).upper() == "LONG"
    if not long_rest:
        return nxt

    if nxt.health.tier is HealthTier.DEAD:
        # Literal step logic revives DEAD to CRITICAL; unconfirmed whether intended.
        logger.warning("long rest applied to a DEAD character; tier steps up to CRITICAL")
    nxt.health.tier = _upgrade(nxt.health.tier)
    return nxt


def merge_character_update(
    character: CharacterState,
    *,
    profession: str | None = None,
    inventory: list[InventoryItem] | tuple[InventoryItem, ...] | None = None,
) -> CharacterState:
    """Merge ``profession`` and ``inventory`` only; attributes and health stay."""
    nxt = copy.deepcopy(character)
    if profession:
        nxt.profession = profession
    if inventory is not None:
        nxt.inventory = [copy.copy(item) for item in inventory]
    return nxt


def mark_dead(character: CharacterState) -> CharacterState:
    nxt = copy.deepcopy(character)
    nxt.health.tier = HealthTier.DEAD
    nxt.health.light_damage_counter = 0
    return nxt
