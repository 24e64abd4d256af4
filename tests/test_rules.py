from __future__ import annotations

import itertools
import logging
import random

from mesa_engine.core.rules import (
    apply_damage,
    apply_rest,
    classify_roll,
    merge_character_update,
    normalize_attributes,
    roll_d20,
)
from mesa_engine.core.types import (
    ATTRIBUTES,
    CharacterState,
    DamageSeverity,
    Health,
    HealthTier,
    InventoryItem,
    RestType,
    RollOutcome,
)


def _character(tier: HealthTier = HealthTier.HEALTHY, counter: int = 0) -> CharacterState:
    return CharacterState(
        name="Alice",
        profession="Ferreiro",
        attributes={"VIGOR": 3, "DESTREZA": 5, "MENTE": 1, "PRESENÇA": 1},
        health=Health(tier=tier, light_damage_counter=counter),
    )


def test_normalize_attributes_always_sums_to_ten_within_bounds():
    rng = random.Random(7)
    samples = [
        {},
        {"VIGOR": 99, "DESTREZA": 99, "MENTE": 99, "PRESENÇA": 99},
        {"VIGOR": -4, "DESTREZA": -1, "MENTE": 0, "PRESENÇA": -9},
        {"VIGOR": "abc", "DESTREZA": None, "MENTE": 2.7},
    ]
    samples.extend({name: rng.randint(-10, 15) for name in ATTRIBUTES} for _ in range(200))
    for raw in samples:
        out = normalize_attributes(raw)
        assert set(out) == set(ATTRIBUTES)
        assert all(0 <= v <= 5 for v in out.values())
        assert sum(out.values()) == 10


def test_normalize_attributes_trims_highest_first_with_fixed_tie_order():
    assert normalize_attributes({"VIGOR": 5, "DESTREZA": 5, "MENTE": 5, "PRESENÇA": 0}) == {
        "VIGOR": 3,
        "DESTREZA": 3,
        "MENTE": 4,
        "PRESENÇA": 0,
    }
    assert normalize_attributes({"VIGOR": 0, "DESTREZA": 1, "MENTE": 0, "PRESENÇA": 0}) == {
        "VIGOR": 5,
        "DESTREZA": 5,
        "MENTE": 0,
        "PRESENÇA": 0,
    }


def test_natural_one_and_twenty_ignore_modifiers():
    combos = itertools.product(
        range(0, 6),
        (True, False),
        ("NORMAL", "HARD", "VERY_HARD", "weird"),
        tuple(HealthTier),
    )
    for value, relevant, difficulty, tier in combos:
        low = classify_roll(
            attribute="VIGOR",
            attribute_value=value,
            profession_relevant=relevant,
            difficulty=difficulty,
            health_tier=tier,
            natural_roll=1,
        )
        high = classify_roll(
            attribute="VIGOR",
            attribute_value=value,
            profession_relevant=relevant,
            difficulty=difficulty,
            health_tier=tier,
            natural_roll=20,
        )
        assert low.outcome is RollOutcome.CRITICAL_FAILURE and low.total == 1
        assert high.outcome is RollOutcome.CRITICAL_SUCCESS and high.total == 20


def test_classify_roll_total_and_thresholds():
    result = classify_roll(
        attribute="VIGOR",
        attribute_value=3,
        profession_relevant=True,
        difficulty="NORMAL",
        health_tier="HEALTHY",
        natural_roll=14,
    )
    assert result.total == 18
    assert result.outcome is RollOutcome.FULL_SUCCESS
    assert result.label == "SUCESSO TOTAL"

    def total_for(roll, **kw):
        base = dict(
            attribute="MENTE",
            attribute_value=0,
            profession_relevant=False,
            difficulty="NORMAL",
            health_tier="HEALTHY",
        )
        base.update(kw)
        return classify_roll(natural_roll=roll, **base)

    assert total_for(5).outcome is RollOutcome.MAJOR_FAILURE
    assert total_for(10).outcome is RollOutcome.MINOR_FAILURE
    assert total_for(15).outcome is RollOutcome.COSTLY_SUCCESS
    assert total_for(16).outcome is RollOutcome.FULL_SUCCESS
    assert total_for(12, health_tier="INJURED", difficulty="HARD").total == 8
    assert total_for(19, health_tier="CRITICAL", difficulty="VERY_HARD").total == 9
    assert total_for(19, health_tier="DEAD").outcome is RollOutcome.MAJOR_FAILURE


def test_classify_roll_clamps_out_of_range_inputs():
    assert classify_roll(
        attribute="VIGOR",
        attribute_value=3,
        profession_relevant=False,
        difficulty="NORMAL",
        health_tier="HEALTHY",
        natural_roll=0,
    ).outcome is RollOutcome.CRITICAL_FAILURE
    assert classify_roll(
        attribute="VIGOR",
        attribute_value=3,
        profession_relevant=False,
        difficulty="NORMAL",
        health_tier="HEALTHY",
        natural_roll=57,
    ).outcome is RollOutcome.CRITICAL_SUCCESS
    # attribute 40 clamps to 5 -> +3
    assert classify_roll(
        attribute="VIGOR",
        attribute_value=40,
        profession_relevant=False,
        difficulty="NORMAL",
        health_tier="HEALTHY",
        natural_roll=10,
    ).total == 13


def test_impossible_skips_the_roll():
    result = classify_roll(
        attribute="VIGOR",
        attribute_value=5,
        profession_relevant=True,
        difficulty="NORMAL",
        health_tier="HEALTHY",
        natural_roll=20,
        impossible=True,
        impossible_reason="Voar sem asas?",
    )
    assert result.outcome is RollOutcome.IMPOSSIBLE
    assert result.skipped is True
    assert result.total is None
    assert result.message == "Voar sem asas?"


def test_three_light_hits_downgrade_once():
    character = _character()
    for _ in range(3):
        character = apply_damage(character, DamageSeverity.LIGHT)
    assert character.health.tier is HealthTier.INJURED
    assert character.health.light_damage_counter == 0


def test_heavy_damage_from_critical_kills_and_dead_is_frozen():
    character = apply_damage(_character(HealthTier.CRITICAL, counter=2), DamageSeverity.HEAVY)
    assert character.health.tier is HealthTier.DEAD
    assert character.health.light_damage_counter == 0

    for severity in (DamageSeverity.LIGHT, DamageSeverity.HEAVY):
        after = apply_damage(character, severity)
        assert after.health == character.health


def test_damage_and_rest_do_not_mutate_input():
    original = _character(HealthTier.INJURED, counter=1)
    apply_damage(original, "HEAVY")
    apply_rest(original, RestType.LONG)
    assert original.health.tier is HealthTier.INJURED
    assert original.health.light_damage_counter == 1


def test_rest_types():
    short = apply_rest(_character(HealthTier.INJURED, counter=2), RestType.SHORT)
    assert short.health.tier is HealthTier.INJURED
    assert short.health.light_damage_counter == 0

    long_rest = apply_rest(_character(HealthTier.CRITICAL, counter=1), RestType.LONG)
    assert long_rest.health.tier is HealthTier.INJURED
    assert long_rest.health.light_damage_counter == 0

    assert apply_rest(_character(), RestType.LONG).health.tier is HealthTier.HEALTHY


def test_long_rest_on_dead_steps_up_and_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="mesa_engine.core.rules"):
        revived = apply_rest(_character(HealthTier.DEAD), RestType.LONG)
    assert revived.health.tier is HealthTier.CRITICAL
    assert any("DEAD" in record.getMessage() for record in caplog.records)


def test_merge_character_update_touches_only_profession_and_inventory():
    character = _character(HealthTier.INJURED, counter=1)
    updated = merge_character_update(
        character,
        profession="Alquimista",
        inventory=[InventoryItem(id="x", name="Frasco", kind="consumable", quantity=2)],
    )
    assert updated.profession == "Alquimista"
    assert [item.name for item in updated.inventory] == ["Frasco"]
    assert updated.attributes == character.attributes
    assert updated.health == character.health

    unchanged = merge_character_update(character, profession=None, inventory=None)
    assert unchanged.profession == "Ferreiro"


def test_roll_d20_stays_in_range():
    rng = random.Random(3)
    rolls = {roll_d20(rng) for _ in range(500)}
    assert rolls <= set(range(1, 21))
    assert 1 in rolls and 20 in rolls
