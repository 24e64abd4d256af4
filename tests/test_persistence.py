from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from mesa_engine.core.types import CharacterState, EventKind, HealthTier
from mesa_engine.persistence.sqlalchemy.adapters import SQLAlchemyCharacterStore, SQLAlchemyEventLog


def test_event_add_is_idempotent_per_campaign_key(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    with uow_factory() as uow:
        first = uow.events.add(campaign_id, "image", "{}", idempotency_key="image:x:abc")
        duplicate = uow.events.add(campaign_id, "image", "{}", idempotency_key="image:x:abc")
        unkeyed = uow.events.add(campaign_id, "narrative", "{}", content="texto")
        uow.commit()
        assert first is not None
        assert duplicate is None
        assert unkeyed is not None

    with uow_factory() as uow:
        assert uow.events.has_key(campaign_id, "image:x:abc") is True
        assert uow.events.has_key(campaign_id, "image:x:zzz") is False
        assert [row.id for row in uow.events.list(campaign_id)] == [first.id, unkeyed.id]


def test_duplicate_key_keeps_the_outer_transaction_usable(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    with uow_factory() as uow:
        uow.events.add(campaign_id, "death", "{}", idempotency_key="death:p5")
        uow.commit()

    with uow_factory() as uow:
        before = uow.events.add(campaign_id, "narrative", "{}", content="antes")
        assert uow.events.add(campaign_id, "death", "{}", idempotency_key="death:p5") is None
        after = uow.events.add(campaign_id, "narrative", "{}", content="depois")
        uow.commit()

    with uow_factory() as uow:
        contents = [row.content for row in uow.events.list(campaign_id, kinds=["narrative"])]
        assert contents == ["antes", "depois"]
        assert before.id < after.id


def test_recent_returns_tail_in_ascending_order(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    with uow_factory() as uow:
        for index in range(5):
            uow.events.add(campaign_id, "narrative", "{}", content=f"m{index}")
        uow.events.add(campaign_id, "system_notice", "{}", content="aviso")
        uow.commit()

    with uow_factory() as uow:
        rows = uow.events.recent(campaign_id, 3, kinds=["narrative"])
        assert [row.content for row in rows] == ["m2", "m3", "m4"]


def test_mark_dead_only_transitions_once(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    now = datetime(2026, 1, 1, 12, 0, 0)
    with uow_factory() as uow:
        assert uow.players.mark_dead(campaign_id, "p5", "Queda", "Ruina", now) is True
        assert uow.players.mark_dead(campaign_id, "p5", "Outra", "Outro", now) is False
        uow.commit()

    with uow_factory() as uow:
        player = uow.players.get_by_campaign_actor(campaign_id, "p5")
        assert player.is_dead is True
        assert player.death_cause == "Queda"
        assert [p.actor_id for p in uow.players.list_accepted(campaign_id)] == ["p3"]
        assert {p.actor_id for p in uow.players.list_accepted(campaign_id, include_dead=True)} == {"p5", "p3"}


def test_cas_bump_row_version(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    with uow_factory() as uow:
        assert uow.campaigns.cas_bump_row_version(campaign_id, 1) is True
        assert uow.campaigns.cas_bump_row_version(campaign_id, 1) is False
        uow.commit()
    with uow_factory() as uow:
        assert uow.campaigns.get(campaign_id).row_version == 2


def test_event_log_append_list_and_subscribe(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    log = SQLAlchemyEventLog(uow_factory, poll_interval=0.01)

    first = log.append(campaign_id, EventKind.NARRATIVE, {"role": "model"}, content="Era uma vez")
    second = log.append(campaign_id, "system_notice", {"action": "roll"}, content="[ROLAGEM] SUCESSO TOTAL.")
    assert log.append(campaign_id, "image", {}, idempotency_key="image:e:f") is not None
    assert log.append(campaign_id, "image", {}, idempotency_key="image:e:f") is None

    events = log.list(campaign_id)
    assert [e.id for e in events][:2] == [first, second]
    assert events[0].kind is EventKind.NARRATIVE
    assert events[0].payload == {"role": "model"}
    assert [e.id for e in log.list(campaign_id, after_id=first)][0] == second

    async def run_test():
        seen = []
        async for event in log.subscribe(campaign_id, after_id=first):
            seen.append(event.id)
            if len(seen) == 2:
                break
        return seen

    seen = asyncio.run(run_test())
    assert seen[0] == second
    assert seen[1] > second


def test_character_store_round_trips_and_rejects_unknown_player(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    store = SQLAlchemyCharacterStore(uow_factory)

    character = store.read(campaign_id, "p5")
    assert character.name == "Alice"
    assert character.attributes["DESTREZA"] == 5
    assert [item.id for item in character.inventory] == ["potion-1", "sword-1"]

    character.health.tier = HealthTier.INJURED
    character.profession = "Ladra"
    store.write(campaign_id, "p5", character)
    reloaded = store.read(campaign_id, "p5")
    assert reloaded.health.tier is HealthTier.INJURED
    assert reloaded.profession == "Ladra"

    assert store.read(campaign_id, "ghost") is None
    with pytest.raises(LookupError):
        store.write(campaign_id, "ghost", CharacterState(name="Fantasma"))
