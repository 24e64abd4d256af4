from __future__ import annotations

import random

import pytest
from sqlalchemy import select

from mesa_engine.config import SessionConfig
from mesa_engine.core.errors import StaleClaimError, TerminalStateError, TurnViolation, ValidationError
from mesa_engine.core.turns import TurnScheduler, fold_turn_round, rank_participants
from mesa_engine.core.types import EventKind, Participant, SessionEvent
from mesa_engine.persistence.sqlalchemy.models import Campaign, Event, Player


def _event(event_id: int, payload: dict, content: str = "") -> SessionEvent:
    return SessionEvent(
        id=event_id,
        campaign_id="c",
        kind=EventKind.SYSTEM_NOTICE,
        payload=payload,
        content=content,
    )


def test_rank_participants_orders_by_key_deterministically():
    participants = [Participant("p3", "Bruno", 3), Participant("p5", "Alice", 5)]
    for seed in range(25):
        ordered = rank_participants(participants, random.Random(seed))
        assert [p.id for p in ordered] == ["p5", "p3"]


def test_rank_participants_breaks_exact_ties_randomly():
    participants = [Participant("a", "A", 4), Participant("b", "B", 4), Participant("c", "C", 1)]
    firsts = set()
    for seed in range(50):
        ordered = rank_participants(participants, random.Random(seed))
        assert ordered[-1].id == "c"
        firsts.add(ordered[0].id)
    assert firsts == {"a", "b"}


def test_fold_turn_round_tracks_latest_round():
    events = [
        _event(1, {"action": "turn_start", "turn_id": "r1", "order": ["a", "b"], "order_names": ["A", "B"], "current_index": 0}),
        _event(2, {"action": "turn_action", "turn_id": "r1", "player_id": "a", "player_name": "A", "text": "abro a porta"}),
        _event(3, {"action": "turn_action", "turn_id": "r1", "player_id": "a", "player_name": "A", "text": "abro a porta"}),
        _event(4, {"action": "turn_advance", "turn_id": "r1", "current_index": 1}),
        _event(5, {"action": "turn_advance", "turn_id": "stale", "current_index": 7}),
        _event(6, {"action": "roll", "label": "SUCESSO TOTAL"}),
    ]
    round_ = fold_turn_round(events)
    assert round_.round_id == "r1"
    assert round_.current_index == 1
    assert round_.current_participant == "b"
    assert [a.text for a in round_.actions] == ["abro a porta"]

    ended = fold_turn_round(events + [_event(7, {"action": "turn_end", "turn_id": "r1"})])
    assert ended.is_active is False
    assert ended.current_participant is None

    restarted = fold_turn_round(
        events
        + [
            _event(7, {"action": "turn_end", "turn_id": "r1"}),
            _event(8, {"action": "turn_start", "turn_id": "r2", "order": ["b", "a"], "order_names": ["B", "A"], "current_index": 0}),
        ]
    )
    assert restarted.round_id == "r2" and restarted.current_participant == "b"
    assert fold_turn_round([]) is None


def test_start_round_orders_accepted_living_players(uow_factory, seed_table):
    scheduler = TurnScheduler(uow_factory, rng=random.Random(1))
    round_ = scheduler.start_round(seed_table["campaign_id"], seed_table["owner_id"])
    assert round_.order == ["p5", "p3"]
    assert round_.order_labels == ["Alice", "Bruno"]

    rebuilt = scheduler.current_round(seed_table["campaign_id"])
    assert rebuilt.round_id == round_.round_id
    assert rebuilt.current_participant == "p5"

    with pytest.raises(TurnViolation) as excinfo:
        scheduler.start_round(seed_table["campaign_id"], seed_table["owner_id"])
    assert excinfo.value.reason == "round_already_active"


def test_start_round_requires_owner_and_active_campaign(session_factory, uow_factory, seed_table):
    scheduler = TurnScheduler(uow_factory)
    with pytest.raises(TurnViolation) as excinfo:
        scheduler.start_round(seed_table["campaign_id"], "p5")
    assert excinfo.value.reason == "not_authorized"

    with session_factory() as session:
        session.get(Campaign, seed_table["campaign_id"]).status = "paused"
        session.commit()
    with pytest.raises(TurnViolation) as excinfo:
        scheduler.start_round(seed_table["campaign_id"], seed_table["owner_id"])
    assert excinfo.value.reason == "campaign_not_active"


def test_start_round_without_players_is_rejected(session_factory, uow_factory, seed_table):
    with session_factory() as session:
        for player in session.execute(select(Player)).scalars():
            player.status = "pending"
        session.commit()
    with pytest.raises(ValidationError):
        TurnScheduler(uow_factory).start_round(seed_table["campaign_id"], seed_table["owner_id"])


def test_submit_action_enforces_current_participant(session_factory, uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, rng=random.Random(1))

    with pytest.raises(TurnViolation) as excinfo:
        scheduler.submit_action(campaign_id, "p5", "ataco")
    assert excinfo.value.reason == "no_active_round"

    scheduler.start_round(campaign_id, seed_table["owner_id"])
    with pytest.raises(TurnViolation) as excinfo:
        scheduler.submit_action(campaign_id, "p3", "fujo")
    assert excinfo.value.reason == "not_your_turn"
    with pytest.raises(ValidationError):
        scheduler.submit_action(campaign_id, "p0", "espio")
    with pytest.raises(ValidationError):
        scheduler.submit_action(campaign_id, "p5", "   ")

    event_id = scheduler.submit_action(campaign_id, "p5", "ataco", content="[PERSONAGEM: Alice] ataco")
    with session_factory() as session:
        row = session.get(Event, event_id)
        assert row.kind == "narrative"
        assert row.action == "turn_action"
        assert row.content == "[PERSONAGEM: Alice] ataco"

    round_ = scheduler.current_round(campaign_id)
    assert [a.player_id for a in round_.actions] == ["p5"]


def test_submit_action_rejects_dead_participant(session_factory, uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, rng=random.Random(1))
    scheduler.start_round(campaign_id, seed_table["owner_id"])
    with session_factory() as session:
        player = session.execute(select(Player).where(Player.actor_id == "p5")).scalar_one()
        player.is_dead = True
        session.commit()
    with pytest.raises(TerminalStateError):
        scheduler.submit_action(campaign_id, "p5", "levanto")


def test_stale_row_version_rolls_back_the_append(session_factory, uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, rng=random.Random(1))
    scheduler.start_round(campaign_id, seed_table["owner_id"])

    class RacingUow:
        """Compares against a version another writer already moved past."""

        def __init__(self):
            self._inner = uow_factory()

        def __enter__(self):
            uow = self._inner.__enter__()
            original = uow.campaigns.cas_bump_row_version

            def racing_cas(cid, expected):
                return original(cid, expected - 1)

            uow.campaigns.cas_bump_row_version = racing_cas
            return uow

        def __exit__(self, *exc):
            return self._inner.__exit__(*exc)

    racing = TurnScheduler(lambda: RacingUow(), rng=random.Random(1))
    with pytest.raises(StaleClaimError):
        racing.submit_action(campaign_id, "p5", "ataco")

    with session_factory() as session:
        actions = session.execute(select(Event).where(Event.action == "turn_action")).scalars().all()
        assert actions == []


def test_advance_moves_to_next_then_restarts_round(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, rng=random.Random(1))
    first = scheduler.start_round(campaign_id, seed_table["owner_id"])

    advanced = scheduler.advance(campaign_id)
    assert advanced.round_id == first.round_id
    assert advanced.current_participant == "p3"

    restarted = scheduler.advance(campaign_id)
    assert restarted.round_id != first.round_id
    assert restarted.current_participant == "p5"


def test_advance_without_auto_start_leaves_round_ended(uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, SessionConfig(auto_start_rounds=False), rng=random.Random(1))
    scheduler.start_round(campaign_id, seed_table["owner_id"])
    scheduler.advance(campaign_id)
    ended = scheduler.advance(campaign_id)
    assert ended.is_active is False
    assert scheduler.current_round(campaign_id).is_active is False
    assert scheduler.advance(campaign_id).is_active is False


def test_advance_skips_dead_participants(session_factory, uow_factory, seed_table):
    campaign_id = seed_table["campaign_id"]
    scheduler = TurnScheduler(uow_factory, SessionConfig(auto_start_rounds=False), rng=random.Random(1))
    scheduler.start_round(campaign_id, seed_table["owner_id"])
    with session_factory() as session:
        player = session.execute(select(Player).where(Player.actor_id == "p3")).scalar_one()
        player.is_dead = True
        session.commit()
    assert scheduler.advance(campaign_id).is_active is False
