from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core.normalize import dump_json, parse_json_dict
from ...core.types import CharacterState, EventKind, SessionEvent
from .models import Campaign, Event, Player, RateLimitHit


def to_session_event(row: Event) -> SessionEvent:
    return SessionEvent(
        id=row.id,
        campaign_id=row.campaign_id,
        kind=EventKind(row.kind),
        payload=parse_json_dict(row.payload_json),
        actor_id=row.actor_id,
        content=row.content or "",
        created_at=row.created_at,
    )


class CampaignRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, campaign_id: str) -> Campaign | None:
        return self.session.get(Campaign, campaign_id)

    def cas_bump_row_version(self, campaign_id: str, expected_row_version: int) -> bool:
        stmt = (
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .where(Campaign.row_version == expected_row_version)
            .values(row_version=Campaign.row_version + 1, updated_at=datetime.utcnow())
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1


class PlayerRepo:
    def __init__(self, session: Session):
        self.session = session

    def get_by_campaign_actor(self, campaign_id: str, actor_id: str) -> Player | None:
        stmt = (
            select(Player)
            .where(Player.campaign_id == campaign_id)
            .where(Player.actor_id == actor_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_campaign(self, campaign_id: str) -> list[Player]:
        stmt = select(Player).where(Player.campaign_id == campaign_id).order_by(Player.created_at.asc())
        return list(self.session.execute(stmt).scalars().all())

    def list_accepted(self, campaign_id: str, include_dead: bool = False) -> list[Player]:
        stmt = (
            select(Player)
            .where(Player.campaign_id == campaign_id)
            .where(Player.status == "accepted")
            .order_by(Player.created_at.asc())
        )
        if not include_dead:
            stmt = stmt.where(Player.is_dead.is_(False))
        return list(self.session.execute(stmt).scalars().all())

    def read_character(self, campaign_id: str, actor_id: str) -> CharacterState | None:
        player = self.get_by_campaign_actor(campaign_id, actor_id)
        if player is None:
            return None
        character = CharacterState.from_dict(parse_json_dict(player.character_json))
        if not character.name:
            character.name = player.character_name
        return character

    def write_character(self, campaign_id: str, actor_id: str, character: CharacterState) -> bool:
        stmt = (
            update(Player)
            .where(Player.campaign_id == campaign_id)
            .where(Player.actor_id == actor_id)
            .values(character_json=dump_json(character.to_dict()), updated_at=datetime.utcnow())
        )
        return (self.session.execute(stmt).rowcount or 0) == 1

    def mark_dead(self, campaign_id: str, actor_id: str, cause: str, world_future: str, now: datetime) -> bool:
        stmt = (
            update(Player)
            .where(Player.campaign_id == campaign_id)
            .where(Player.actor_id == actor_id)
            .where(Player.is_dead.is_(False))
            .values(
                is_dead=True,
                death_cause=cause,
                death_world_future=world_future,
                death_at=now,
                updated_at=now,
            )
        )
        return (self.session.execute(stmt).rowcount or 0) == 1


class EventRepo:
    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        campaign_id: str,
        kind: str,
        payload_json: str = "{}",
        *,
        actor_id: str | None = None,
        content: str = "",
        action: str | None = None,
        idempotency_key: str | None = None,
    ) -> Event | None:
        try:
            with self.session.begin_nested():
                row = Event(
                    campaign_id=campaign_id,
                    actor_id=actor_id,
                    kind=kind,
                    action=action,
                    content=content,
                    payload_json=payload_json,
                    idempotency_key=idempotency_key,
                )
                self.session.add(row)
                self.session.flush()
                return row
        except IntegrityError as exc:
            message = str(exc).lower()
            if (
                "uq_mesa_event_campaign_key" in message
                or "mesa_events.campaign_id, mesa_events.idempotency_key" in message
            ):
                return None
            raise

    def has_key(self, campaign_id: str, idempotency_key: str) -> bool:
        stmt = (
            select(Event.id)
            .where(Event.campaign_id == campaign_id)
            .where(Event.idempotency_key == idempotency_key)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def list(
        self,
        campaign_id: str,
        *,
        after_id: int = 0,
        kinds: Iterable[str] | None = None,
        actions: Iterable[str] | None = None,
    ) -> list[Event]:
        stmt = select(Event).where(Event.campaign_id == campaign_id).where(Event.id > after_id)
        if kinds is not None:
            stmt = stmt.where(Event.kind.in_(list(kinds)))
        if actions is not None:
            stmt = stmt.where(Event.action.in_(list(actions)))
        stmt = stmt.order_by(Event.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def list_session_events(
        self,
        campaign_id: str,
        *,
        after_id: int = 0,
        actions: Iterable[str] | None = None,
    ) -> list[SessionEvent]:
        return [to_session_event(row) for row in self.list(campaign_id, after_id=after_id, actions=actions)]

    def recent(self, campaign_id: str, limit: int, kinds: Iterable[str]) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.campaign_id == campaign_id)
            .where(Event.kind.in_(list(kinds)))
            .order_by(Event.id.desc())
            .limit(limit)
        )
        rows = list(self.session.execute(stmt).scalars().all())
        rows.reverse()
        return rows


class RateLimitRepo:
    def __init__(self, session: Session):
        self.session = session

    def count_since(self, key: str, since: datetime) -> int:
        stmt = select(func.count(RateLimitHit.id)).where(RateLimitHit.key == key).where(RateLimitHit.hit_at >= since)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def add(self, key: str, hit_at: datetime) -> None:
        self.session.add(RateLimitHit(key=key, hit_at=hit_at))
        self.session.flush()

    def prune(self, key: str, before: datetime) -> int:
        stmt = delete(RateLimitHit).where(RateLimitHit.key == key).where(RateLimitHit.hit_at < before)
        return self.session.execute(stmt).rowcount or 0
