from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable

from sqlalchemy.exc import SQLAlchemyError

from ...core.errors import RateStoreUnavailable
from ...core.normalize import dump_json
from ...core.types import CharacterState, SessionEvent
from ..interfaces import UnitOfWork

logger = logging.getLogger(__name__)


class SQLAlchemyEventLog:
    """Append/list/subscribe over ``mesa_events``.

    ``subscribe`` polls by id; consumers dedupe by event id.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork], poll_interval: float = 0.5):
        self._uow_factory = uow_factory
        self._poll_interval = poll_interval

    def append(
        self,
        campaign_id: str,
        kind: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        content: str = "",
        idempotency_key: str | None = None,
    ) -> int | None:
        with self._uow_factory() as uow:
            row = uow.events.add(
                campaign_id,
                str(getattr(kind, "value", kind)),
                dump_json(payload or {}),
                actor_id=actor_id,
                content=content,
                action=(payload or {}).get("action"),
                idempotency_key=idempotency_key,
            )
            uow.commit()
            return row.id if row is not None else None

    def list(self, campaign_id: str, *, after_id: int = 0) -> list[SessionEvent]:
        with self._uow_factory() as uow:
            return uow.events.list_session_events(campaign_id, after_id=after_id)

    async def subscribe(self, campaign_id: str, *, after_id: int = 0) -> AsyncIterator[SessionEvent]:
        cursor = after_id
        while True:
            batch = self.list(campaign_id, after_id=cursor)
            for event in batch:
                cursor = max(cursor, event.id)
                yield event
            if not batch:
                await asyncio.sleep(self._poll_interval)


class SQLAlchemyCharacterStore:
    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def read(self, campaign_id: str, participant_id: str) -> CharacterState | None:
        with self._uow_factory() as uow:
            return uow.players.read_character(campaign_id, participant_id)

    def write(self, campaign_id: str, participant_id: str, character: CharacterState) -> None:
        with self._uow_factory() as uow:
            if not uow.players.write_character(campaign_id, participant_id, character):
                uow.rollback()
                raise LookupError(f"no player {participant_id} in campaign {campaign_id}")
            uow.commit()


class SQLAlchemyCounterStore:
    """Shared sliding-window counter. Check and increment run in one transaction."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self._uow_factory = uow_factory

    def hit(self, key: str, *, limit: int, window_seconds: int, now: datetime) -> bool:
        window_start = now - timedelta(seconds=window_seconds)
        try:
            with self._uow_factory() as uow:
                uow.rate_limits.prune(key, window_start)
                if uow.rate_limits.count_since(key, window_start) >= limit:
                    uow.commit()
                    return True
                uow.rate_limits.add(key, now)
                uow.commit()
                return False
        except SQLAlchemyError as exc:
            logger.warning("counter store failed for key=%s: %s", key, exc)
            raise RateStoreUnavailable("counter_store_error", str(exc)) from exc
