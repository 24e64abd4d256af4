from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from ..core.types import CharacterState, SessionEvent


class CampaignRepo(Protocol):
    def get(self, campaign_id: str): ...
    def cas_bump_row_version(self, campaign_id: str, expected_row_version: int) -> bool: ...


class PlayerRepo(Protocol):
    def get_by_campaign_actor(self, campaign_id: str, actor_id: str): ...
    def list_by_campaign(self, campaign_id: str): ...
    def list_accepted(self, campaign_id: str, include_dead: bool = False): ...
    def read_character(self, campaign_id: str, actor_id: str) -> CharacterState | None: ...
    def write_character(self, campaign_id: str, actor_id: str, character: CharacterState) -> bool: ...
    def mark_dead(self, campaign_id: str, actor_id: str, cause: str, world_future: str, now: datetime) -> bool: ...


class EventRepo(Protocol):
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
    ): ...
    def has_key(self, campaign_id: str, idempotency_key: str) -> bool: ...
    def list(
        self,
        campaign_id: str,
        *,
        after_id: int = 0,
        kinds: Iterable[str] | None = None,
        actions: Iterable[str] | None = None,
    ): ...
    def list_session_events(
        self,
        campaign_id: str,
        *,
        after_id: int = 0,
        actions: Iterable[str] | None = None,
    ) -> list[SessionEvent]: ...
    def recent(self, campaign_id: str, limit: int, kinds: Iterable[str]): ...


class RateLimitRepo(Protocol):
    def count_since(self, key: str, since: datetime) -> int: ...
    def add(self, key: str, hit_at: datetime) -> None: ...
    def prune(self, key: str, before: datetime) -> int: ...


class UnitOfWork(Protocol):
    campaigns: CampaignRepo
    players: PlayerRepo
    events: EventRepo
    rate_limits: RateLimitRepo

    def commit(self) -> None: ...
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
