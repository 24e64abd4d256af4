from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, Protocol

from .types import CharacterState, IllustrationRequest, ModelReply, NarrativeRequest, SessionEvent


class NarrativeModelPort(Protocol):
    async def complete(self, target: str, request: NarrativeRequest) -> ModelReply:
        ...


class IllustrationPort(Protocol):
    async def generate(self, request: IllustrationRequest) -> str:
        ...


class CounterStorePort(Protocol):
    def hit(self, key: str, *, limit: int, window_seconds: int, now: datetime) -> bool:
        ...


class EventLogPort(Protocol):
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
        ...

    def list(self, campaign_id: str, *, after_id: int = 0) -> list[SessionEvent]:
        ...

    def subscribe(self, campaign_id: str, *, after_id: int = 0) -> AsyncIterator[SessionEvent]:
        ...


class CharacterStorePort(Protocol):
    def read(self, campaign_id: str, participant_id: str) -> CharacterState | None:
        ...

    def write(self, campaign_id: str, participant_id: str, character: CharacterState) -> None:
        ...
