"""Drives one participant exchange from input to turn advance.

Flow per exchange::

    IDLE -> AWAITING_MODEL -> EXECUTING_ACTIONS -> (AWAITING_MODEL | AWAITING_ROLL | ADVANCING) -> IDLE

Provider failures park the campaign in PAUSED until ``retry`` replays the
single outstanding request. Each tool action that answers back (an image)
is re-fed to the model once, and ``SessionConfig.max_model_calls`` caps the
model calls of one exchange.
"""
from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from ..config import SessionConfig
from ..persistence.interfaces import UnitOfWork
from .errors import (
    ProviderError,
    QuotaExceeded,
    SessionError,
    StaleClaimError,
    TurnViolation,
    ValidationError,
)
from .invoker import ModelInvoker
from .normalize import dump_json, format_player_input, parse_json_dict
from .ports import IllustrationPort, NarrativeModelPort
from .prompts import OPENING_PROMPT, TOOL_SCHEMAS, build_system_prompt
from .rate_limit import RateLimiter
from .rules import apply_damage, apply_rest, classify_roll, mark_dead, merge_character_update, roll_d20
from .tool_actions import ToolActionParser, image_fingerprint
from .turns import TurnScheduler
from .types import (
    ApplyDamage,
    ApplyRest,
    CampaignStatus,
    Challenge,
    CharacterState,
    EventKind,
    ExchangeResult,
    GenerateImage,
    IllustrationRequest,
    ModelReply,
    NarrativeRequest,
    ParsedReply,
    RequestRoll,
    RollResult,
    SessionState,
    ToolAction,
    ToolResponse,
    TriggerGameOver,
    TurnRound,
    UpdateCharacter,
)

IMAGE_TOOL_RESULT = "Image displayed successfully."
DEFAULT_DEATH_CAUSE = "O corpo nao aguentou os ferimentos."
DEFAULT_DEATH_FUTURE = "A historia segue sem o heroi, deixando ecos do que poderia ter sido."
DEATH_IMAGE_PROMPT = "{visual_style}. Iconic image of the hero's death, grave, or the aftermath. Melancholic, cinematic."


@dataclass
class PendingCall:
    """The one request a paused campaign replays on retry."""

    actor_id: str
    input_text: Optional[str] = None
    tool_response: Optional[ToolResponse] = None
    event_id: Optional[int] = None
    followups: list[ToolResponse] = field(default_factory=list)
    calls: int = 0


@dataclass
class SessionRuntime:
    state: SessionState = SessionState.IDLE
    exchange_id: Optional[str] = None
    pending: Optional[PendingCall] = None
    challenge: Optional[Challenge] = None
    pause_reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None


@dataclass
class SessionView:
    campaign_id: str
    state: SessionState
    round: Optional[TurnRound] = None
    challenge: Optional[Challenge] = None
    pause_reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None


@dataclass
class _Outcome:
    narrations: list[str] = field(default_factory=list)
    continuations: list[ToolResponse] = field(default_factory=list)
    challenge: Optional[Challenge] = None
    roll: Optional[RollResult] = None
    died: bool = False


class NarrativeOrchestrator:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        model: NarrativeModelPort,
        illustrator: IllustrationPort | None = None,
        *,
        invoker: ModelInvoker | None = None,
        rate_limiter: RateLimiter | None = None,
        scheduler: TurnScheduler | None = None,
        parser: ToolActionParser | None = None,
        config: SessionConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._model = model
        self._illustrator = illustrator
        self._config = config or SessionConfig()
        self._rng = rng or random.Random()
        self._clock = clock or datetime.utcnow
        self._logger = logger or logging.getLogger(__name__)
        self._invoker = invoker or ModelInvoker()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._scheduler = scheduler or TurnScheduler(uow_factory, self._config, rng=self._rng)
        self._parser = parser or ToolActionParser()
        self._runtimes: dict[str, SessionRuntime] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def scheduler(self) -> TurnScheduler:
        return self._scheduler

    def _get_lock(self, campaign_id: str) -> asyncio.Lock:
        lock = self._locks.get(campaign_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[campaign_id] = lock
        return lock

    def _runtime(self, campaign_id: str) -> SessionRuntime:
        runtime = self._runtimes.get(campaign_id)
        if runtime is None:
            runtime = SessionRuntime()
            self._runtimes[campaign_id] = runtime
        return runtime

    @staticmethod
    def _busy_reason(runtime: SessionRuntime) -> str | None:
        if runtime.state is SessionState.PAUSED:
            return "session_paused"
        if runtime.state is SessionState.AWAITING_ROLL:
            return "awaiting_roll"
        if runtime.state is not SessionState.IDLE:
            return "session_busy"
        return None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def session_state(self, campaign_id: str) -> SessionView:
        runtime = self._runtime(campaign_id)
        return SessionView(
            campaign_id=campaign_id,
            state=runtime.state,
            round=self._scheduler.current_round(campaign_id),
            challenge=runtime.challenge,
            pause_reason=runtime.pause_reason,
            retry_after_seconds=runtime.retry_after_seconds,
        )

    async def open_session(self, campaign_id: str, initiator_id: str) -> ExchangeResult:
        """Narrate the opening scene and start the first round."""
        async with self._get_lock(campaign_id):
            runtime = self._runtime(campaign_id)
            busy = self._busy_reason(runtime)
            if busy:
                return ExchangeResult(status="rejected", reason=busy)
            with self._uow_factory() as uow:
                campaign = uow.campaigns.get(campaign_id)
                if campaign is None:
                    return ExchangeResult(status="rejected", reason="campaign_not_found")
                if campaign.owner_actor_id != initiator_id:
                    return ExchangeResult(status="rejected", reason="not_authorized")
                if campaign.status != CampaignStatus.ACTIVE.value:
                    return ExchangeResult(status="rejected", reason="campaign_not_active")

            runtime.exchange_id = uuid.uuid4().hex
            result = await self._run_exchange(
                campaign_id,
                runtime,
                PendingCall(actor_id=initiator_id, input_text=OPENING_PROMPT),
            )
            if result.status != "ok":
                return result
            result.round = self._ensure_round(campaign_id, initiator_id)
            return result

    async def submit_action(self, campaign_id: str, actor_id: str, text: str) -> ExchangeResult:
        async with self._get_lock(campaign_id):
            runtime = self._runtime(campaign_id)
            busy = self._busy_reason(runtime)
            if busy:
                return ExchangeResult(status="rejected", reason=busy)
            return await self._accept_action(campaign_id, runtime, actor_id, text)

    async def submit_roll(self, campaign_id: str, actor_id: str, natural_roll: int | None = None) -> ExchangeResult:
        """Resolve the pending challenge. ``None`` rolls a d20 from the injected RNG."""
        async with self._get_lock(campaign_id):
            runtime = self._runtime(campaign_id)
            challenge = runtime.challenge
            if runtime.state is not SessionState.AWAITING_ROLL or challenge is None:
                return ExchangeResult(status="rejected", reason="no_pending_roll")
            if challenge.actor_id != actor_id:
                return ExchangeResult(status="rejected", reason="not_your_roll")

            if natural_roll is None:
                natural_roll = roll_d20(self._rng)
            elif isinstance(natural_roll, bool) or not isinstance(natural_roll, int):
                return ExchangeResult(status="rejected", reason="invalid_roll")

            action = challenge.action
            with self._uow_factory() as uow:
                character = uow.players.read_character(campaign_id, actor_id) or CharacterState()
                roll = classify_roll(
                    attribute=action.attribute,
                    attribute_value=character.attributes.get(action.attribute, 0),
                    profession_relevant=action.profession_relevant,
                    difficulty=action.difficulty,
                    health_tier=character.health.tier,
                    natural_roll=natural_roll,
                )
                self._append_roll_notice(uow, campaign_id, actor_id, challenge.exchange_id, action, roll)
                uow.commit()

            runtime.challenge = None
            runtime.exchange_id = challenge.exchange_id
            result = await self._run_exchange(
                campaign_id,
                runtime,
                PendingCall(
                    actor_id=actor_id,
                    tool_response=ToolResponse(
                        name=action.kind,
                        result=roll.total,
                        call_id=action.correlation_id,
                        args=action.params(),
                    ),
                ),
            )
            if result.roll is None:
                result.roll = roll
            return result

    async def retry(self, campaign_id: str, actor_id: str) -> ExchangeResult:
        """Leave PAUSED by replaying the last unacknowledged request."""
        async with self._get_lock(campaign_id):
            runtime = self._runtime(campaign_id)
            if runtime.state is not SessionState.PAUSED:
                return ExchangeResult(status="rejected", reason="not_paused")
            pending = runtime.pending
            if pending is None:
                self._resume(runtime)
                return ExchangeResult(status="ok")
            if pending.actor_id != actor_id:
                with self._uow_factory() as uow:
                    campaign = uow.campaigns.get(campaign_id)
                    owner_id = campaign.owner_actor_id if campaign is not None else None
                if actor_id != owner_id:
                    return ExchangeResult(status="rejected", reason="not_authorized")

            self._resume(runtime)
            self._logger.info("Retrying paused exchange %s in campaign=%s", runtime.exchange_id, campaign_id)
            result = await self._run_exchange(campaign_id, runtime, pending)
            if result.status == "ok" and pending.input_text == OPENING_PROMPT and pending.event_id is None:
                result.round = self._ensure_round(campaign_id, pending.actor_id)
            return result

    async def use_item(self, campaign_id: str, actor_id: str, item_id: str) -> ExchangeResult:
        """Spend one unit of a consumable and narrate its use as the actor's turn.

        The unit is only spent once the scheduler has accepted the action.
        """
        async with self._get_lock(campaign_id):
            runtime = self._runtime(campaign_id)
            busy = self._busy_reason(runtime)
            if busy:
                return ExchangeResult(status="rejected", reason=busy)

            round_ = self._scheduler.current_round(campaign_id)
            if round_ is None or round_.current_participant != actor_id:
                return ExchangeResult(status="rejected", reason="not_your_turn")

            with self._uow_factory() as uow:
                character = uow.players.read_character(campaign_id, actor_id)
            if character is None:
                return ExchangeResult(status="rejected", reason="not_a_participant")
            if character.is_dead:
                return ExchangeResult(status="rejected", reason="participant_dead")
            item = next((entry for entry in character.inventory if entry.id == item_id), None)
            if item is None or item.kind != "consumable" or item.quantity <= 0:
                return ExchangeResult(status="rejected", reason="item_unavailable")

            return await self._accept_action(
                campaign_id,
                runtime,
                actor_id,
                f"Used {item.name}",
                on_accepted=lambda: self._spend_item(campaign_id, actor_id, item_id),
            )

    # ------------------------------------------------------------------
    # Exchange pipeline
    # ------------------------------------------------------------------

    async def _accept_action(
        self,
        campaign_id: str,
        runtime: SessionRuntime,
        actor_id: str,
        text: str,
        on_accepted: Callable[[], None] | None = None,
    ) -> ExchangeResult:
        """Record the participant's input and run its exchange. Caller holds the campaign lock."""
        with self._uow_factory() as uow:
            character = uow.players.read_character(campaign_id, actor_id)
        name = character.name if character is not None and character.name else self._config.default_label
        formatted = format_player_input(name, text or "")

        try:
            event_id = self._scheduler.submit_action(campaign_id, actor_id, text, content=formatted)
        except (ValidationError, TurnViolation) as exc:
            self._logger.info("Rejected action from %s in campaign=%s: %s", actor_id, campaign_id, exc.reason)
            return ExchangeResult(status="rejected", reason=exc.reason)
        except StaleClaimError:
            return ExchangeResult(status="conflict", reason="row_version_conflict")

        if on_accepted is not None:
            on_accepted()
        runtime.exchange_id = uuid.uuid4().hex
        return await self._run_exchange(
            campaign_id,
            runtime,
            PendingCall(actor_id=actor_id, input_text=formatted, event_id=event_id),
        )

    def _spend_item(self, campaign_id: str, actor_id: str, item_id: str) -> None:
        with self._uow_factory() as uow:
            character = uow.players.read_character(campaign_id, actor_id)
            item = next((entry for entry in character.inventory if entry.id == item_id), None) if character else None
            if item is None or item.quantity <= 0:
                self._logger.warning("Item %s vanished before use by %s in campaign=%s", item_id, actor_id, campaign_id)
                return
            item.quantity -= 1
            uow.players.write_character(campaign_id, actor_id, character)
            uow.commit()

    def _resume(self, runtime: SessionRuntime) -> None:
        runtime.state = SessionState.IDLE
        runtime.pause_reason = None
        runtime.retry_after_seconds = None

    def _pause(self, runtime: SessionRuntime, pending: PendingCall, reason: str, retry_after: int | None) -> ExchangeResult:
        runtime.state = SessionState.PAUSED
        runtime.pending = pending
        runtime.pause_reason = reason
        runtime.retry_after_seconds = retry_after
        return ExchangeResult(status="paused", reason=reason, retry_after_seconds=retry_after)

    async def _run_exchange(self, campaign_id: str, runtime: SessionRuntime, pending: PendingCall) -> ExchangeResult:
        actor_id = pending.actor_id
        exchange_id = runtime.exchange_id or uuid.uuid4().hex
        runtime.exchange_id = exchange_id
        narrations: list[str] = []
        last_roll: RollResult | None = None
        call = pending
        followups = list(pending.followups)
        calls = pending.calls

        while True:
            runtime.state = SessionState.AWAITING_MODEL
            call.followups = list(followups)
            call.calls = calls
            try:
                reply = await self._call_model(campaign_id, call)
            except ProviderError as exc:
                self._logger.warning(
                    "Campaign %s paused after provider failure: %s",
                    campaign_id,
                    exc.reason,
                )
                return self._pause(runtime, call, exc.reason, getattr(exc, "retry_after_seconds", None))
            except SessionError as exc:
                self._logger.warning("Exchange %s rejected in campaign=%s: %s", exchange_id, campaign_id, exc.reason)
                runtime.pending = None
                runtime.state = SessionState.IDLE
                return ExchangeResult(status="rejected", narration=self._join(narrations), reason=exc.reason)
            except Exception:
                self._logger.exception("Campaign %s paused after unexpected transport failure", campaign_id)
                return self._pause(runtime, call, "provider_failure", None)

            calls += 1
            runtime.pending = None
            runtime.state = SessionState.EXECUTING_ACTIONS
            parsed = self._parser.parse(reply.text, reply.tool_calls)
            budget = 0
            if self._config.max_continuation_depth > 0:
                budget = max(0, self._config.max_model_calls - calls - len(followups))
            outcome = await self._execute(campaign_id, actor_id, exchange_id, parsed, budget)
            narrations.extend(outcome.narrations)
            if outcome.roll is not None:
                last_roll = outcome.roll

            if outcome.died:
                runtime.state = SessionState.ADVANCING
                round_ = self._advance_if_current(campaign_id, actor_id)
                runtime.state = SessionState.IDLE
                return ExchangeResult(
                    status="game_over",
                    narration=self._join(narrations),
                    roll=last_roll,
                    reason="participant_dead",
                    round=round_,
                )

            if outcome.challenge is not None:
                runtime.challenge = outcome.challenge
                runtime.state = SessionState.AWAITING_ROLL
                return ExchangeResult(
                    status="awaiting_roll",
                    narration=self._join(narrations),
                    roll=last_roll,
                    challenge=outcome.challenge,
                )

            followups.extend(outcome.continuations)
            if followups:
                call = PendingCall(actor_id=actor_id, tool_response=followups.pop(0))
                continue

            break

        round_ = None
        if narrations or last_roll is not None:
            runtime.state = SessionState.ADVANCING
            round_ = self._advance_if_current(campaign_id, actor_id)
        runtime.state = SessionState.IDLE
        return ExchangeResult(status="ok", narration=self._join(narrations), roll=last_roll, round=round_)

    @staticmethod
    def _join(narrations: list[str]) -> str | None:
        text = "\n\n".join(n for n in narrations if n)
        return text or None

    def _advance_if_current(self, campaign_id: str, actor_id: str) -> TurnRound | None:
        round_ = self._scheduler.current_round(campaign_id)
        if round_ is None or round_.current_participant != actor_id:
            return round_
        try:
            return self._scheduler.advance(campaign_id)
        except StaleClaimError:
            self._logger.warning("Turn advance raced in campaign=%s; re-reading round", campaign_id)
            return self._scheduler.current_round(campaign_id)

    def _ensure_round(self, campaign_id: str, initiator_id: str) -> TurnRound | None:
        round_ = self._scheduler.current_round(campaign_id)
        if round_ is not None and round_.is_active:
            return round_
        try:
            return self._scheduler.start_round(campaign_id, initiator_id)
        except (ValidationError, TurnViolation, StaleClaimError) as exc:
            self._logger.info("Round not started in campaign=%s: %s", campaign_id, exc.reason)
            return round_

    async def _call_model(self, campaign_id: str, call: PendingCall) -> ModelReply:
        limit_key = f"chat:{call.actor_id}:{campaign_id}"
        if self._rate_limiter.is_limited(limit_key):
            raise QuotaExceeded("rate_limited", retry_after_seconds=self._rate_limiter.window_seconds)

        request = self._build_request(campaign_id, call)

        async def _attempt(target: str) -> ModelReply:
            return await self._model.complete(target, request)

        return await self._invoker.invoke(campaign_id, _attempt)

    def _build_request(self, campaign_id: str, call: PendingCall) -> NarrativeRequest:
        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            if campaign is None:
                raise ValidationError("campaign_not_found")
            character = uow.players.read_character(campaign_id, call.actor_id)
            roster = [
                p.character_name or self._config.default_label
                for p in uow.players.list_accepted(campaign_id)
            ]
            rows = uow.events.recent(
                campaign_id,
                self._config.history_limit + 1,
                kinds=(EventKind.NARRATIVE.value, EventKind.DEATH.value),
            )
            history: list[dict[str, str]] = []
            for row in rows:
                if call.event_id is not None and row.id == call.event_id:
                    continue
                if not row.content:
                    continue
                role = "user" if parse_json_dict(row.payload_json).get("role") == "user" else "assistant"
                history.append({"role": role, "content": row.content})
            system_prompt = build_system_prompt(campaign, character, roster)

        return NarrativeRequest(
            system_prompt=system_prompt,
            history=history[-self._config.history_limit :],
            tools=TOOL_SCHEMAS,
            input_text=call.input_text,
            tool_response=call.tool_response,
        )

    # ------------------------------------------------------------------
    # Tool action execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        campaign_id: str,
        actor_id: str,
        exchange_id: str,
        parsed: ParsedReply,
        continuation_budget: int,
    ) -> _Outcome:
        """Run the reply's actions in order. At most ``continuation_budget`` tool responses are queued."""
        outcome = _Outcome()
        can_continue = continuation_budget > 0
        has_image = any(isinstance(a, GenerateImage) for a in parsed.actions)
        deferred: str | None = None

        narration = parsed.cleaned_narrative.strip()
        if narration and has_image and can_continue:
            deferred = narration
        elif narration:
            self._append_narration(campaign_id, actor_id, exchange_id, narration)
            outcome.narrations.append(narration)

        for action in parsed.actions:
            if isinstance(action, RequestRoll):
                if self._execute_roll_request(campaign_id, actor_id, exchange_id, action, outcome):
                    break
            elif isinstance(action, (ApplyDamage, ApplyRest)):
                death = self._execute_health(campaign_id, actor_id, exchange_id, action)
                if death:
                    await self._death_sequence(campaign_id, actor_id, exchange_id, *death, outcome=outcome)
                    break
            elif isinstance(action, GenerateImage):
                response = await self._execute_image(campaign_id, actor_id, exchange_id, action)
                if response is not None and len(outcome.continuations) < continuation_budget:
                    outcome.continuations.append(response)
            elif isinstance(action, TriggerGameOver):
                await self._death_sequence(
                    campaign_id,
                    actor_id,
                    exchange_id,
                    action.cause_of_death,
                    action.world_future,
                    outcome=outcome,
                )
                break
            elif isinstance(action, UpdateCharacter):
                self._execute_update(campaign_id, actor_id, exchange_id, action)

        if deferred and (not outcome.continuations or outcome.died or outcome.challenge is not None):
            self._append_narration(campaign_id, actor_id, exchange_id, deferred)
            outcome.narrations.insert(0, deferred)
        if outcome.died or outcome.challenge is not None:
            outcome.continuations = []
        return outcome

    def _record_action(self, uow, campaign_id: str, actor_id: str, exchange_id: str, action: ToolAction) -> bool:
        row = uow.events.add(
            campaign_id,
            EventKind.TOOL_ACTION_RECORD.value,
            dump_json({"action": action.kind, "params": action.params(), "correlation_id": action.correlation_id}),
            actor_id=actor_id,
            action=action.kind,
            idempotency_key=f"{exchange_id}:{action.correlation_id}",
        )
        if row is None:
            self._logger.debug("Skipping duplicate %s %s", action.kind, action.correlation_id)
            return False
        return True

    def _append_narration(self, campaign_id: str, actor_id: str, exchange_id: str, narration: str) -> None:
        with self._uow_factory() as uow:
            uow.events.add(
                campaign_id,
                EventKind.NARRATIVE.value,
                dump_json({"role": "model", "player_id": actor_id, "exchange_id": exchange_id}),
                content=narration,
            )
            uow.commit()

    def _append_roll_notice(self, uow, campaign_id: str, actor_id: str, exchange_id: str, action: RequestRoll, roll: RollResult) -> None:
        uow.events.add(
            campaign_id,
            EventKind.SYSTEM_NOTICE.value,
            dump_json(
                {
                    "type": "system",
                    "action": "roll",
                    "player_id": actor_id,
                    "attribute": action.attribute,
                    "label": roll.label,
                    "outcome": roll.outcome.value,
                    "natural_roll": roll.natural_roll,
                    "total": roll.total,
                    "message": roll.message,
                }
            ),
            actor_id=actor_id,
            content=f"[ROLAGEM] {roll.label}.",
            action="roll",
            idempotency_key=f"roll:{exchange_id}:{action.correlation_id}",
        )

    def _execute_roll_request(
        self,
        campaign_id: str,
        actor_id: str,
        exchange_id: str,
        action: RequestRoll,
        outcome: _Outcome,
    ) -> bool:
        """Returns True when the exchange must suspend for a dice value."""
        with self._uow_factory() as uow:
            if not self._record_action(uow, campaign_id, actor_id, exchange_id, action):
                uow.commit()
                return False
            if action.impossible:
                roll = classify_roll(
                    attribute=action.attribute,
                    attribute_value=0,
                    profession_relevant=action.profession_relevant,
                    difficulty=action.difficulty,
                    health_tier="HEALTHY",
                    natural_roll=None,
                    impossible=True,
                    impossible_reason=action.impossible_reason,
                )
                self._append_roll_notice(uow, campaign_id, actor_id, exchange_id, action, roll)
                uow.commit()
                outcome.roll = roll
                return False
            uow.commit()

        outcome.challenge = Challenge(actor_id=actor_id, action=action, exchange_id=exchange_id)
        self._logger.debug("Awaiting %s roll from %s in campaign=%s", action.attribute, actor_id, campaign_id)
        return True

    def _execute_health(
        self,
        campaign_id: str,
        actor_id: str,
        exchange_id: str,
        action: ApplyDamage | ApplyRest,
    ) -> tuple[str, str] | None:
        """Apply damage or rest. Returns default death text when the character just died."""
        with self._uow_factory() as uow:
            player = uow.players.get_by_campaign_actor(campaign_id, actor_id)
            character = uow.players.read_character(campaign_id, actor_id)
            if player is None or character is None:
                self._logger.warning("No character for %s in campaign=%s; dropping %s", actor_id, campaign_id, action.kind)
                return None
            if not self._record_action(uow, campaign_id, actor_id, exchange_id, action):
                uow.commit()
                return None
            if isinstance(action, ApplyDamage):
                updated = apply_damage(character, action.severity)
            else:
                updated = apply_rest(character, action.rest_type)
            uow.players.write_character(campaign_id, actor_id, updated)
            already_dead = player.is_dead
            uow.commit()

        if updated.health.tier is not character.health.tier:
            self._logger.info(
                "Character %s health %s -> %s",
                actor_id,
                character.health.tier.value,
                updated.health.tier.value,
            )
        if updated.is_dead and not already_dead:
            return DEFAULT_DEATH_CAUSE, DEFAULT_DEATH_FUTURE
        return None

    def _execute_update(self, campaign_id: str, actor_id: str, exchange_id: str, action: UpdateCharacter) -> None:
        with self._uow_factory() as uow:
            character = uow.players.read_character(campaign_id, actor_id)
            if character is None:
                self._logger.warning("No character for %s in campaign=%s; dropping update", actor_id, campaign_id)
                return
            if not self._record_action(uow, campaign_id, actor_id, exchange_id, action):
                uow.commit()
                return
            updated = merge_character_update(character, profession=action.profession, inventory=action.inventory)
            uow.players.write_character(campaign_id, actor_id, updated)
            uow.commit()

    async def _execute_image(
        self,
        campaign_id: str,
        actor_id: str,
        exchange_id: str,
        action: GenerateImage,
    ) -> ToolResponse | None:
        image_key = f"image:{exchange_id}:{action.fingerprint or image_fingerprint(action.prompt)}"
        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            if uow.events.has_key(campaign_id, image_key):
                return None
            if not self._record_action(uow, campaign_id, actor_id, exchange_id, action):
                uow.commit()
                return None
            uow.commit()
            visual_style = campaign.visual_style if campaign is not None else ""

        prompt = f"{visual_style}. {action.prompt}" if visual_style else action.prompt
        await self._illustrate(
            campaign_id,
            actor_id,
            prompt,
            image_key,
            {"source_call_id": action.correlation_id, "source_prompt": action.prompt},
        )
        return ToolResponse(
            name=action.kind,
            result=IMAGE_TOOL_RESULT,
            call_id=action.correlation_id,
            args=action.params(),
        )

    async def _illustrate(
        self,
        campaign_id: str,
        actor_id: str,
        prompt: str,
        idempotency_key: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        request = IllustrationRequest(
            prompt=prompt,
            seed=self._rng.randrange(self._config.image_seed_max),
            width=self._config.image_width,
            height=self._config.image_height,
        )
        image_url: str | None = None
        failure: str | None = None
        if self._illustrator is None:
            failure = "illustration_unavailable"
        elif self._rate_limiter.is_limited(f"image:{campaign_id}"):
            failure = "rate_limited"
        else:
            try:
                image_url = await self._illustrator.generate(request)
            except Exception as exc:
                self._logger.warning("Illustration failed in campaign=%s: %s", campaign_id, exc)
                failure = "illustration_failed"

        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "seed": request.seed,
            "width": request.width,
            "height": request.height,
            "image_url": image_url,
            "placeholder": image_url is None,
            "retryable": image_url is None,
        }
        if failure:
            payload["failure"] = failure
        payload.update(extra or {})
        with self._uow_factory() as uow:
            uow.events.add(
                campaign_id,
                EventKind.IMAGE.value,
                dump_json(payload),
                actor_id=actor_id,
                idempotency_key=idempotency_key,
            )
            uow.commit()

    async def _death_sequence(
        self,
        campaign_id: str,
        actor_id: str,
        exchange_id: str,
        cause: str,
        future: str,
        *,
        outcome: _Outcome,
    ) -> None:
        content = f"## ☠️ VOCÊ MORREU \n\n{cause}\n\n### O Futuro do Mundo:\n{future}"
        now = self._clock()
        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            character = uow.players.read_character(campaign_id, actor_id) or CharacterState()
            if not uow.players.mark_dead(campaign_id, actor_id, cause, future, now):
                self._logger.debug("Death of %s already recorded in campaign=%s", actor_id, campaign_id)
                outcome.died = True
                return
            uow.players.write_character(campaign_id, actor_id, mark_dead(character))
            uow.events.add(
                campaign_id,
                EventKind.DEATH.value,
                dump_json(
                    {
                        "role": "model",
                        "player_id": actor_id,
                        "cause_of_death": cause,
                        "world_future": future,
                    }
                ),
                actor_id=actor_id,
                content=content,
                idempotency_key=f"death:{actor_id}",
            )
            visual_style = campaign.visual_style if campaign is not None else ""
            uow.commit()

        self._logger.info("Participant %s died in campaign=%s", actor_id, campaign_id)
        outcome.died = True
        outcome.narrations.append(content)
        await self._illustrate(
            campaign_id,
            actor_id,
            DEATH_IMAGE_PROMPT.format(visual_style=visual_style),
            f"image:{exchange_id}:death:{actor_id}",
            {"death": True},
        )
