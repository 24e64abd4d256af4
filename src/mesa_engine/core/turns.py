"""Per-round turn ordering, rebuilt from the event log.

There is no cached turn pointer anywhere: every read folds the
``turn_start``/``turn_action``/``turn_advance``/``turn_end`` events of a
campaign, so a client that rejoins mid-round sees the same ``current_index``
as everybody else. Writes that depend on the fold are guarded by a
``row_version`` compare-and-swap on the campaign row.
"""
from __future__ import annotations

import logging
import random
import uuid
from typing import Any, Callable, Iterable, Sequence

from ..config import SessionConfig
from ..persistence.interfaces import UnitOfWork
from .errors import StaleClaimError, TerminalStateError, TurnViolation, ValidationError
from .normalize import dump_json, parse_json_dict
from .types import CampaignStatus, CharacterState, EventKind, Participant, SessionEvent, TurnActionEntry, TurnRound

TURN_START = "turn_start"
TURN_ACTION = "turn_action"
TURN_ADVANCE = "turn_advance"
TURN_END = "turn_end"
TURN_MARKERS = (TURN_START, TURN_ACTION, TURN_ADVANCE, TURN_END)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def fold_turn_round(events: Iterable[SessionEvent]) -> TurnRound | None:
    """Return the latest round described by ``events`` (active or ended)."""
    current: TurnRound | None = None
    for event in events:
        payload = event.payload
        action = payload.get("action")
        if action not in TURN_MARKERS:
            continue
        round_id = payload.get("turn_id")
        if not round_id:
            continue

        if action == TURN_START:
            order = payload.get("order") if isinstance(payload.get("order"), list) else []
            labels = payload.get("order_names") if isinstance(payload.get("order_names"), list) else []
            current = TurnRound(
                round_id=str(round_id),
                order=[str(p) for p in order],
                order_labels=[str(label) for label in labels],
                current_index=_as_int(payload.get("current_index"), 0),
            )
            continue

        if current is None or current.round_id != round_id:
            continue

        if action == TURN_ACTION:
            player_id = str(payload.get("player_id") or "unknown")
            text = str(payload.get("text") or event.content or "")
            if any(a.player_id == player_id and a.text == text for a in current.actions):
                continue
            roll = payload.get("roll")
            current.actions.append(
                TurnActionEntry(
                    player_id=player_id,
                    name=str(payload.get("player_name") or "Jogador"),
                    text=text,
                    roll=_as_int(roll, 0) if roll is not None else None,
                )
            )
        elif action == TURN_ADVANCE:
            current.current_index = _as_int(payload.get("current_index"), current.current_index)
        elif action == TURN_END:
            current.status = "ended"
    return current


def rank_participants(participants: Sequence[Participant], rng: random.Random | None = None) -> list[Participant]:
    """Descending by ranking key; exact ties are shuffled uniformly."""
    rng = rng or random.Random()
    keyed = [(-p.ranking_key, rng.random(), p) for p in participants]
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [item[2] for item in keyed]


class TurnScheduler:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        config: SessionConfig | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._config = config or SessionConfig()
        self._rng = rng or random.Random()
        self._logger = logger or logging.getLogger(__name__)

    # -- reads --------------------------------------------------------

    def current_round(self, campaign_id: str) -> TurnRound | None:
        with self._uow_factory() as uow:
            return self._fold(uow, campaign_id)

    def _fold(self, uow, campaign_id: str) -> TurnRound | None:
        return fold_turn_round(uow.events.list_session_events(campaign_id, actions=TURN_MARKERS))

    def _participant(self, player) -> Participant:
        character = CharacterState.from_dict(parse_json_dict(player.character_json))
        label = player.character_name or character.name or self._config.default_label
        return Participant(
            id=player.actor_id,
            label=label,
            ranking_key=int(character.attributes.get(self._config.ranking_attribute, 0)),
        )

    def _append_marker(self, uow, campaign, payload: dict[str, Any], content: str = "") -> int:
        row = uow.events.add(
            campaign.id,
            EventKind.SYSTEM_NOTICE.value,
            dump_json(payload),
            content=content,
            action=payload["action"],
        )
        if not uow.campaigns.cas_bump_row_version(campaign.id, campaign.row_version):
            uow.rollback()
            raise StaleClaimError("row_version_conflict")
        return row.id

    # -- writes -------------------------------------------------------

    def start_round(self, campaign_id: str, initiator_id: str) -> TurnRound:
        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            if campaign is None:
                raise ValidationError("campaign_not_found")
            if campaign.owner_actor_id is None or campaign.owner_actor_id != initiator_id:
                raise TurnViolation("not_authorized")
            if campaign.status != CampaignStatus.ACTIVE.value:
                raise TurnViolation("campaign_not_active")
            existing = self._fold(uow, campaign_id)
            if existing is not None and existing.is_active:
                raise TurnViolation("round_already_active")

            participants = [self._participant(p) for p in uow.players.list_accepted(campaign_id)]
            if not participants:
                raise ValidationError("no_participants")

            ordered = rank_participants(participants, self._rng)
            round_ = TurnRound(
                round_id=str(uuid.uuid4()),
                order=[p.id for p in ordered],
                order_labels=[p.label for p in ordered],
                current_index=0,
            )
            self._append_marker(
                uow,
                campaign,
                {
                    "type": "system",
                    "action": TURN_START,
                    "turn_id": round_.round_id,
                    "order": round_.order,
                    "order_names": round_.order_labels,
                    "current_index": 0,
                    "dex_key": self._config.ranking_attribute,
                },
            )
            uow.commit()

        self._logger.info(
            "Round %s started in campaign=%s order=%s",
            round_.round_id,
            campaign_id,
            ",".join(round_.order_labels),
        )
        return round_

    def submit_action(
        self,
        campaign_id: str,
        participant_id: str,
        text: str,
        *,
        content: str | None = None,
        roll: int | None = None,
    ) -> int:
        """Durably record a participant's action, enforcing turn order."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("empty_action")

        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            if campaign is None:
                raise ValidationError("campaign_not_found")
            player = uow.players.get_by_campaign_actor(campaign_id, participant_id)
            if player is None or player.status != "accepted":
                raise ValidationError("not_a_participant")
            if player.is_dead:
                raise TerminalStateError("participant_dead")
            if campaign.status != CampaignStatus.ACTIVE.value:
                raise TurnViolation("campaign_not_active")

            round_ = self._fold(uow, campaign_id)
            if round_ is None or not round_.is_active:
                raise TurnViolation("no_active_round")
            if round_.current_participant != participant_id:
                raise TurnViolation("not_your_turn")

            name = self._participant(player).label
            row = uow.events.add(
                campaign_id,
                EventKind.NARRATIVE.value,
                dump_json(
                    {
                        "role": "user",
                        "action": TURN_ACTION,
                        "turn_id": round_.round_id,
                        "player_id": participant_id,
                        "player_name": name,
                        "text": text,
                        "roll": roll,
                    }
                ),
                actor_id=participant_id,
                content=content if content is not None else text,
                action=TURN_ACTION,
            )
            if not uow.campaigns.cas_bump_row_version(campaign_id, campaign.row_version):
                uow.rollback()
                raise StaleClaimError("row_version_conflict")
            uow.commit()
            return row.id

    def advance(self, campaign_id: str) -> TurnRound | None:
        """Move past the current participant, ending the round when exhausted.

        Dead participants are skipped. After ``turn_end`` a new round is
        started when the campaign is active and auto start is enabled.
        """
        ended = False
        with self._uow_factory() as uow:
            campaign = uow.campaigns.get(campaign_id)
            if campaign is None:
                raise ValidationError("campaign_not_found")
            round_ = self._fold(uow, campaign_id)
            if round_ is None or not round_.is_active:
                return round_

            dead = {p.actor_id for p in uow.players.list_by_campaign(campaign_id) if p.is_dead}
            next_index = round_.current_index + 1
            while next_index < len(round_.order) and round_.order[next_index] in dead:
                next_index += 1

            if next_index < len(round_.order):
                self._append_marker(
                    uow,
                    campaign,
                    {
                        "type": "system",
                        "action": TURN_ADVANCE,
                        "turn_id": round_.round_id,
                        "current_index": next_index,
                    },
                )
                round_.current_index = next_index
            else:
                self._append_marker(
                    uow,
                    campaign,
                    {"type": "system", "action": TURN_END, "turn_id": round_.round_id},
                )
                round_.status = "ended"
                ended = True
            owner_id = campaign.owner_actor_id
            still_active = campaign.status == CampaignStatus.ACTIVE.value
            uow.commit()

        if not ended:
            self._logger.debug("Round %s advanced to index %d", round_.round_id, round_.current_index)
            return round_

        self._logger.info("Round %s ended in campaign=%s", round_.round_id, campaign_id)
        if not (self._config.auto_start_rounds and still_active and owner_id):
            return round_
        try:
            return self.start_round(campaign_id, owner_id)
        except (ValidationError, TurnViolation) as exc:
            self._logger.info("Not restarting round in campaign=%s: %s", campaign_id, exc.reason)
            return round_
