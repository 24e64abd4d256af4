from __future__ import annotations

import asyncio
import json
import random

from mesa_engine.core.invoker import ModelInvoker
from mesa_engine.core.orchestrator import NarrativeOrchestrator
from mesa_engine.core.types import ModelReply
from mesa_engine.persistence.sqlalchemy import (
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)
from mesa_engine.persistence.sqlalchemy.models import Actor, Campaign, Event, Player


class DemoModel:
    """Asks for one DESTREZA roll, then narrates the result."""

    async def complete(self, target, request):
        if request.tool_response is None:
            return ModelReply(
                text="Os guardas erguem as lancas quando voce se aproxima do portao.",
                tool_calls=[
                    {
                        "id": "call_gate",
                        "name": "request_roll",
                        "args": {"attribute": "DESTREZA", "is_profession_relevant": False, "difficulty": "HARD"},
                    }
                ],
            )
        total = request.tool_response.result
        return ModelReply(text=f"Com um total de {total}, voce desliza entre as sombras e cruza o portao.")


def _character(name: str, destreza: int) -> str:
    return json.dumps(
        {
            "name": name,
            "profession": "Batedora",
            "attributes": {"VIGOR": 2, "DESTREZA": destreza, "MENTE": 2, "PRESENÇA": 6 - destreza},
            "health": {"tier": "HEALTHY", "lightDamageCounter": 0},
            "inventory": [],
        }
    )


def make_uow_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    session_factory = build_session_factory(engine)

    with session_factory() as session:
        for actor_id, name in (("gm", "Mestre"), ("actor-1", "Lia"), ("actor-2", "Tomas")):
            session.add(Actor(id=actor_id, display_name=name, kind="human", metadata_json="{}"))
        session.add(
            Campaign(
                id="campaign-1",
                title="Fuga da Cidade",
                owner_actor_id="gm",
                status="active",
                world_history="A cidade fecha os portoes ao anoitecer.",
                genre="Fantasia",
                tone="Tenso",
                visual_style="Ink wash illustration",
                row_version=1,
            )
        )
        session.flush()
        session.add(Player(campaign_id="campaign-1", actor_id="actor-1", status="accepted",
                           character_name="Lia", character_json=_character("Lia", 4)))
        session.add(Player(campaign_id="campaign-1", actor_id="actor-2", status="accepted",
                           character_name="Tomas", character_json=_character("Tomas", 2)))
        session.commit()

    def _uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _uow_factory, session_factory


async def main() -> None:
    uow_factory, session_factory = make_uow_factory()
    orchestrator = NarrativeOrchestrator(
        uow_factory,
        DemoModel(),
        invoker=ModelInvoker(targets=["demo-model"]),
        rng=random.Random(7),
    )

    round_ = orchestrator.scheduler.start_round("campaign-1", "gm")
    print("turn order:", round_.order_labels)

    result = await orchestrator.submit_action("campaign-1", "actor-1", "tento passar pelos guardas")
    print("submit_action status:", result.status)
    print("narration:", result.narration)

    result = await orchestrator.submit_roll("campaign-1", "actor-1")
    print("submit_roll status:", result.status, "roll:", result.roll.label, result.roll.total)
    print("narration:", result.narration)
    print("now playing:", result.round.current_participant)

    with session_factory() as session:
        for event in session.query(Event).order_by(Event.id):
            print(f"[{event.id}] {event.kind:<18} {event.action or '-':<14} {event.content[:60]}")


if __name__ == "__main__":
    asyncio.run(main())
