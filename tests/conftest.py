from __future__ import annotations

import json
from datetime import datetime

import pytest

from mesa_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from mesa_engine.persistence.sqlalchemy.models import Actor, Campaign, Player
from mesa_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


def character_json(name: str, **attributes: int) -> str:
    attrs = {"VIGOR": 0, "DESTREZA": 0, "MENTE": 0, "PRESENÇA": 0}
    attrs.update({k.replace("PRESENCA", "PRESENÇA"): v for k, v in attributes.items()})
    return json.dumps(
        {
            "name": name,
            "profession": "Ferreiro",
            "attributes": attrs,
            "health": {"tier": "HEALTHY", "lightDamageCounter": 0},
            "inventory": [
                {"id": "potion-1", "name": "Pocao de cura", "type": "consumable", "quantity": 1},
                {"id": "sword-1", "name": "Espada curta", "type": "equipment", "quantity": 1},
            ],
        }
    )


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def seed_table(session_factory):
    """An active campaign run by ``owner`` with two accepted players.

    ``p5`` has DESTREZA 5 and VIGOR 3, ``p3`` has DESTREZA 3.
    """
    now = datetime.utcnow()
    with session_factory() as session:
        for actor_id, name in (("owner", "Mestre"), ("p5", "Alice"), ("p3", "Bruno"), ("p0", "Caio")):
            session.add(Actor(id=actor_id, display_name=name, kind="human", metadata_json="{}"))
        session.add(
            Campaign(
                id="campaign-1",
                title="A Torre",
                owner_actor_id="owner",
                status="active",
                world_history="Um reino em ruinas.",
                genre="Fantasia sombria",
                tone="Letal",
                magic="Rara",
                tech="Medieval",
                visual_style="Dark fantasy, oil painting",
                row_version=1,
                created_at=now,
                updated_at=now,
            )
        )
        session.flush()
        session.add(
            Player(
                campaign_id="campaign-1",
                actor_id="p5",
                status="accepted",
                character_name="Alice",
                character_json=character_json("Alice", DESTREZA=5, VIGOR=3, MENTE=1, PRESENCA=1),
            )
        )
        session.add(
            Player(
                campaign_id="campaign-1",
                actor_id="p3",
                status="accepted",
                character_name="Bruno",
                character_json=character_json("Bruno", DESTREZA=3, VIGOR=3, MENTE=2, PRESENCA=2),
            )
        )
        session.add(
            Player(
                campaign_id="campaign-1",
                actor_id="p0",
                status="pending",
                character_name="Caio",
                character_json=character_json("Caio", DESTREZA=4, VIGOR=2, MENTE=2, PRESENCA=2),
            )
        )
        session.commit()
    return {"campaign_id": "campaign-1", "owner_id": "owner"}
