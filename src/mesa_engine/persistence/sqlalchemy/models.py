from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


EventIDType = BigInteger().with_variant(Integer, "sqlite")


class Actor(TimestampMixin, Base):
    __tablename__ = "mesa_actors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    kind: Mapped[str] = mapped_column(String(24), nullable=False, default="human")
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class Campaign(TimestampMixin, Base):
    __tablename__ = "mesa_campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("mesa_actors.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="waiting_for_players")

    world_history: Mapped[str] = mapped_column(Text, nullable=False, default="")
    genre: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    tone: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    magic: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    tech: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    visual_style: Mapped[str] = mapped_column(Text, nullable=False, default="")

    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting_for_players','active','paused','archived')",
            name="campaign_status_valid",
        ),
    )


class Player(TimestampMixin, Base):
    __tablename__ = "mesa_players"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("mesa_campaigns.id"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(36), ForeignKey("mesa_actors.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    character_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    character_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    is_dead: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    death_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    death_world_future: Mapped[str | None] = mapped_column(Text, nullable=True)
    death_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "actor_id", name="uq_mesa_player_campaign_actor"),
        CheckConstraint("status IN ('pending','accepted','banned')", name="player_status_valid"),
    )


class Event(Base):
    __tablename__ = "mesa_events"

    id: Mapped[int] = mapped_column(EventIDType, primary_key=True, autoincrement=True)
    campaign_id: Mapped[str] = mapped_column(String(36), ForeignKey("mesa_campaigns.id"), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("mesa_actors.id"), nullable=True)

    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("campaign_id", "idempotency_key", name="uq_mesa_event_campaign_key"),
        CheckConstraint(
            "kind IN ('narrative','system_notice','tool_action_record','image','death')",
            name="event_kind_valid",
        ),
    )


Index("ix_mesa_event_campaign_id", Event.campaign_id, Event.id)
Index("ix_mesa_event_campaign_action", Event.campaign_id, Event.action)


class RateLimitHit(Base):
    __tablename__ = "mesa_rate_limit_hits"

    id: Mapped[int] = mapped_column(EventIDType, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    hit_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


Index("ix_mesa_rate_limit_key_hit", RateLimitHit.key, RateLimitHit.hit_at)
