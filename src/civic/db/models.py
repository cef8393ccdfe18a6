"""ORM models for the quest and achievement schema.

Tables are created by the Alembic migration in alembic/versions. Every
entity the admin API can soft-delete carries a ``record_status`` column
(``active`` / ``deleted``); reads always filter on it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from civic.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

RECORD_ACTIVE = "active"
RECORD_DELETED = "deleted"


# ---------------------------------------------------------------------------
# Directory: users, cities, organization types, categories
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False, server_default="")
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, server_default="")
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    experience: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=text("NOW()"))


class City(Base):
    """Maps to the 'cities' table."""

    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)


class OrganizationType(Base):
    """Maps to the 'organization_types' table."""

    __tablename__ = "organization_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)


class Category(Base):
    """Maps to the 'categories' table."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    """A unit of charitable work. Steps are stored as a JSON array."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="active")
    experience_reward: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    achievement_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("achievements.id", ondelete="SET NULL", use_alter=True), nullable=True
    )
    owner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    city_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("cities.id"), nullable=True)
    organization_type_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organization_types.id"), nullable=True
    )
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(10, 7), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    contacts: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    cover_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    gallery: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    steps: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012


class QuestCategory(Base):
    """Quest <-> Category association with no payload beyond the two keys."""

    __tablename__ = "quest_categories"
    __table_args__ = (UniqueConstraint("quest_id", "category_id", name="uq_quest_categories_pair"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), nullable=False)


class UserQuest(Base):
    """Participation record. UNIQUE(user_id, quest_id) backs join exclusivity."""

    __tablename__ = "user_quests"
    __table_args__ = (UniqueConstraint("user_id", "quest_id", name="uq_user_quests_user_quest"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="in_progress")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Badge definition. Rarity 'private' binds it to exactly one quest."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, server_default="common")
    quest_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("quests.id"), nullable=True)
    record_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RECORD_ACTIVE)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserAchievement(Base):
    """Grant record. UNIQUE(user_id, achievement_id) prevents double grants."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("achievements.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="joined")


class ExperienceLedger(Base):
    """Immutable experience transaction log with idempotency key."""

    __tablename__ = "experience_ledger"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
