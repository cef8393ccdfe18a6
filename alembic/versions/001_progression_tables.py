"""Quest progression schema.

Creates the directory tables (users, cities, organization_types,
categories), quests with their category links and participations,
achievements with their grants, and the experience ledger.

Revision ID: 001_progression_tables
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Directory ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            first_name VARCHAR(128) NOT NULL DEFAULT '',
            last_name VARCHAR(128) NOT NULL DEFAULT '',
            email VARCHAR(320) UNIQUE,
            level INTEGER NOT NULL DEFAULT 1,
            experience BIGINT NOT NULL DEFAULT 0,
            record_status VARCHAR(16) NOT NULL DEFAULT 'active',
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS cities (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            latitude NUMERIC(10, 7),
            longitude NUMERIC(10, 7),
            record_status VARCHAR(16) NOT NULL DEFAULT 'active'
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS organization_types (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            record_status VARCHAR(16) NOT NULL DEFAULT 'active'
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            record_status VARCHAR(16) NOT NULL DEFAULT 'active'
        )
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            experience_reward INTEGER NOT NULL DEFAULT 0 CHECK (experience_reward >= 0),
            achievement_id BIGINT,
            owner_id BIGINT NOT NULL REFERENCES users(id),
            city_id INTEGER REFERENCES cities(id),
            organization_type_id INTEGER REFERENCES organization_types(id),
            latitude NUMERIC(10, 7),
            longitude NUMERIC(10, 7),
            address TEXT,
            contacts JSONB,
            cover_image TEXT,
            gallery JSONB,
            steps JSONB,
            record_status VARCHAR(16) NOT NULL DEFAULT 'active',
            version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quests_status
        ON quests(status) WHERE record_status = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quests_city
        ON quests(city_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_categories (
            id BIGSERIAL PRIMARY KEY,
            quest_id BIGINT NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            category_id INTEGER NOT NULL REFERENCES categories(id),
            CONSTRAINT uq_quest_categories_pair UNIQUE (quest_id, category_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_quests (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id BIGINT NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'in_progress',
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            CONSTRAINT uq_user_quests_user_quest UNIQUE (user_id, quest_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_quests_user
        ON user_quests(user_id)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            icon VARCHAR(255),
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            quest_id BIGINT REFERENCES quests(id),
            record_status VARCHAR(16) NOT NULL DEFAULT 'active',
            created_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        ALTER TABLE quests
        ADD CONSTRAINT fk_quests_achievement
        FOREIGN KEY (achievement_id) REFERENCES achievements(id) ON DELETE SET NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id BIGINT NOT NULL REFERENCES achievements(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_achievements_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Experience Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS experience_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            idempotency_key VARCHAR(256) NOT NULL UNIQUE,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_experience_ledger_user
        ON experience_ledger(user_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS experience_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("ALTER TABLE IF EXISTS quests DROP CONSTRAINT IF EXISTS fk_quests_achievement")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS user_quests CASCADE")
    op.execute("DROP TABLE IF EXISTS quest_categories CASCADE")
    op.execute("DROP TABLE IF EXISTS quests CASCADE")
    op.execute("DROP TABLE IF EXISTS categories CASCADE")
    op.execute("DROP TABLE IF EXISTS organization_types CASCADE")
    op.execute("DROP TABLE IF EXISTS cities CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
