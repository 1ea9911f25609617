"""Marketplace tables and analytics snapshots.

Creates users, tasks, applications, bookings, chats and messages (read by
the analytics engine) plus analytics_snapshots (written by it).

Revision ID: 001_marketplace_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_marketplace_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Raw SQL with IF NOT EXISTS so partial reruns are safe

    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(36) PRIMARY KEY,
            username VARCHAR(64) NOT NULL UNIQUE,
            email VARCHAR(320) UNIQUE,
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            primary_role VARCHAR(16) NOT NULL DEFAULT 'both',
            credits INTEGER NOT NULL DEFAULT 0,
            rating DOUBLE PRECISION NOT NULL DEFAULT 0,
            total_ratings INTEGER NOT NULL DEFAULT 0,
            completed_tasks INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id VARCHAR(36) PRIMARY KEY,
            title VARCHAR(256) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            task_provider_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            selected_helper_id VARCHAR(36) REFERENCES users(id) ON DELETE SET NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            credits INTEGER NOT NULL DEFAULT 0,
            category VARCHAR(64),
            skills_required JSONB NOT NULL DEFAULT '[]',
            urgency VARCHAR(16),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_provider_created ON tasks (task_provider_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_helper_created ON tasks (selected_helper_id, created_at)")

    # --- Applications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS applications (
            id VARCHAR(36) PRIMARY KEY,
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            applicant_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_provider_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            proposed_credits INTEGER NOT NULL DEFAULT 0,
            message TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_applications_applicant_created ON applications (applicant_id, created_at)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_applications_provider_created ON applications (task_provider_id, created_at)"
    )

    # --- Bookings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS bookings (
            id VARCHAR(36) PRIMARY KEY,
            task_id VARCHAR(36) NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            application_id VARCHAR(36) NOT NULL REFERENCES applications(id) ON DELETE CASCADE,
            helper_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_provider_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            agreed_credits INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'confirmed',
            helper_review JSONB,
            task_provider_review JSONB,
            reviewed_by JSONB NOT NULL DEFAULT '[]',
            deliverables JSONB NOT NULL DEFAULT '{}',
            chat_id VARCHAR(36),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_bookings_helper_created ON bookings (helper_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_bookings_provider_created ON bookings (task_provider_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_bookings_status_completed ON bookings (status, completed_at)")

    # --- Chats and messages ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS chats (
            id VARCHAR(36) PRIMARY KEY,
            task_id VARCHAR(36) REFERENCES tasks(id) ON DELETE SET NULL,
            participants JSONB NOT NULL DEFAULT '[]',
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_chats_participants ON chats USING GIN (participants)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id VARCHAR(36) PRIMARY KEY,
            chat_id VARCHAR(36) NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
            sender_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            content TEXT NOT NULL DEFAULT '',
            read_by JSONB NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_messages_chat_created ON messages (chat_id, created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_messages_sender_created ON messages (sender_id, created_at)")

    # --- Analytics snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS analytics_snapshots (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            period_type VARCHAR(16) NOT NULL,
            time_range VARCHAR(8) NOT NULL,
            period_start TIMESTAMPTZ NOT NULL,
            period_end TIMESTAMPTZ NOT NULL,
            metrics JSONB NOT NULL DEFAULT '{}',
            timeline JSONB NOT NULL DEFAULT '[]',
            insights JSONB NOT NULL DEFAULT '[]',
            benchmarks JSONB NOT NULL DEFAULT '{}',
            cache_version INTEGER NOT NULL DEFAULT 1,
            cache_expires_at TIMESTAMPTZ NOT NULL,
            cache_invalidated BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshots_user_type_start "
        "ON analytics_snapshots (user_id, period_type, period_start)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshots_user_expires ON analytics_snapshots (user_id, cache_expires_at)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshots_invalidated_expires "
        "ON analytics_snapshots (cache_invalidated, cache_expires_at)"
    )


def downgrade() -> None:
    for table in ["analytics_snapshots", "messages", "chats", "bookings", "applications", "tasks", "users"]:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")  # noqa: S608
