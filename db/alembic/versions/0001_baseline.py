"""Baseline -- chat sessions, messages, project files and builds.

Revision ID: 0001_baseline
Revises: None
Create Date: 2026-10-17

Idempotent (IF NOT EXISTS everywhere) so it is safe on a database that
already carries the chat tables.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # -- chat sessions ---------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS chat_sessions (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id         UUID NOT NULL,
            name            VARCHAR(255) NOT NULL DEFAULT 'Untitled',
            framework       VARCHAR(20) NOT NULL DEFAULT 'paper',
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_chat_sessions_user_id ON chat_sessions(user_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS chat_messages (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id      UUID NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
            role            VARCHAR(20) NOT NULL,
            content         TEXT NOT NULL,
            model_id        VARCHAR(100),
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id, created_at)"
    )

    # -- project files -----------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS project_files (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id      UUID NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
            path            TEXT NOT NULL,
            name            VARCHAR(255) NOT NULL,
            content         TEXT NOT NULL DEFAULT '',
            is_folder       BOOLEAN NOT NULL DEFAULT false,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (session_id, path)
        )
    """)

    # -- builds ------------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS builds (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id          UUID NOT NULL REFERENCES chat_sessions(id) ON DELETE CASCADE,
            user_id             UUID NOT NULL,
            status              VARCHAR(20) NOT NULL DEFAULT 'planning',
            user_request        TEXT NOT NULL,
            model_id            VARCHAR(100),
            framework           VARCHAR(20) NOT NULL DEFAULT 'paper',
            plan                JSONB,
            plan_approved       BOOLEAN NOT NULL DEFAULT FALSE,
            phases              JSONB NOT NULL DEFAULT '[]'::jsonb,
            file_memory         JSONB NOT NULL DEFAULT '{}'::jsonb,
            summary             TEXT,
            error               TEXT,
            thinking_message    TEXT,
            current_phase_index INTEGER NOT NULL DEFAULT 0,
            current_file_index  INTEGER NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at        TIMESTAMPTZ,
            CONSTRAINT builds_status_check CHECK (status IN (
                'planning', 'awaiting-approval', 'building', 'reviewing',
                'complete', 'error', 'cancelled'
            ))
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_builds_session_created ON builds(session_id, created_at DESC)"
    )
    # At most one non-terminal build per session.
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_builds_one_active_per_session
            ON builds(session_id)
         WHERE status IN ('planning', 'awaiting-approval', 'building', 'reviewing')
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS builds CASCADE")
    op.execute("DROP TABLE IF EXISTS project_files CASCADE")
    op.execute("DROP TABLE IF EXISTS chat_messages CASCADE")
    op.execute("DROP TABLE IF EXISTS chat_sessions CASCADE")
