"""create_contacts_core

Revision ID: core_001
Revises:
Create Date: 2026-01-05 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.execute("""
        CREATE TABLE IF NOT EXISTS contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id TEXT NOT NULL,
            email TEXT NOT NULL,
            display_name TEXT,
            organization TEXT,
            domain TEXT NOT NULL DEFAULT '',
            phone_numbers TEXT[] NOT NULL DEFAULT '{}',
            addresses TEXT[] NOT NULL DEFAULT '{}',
            tags TEXT[] NOT NULL DEFAULT '{}',
            source_type TEXT,
            verification_status TEXT NOT NULL DEFAULT 'unverified',
            verification_method TEXT,
            verified_at TIMESTAMPTZ,
            verified_by TEXT,
            confidence_score DOUBLE PRECISION NOT NULL DEFAULT 0.5,
            email_count INTEGER NOT NULL DEFAULT 0,
            first_seen TIMESTAMPTZ NOT NULL DEFAULT now(),
            last_seen TIMESTAMPTZ NOT NULL DEFAULT now(),
            linked_calendar_events TEXT[] NOT NULL DEFAULT '{}',
            linked_family_members TEXT[] NOT NULL DEFAULT '{}',
            extraction_metadata JSONB NOT NULL DEFAULT '{}',
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_contacts_owner_email UNIQUE (owner_id, email),
            CONSTRAINT ck_contacts_email_lower CHECK (email = lower(btrim(email))),
            CONSTRAINT ck_contacts_confidence CHECK (confidence_score BETWEEN 0.0 AND 1.0),
            CONSTRAINT ck_contacts_email_count CHECK (email_count >= 0),
            CONSTRAINT ck_contacts_seen_order CHECK (last_seen >= first_seen),
            CONSTRAINT ck_contacts_source_type CHECK (
                source_type IS NULL OR source_type IN (
                    'coach', 'teacher', 'school_admin', 'team', 'club',
                    'therapist', 'medical', 'vendor', 'other'
                )
            ),
            CONSTRAINT ck_contacts_verification_status CHECK (
                verification_status IN ('unverified', 'pending', 'verified', 'rejected')
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_contacts_owner_domain ON contacts (owner_id, domain)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_contacts_owner_status "
        "ON contacts (owner_id, verification_status)"
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_contacts_tags ON contacts USING GIN (tags)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_sources (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            contact_id UUID NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            provider TEXT NOT NULL,
            external_id TEXT NOT NULL,
            external_resource_name TEXT NOT NULL,
            account_email TEXT NOT NULL,
            etag TEXT,
            sync_direction TEXT NOT NULL DEFAULT 'import',
            metadata JSONB NOT NULL DEFAULT '{}',
            last_synced_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_contact_sources_resource
                UNIQUE (external_resource_name, account_email, provider),
            CONSTRAINT ck_contact_sources_provider CHECK (
                provider IN ('google_contacts', 'microsoft_contacts')
            ),
            CONSTRAINT ck_contact_sources_direction CHECK (
                sync_direction IN ('import', 'export', 'bidirectional')
            )
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_contact_sources_contact ON contact_sources (contact_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_sync_state (
            owner_id TEXT NOT NULL,
            account_email TEXT NOT NULL,
            sync_token TEXT,
            last_full_sync_at TIMESTAMPTZ,
            last_incremental_sync_at TIMESTAMPTZ,
            sync_status TEXT NOT NULL DEFAULT 'never_synced',
            error_message TEXT,
            lease_acquired_at TIMESTAMPTZ,
            lease_id UUID,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (owner_id, account_email),
            CONSTRAINT ck_contact_sync_state_status CHECK (
                sync_status IN ('never_synced', 'syncing', 'completed', 'failed')
            )
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_verification_queue (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id TEXT NOT NULL,
            contact_id UUID NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            suggested_type TEXT,
            suggested_tags TEXT[] NOT NULL DEFAULT '{}',
            reasoning TEXT,
            confidence DOUBLE PRECISION,
            sample_email_ids TEXT[] NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'pending',
            user_action_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_contact_verification_queue_status CHECK (
                status IN ('pending', 'approved', 'rejected', 'modified')
            ),
            CONSTRAINT ck_contact_verification_queue_confidence CHECK (
                confidence IS NULL OR confidence BETWEEN 0.0 AND 1.0
            )
        )
    """)
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_contact_verification_queue_open "
        "ON contact_verification_queue (contact_id) WHERE status = 'pending'"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_contact_verification_queue_owner_status "
        "ON contact_verification_queue (owner_id, status, created_at DESC)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS contact_verification_queue")
    op.execute("DROP TABLE IF EXISTS contact_sync_state")
    op.execute("DROP TABLE IF EXISTS contact_sources")
    op.execute("DROP TABLE IF EXISTS contacts")
