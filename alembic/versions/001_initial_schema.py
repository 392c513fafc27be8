"""Initial schema: accounts, tokens, parent approvals, links, consents, plans.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Create users table
    op.execute("""
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT UNIQUE,
            first_name TEXT,
            last_name TEXT,
            birthdate DATE,
            role TEXT NOT NULL CHECK (role IN ('Adult', 'Parent', 'Child', 'Admin')),
            is_approved BOOLEAN NOT NULL DEFAULT false,
            setup_stage TEXT CHECK (setup_stage IN ('started', 'plan_selected', 'child_pending', 'completed')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    # Single-use secrets. Only the SHA-256 of a secret is stored.
    # subject_id points at a user, approval or invite depending on kind.
    op.execute("""
        CREATE TABLE tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            kind TEXT NOT NULL CHECK (kind IN ('magic_link', 'approval_link', 'invite_code')),
            secret_hash TEXT NOT NULL UNIQUE,
            subject_id UUID NOT NULL,
            context_id UUID,
            issued_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            consumed_at TIMESTAMPTZ,
            CHECK (expires_at > issued_at)
        );
    """)

    op.execute("""
        CREATE INDEX idx_tokens_subject ON tokens(subject_id);
    """)

    op.execute("""
        CREATE INDEX idx_tokens_expires_at ON tokens(expires_at);
    """)

    # Create parent_approvals table
    op.execute("""
        CREATE TABLE parent_approvals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            child_first_name TEXT NOT NULL,
            child_last_name TEXT NOT NULL,
            child_birthdate DATE NOT NULL,
            child_email TEXT,
            parent_email TEXT NOT NULL,
            context TEXT NOT NULL CHECK (context IN ('invite_flow', 'direct_signup')),
            invite_id UUID,
            cliq_id UUID,
            inviter_id UUID REFERENCES users(id) ON DELETE SET NULL,
            existing_parent_id UUID REFERENCES users(id) ON DELETE SET NULL,
            parent_state_hint TEXT NOT NULL DEFAULT 'new'
                CHECK (parent_state_hint IN ('new', 'existing_parent', 'existing_adult')),
            child_id UUID REFERENCES users(id) ON DELETE SET NULL,
            parent_id UUID REFERENCES users(id) ON DELETE SET NULL,
            token_id UUID REFERENCES tokens(id) ON DELETE SET NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'approved', 'declined', 'expired')),
            parent_state TEXT CHECK (parent_state IN ('started', 'seat_reserved')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            approved_at TIMESTAMPTZ,
            declined_at TIMESTAMPTZ
        );
    """)

    op.execute("""
        CREATE INDEX idx_parent_approvals_parent_email ON parent_approvals(parent_email);
    """)

    op.execute("""
        CREATE INDEX idx_parent_approvals_token ON parent_approvals(token_id);
    """)

    op.execute("""
        CREATE INDEX idx_parent_approvals_parent_state ON parent_approvals(parent_id)
        WHERE parent_state = 'started';
    """)

    # Create parent_links table
    op.execute("""
        CREATE TABLE parent_links (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            parent_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            child_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role TEXT NOT NULL CHECK (role IN ('primary', 'secondary', 'guardian')),
            can_manage_child BOOLEAN NOT NULL DEFAULT false,
            can_change_settings BOOLEAN NOT NULL DEFAULT false,
            can_view_activity BOOLEAN NOT NULL DEFAULT true,
            receives_notifications BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (parent_id, child_id)
        );
    """)

    op.execute("""
        CREATE INDEX idx_parent_links_child ON parent_links(child_id);
    """)

    # Create parent_consents table
    op.execute("""
        CREATE TABLE parent_consents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            parent_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            child_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            red_alert_accepted BOOLEAN NOT NULL,
            silent_monitoring_enabled BOOLEAN NOT NULL DEFAULT false,
            consent_timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
            ip_address TEXT,
            user_agent TEXT,
            UNIQUE (parent_id, child_id)
        );
    """)

    op.execute("""
        CREATE INDEX idx_parent_consents_child ON parent_consents(child_id);
    """)

    # Create plans table. current_members is derived from memberships.
    op.execute("""
        CREATE TABLE plans (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            plan_key TEXT NOT NULL,
            max_members INTEGER NOT NULL CHECK (max_members > 0),
            current_members INTEGER NOT NULL DEFAULT 0 CHECK (current_members >= 0),
            is_group_plan BOOLEAN NOT NULL DEFAULT false,
            billing_cycle TEXT NOT NULL DEFAULT 'monthly' CHECK (billing_cycle IN ('monthly', 'annual')),
            stripe_subscription_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CHECK (current_members <= max_members)
        );
    """)

    # Create memberships table
    op.execute("""
        CREATE TABLE memberships (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            member_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            plan_id UUID NOT NULL REFERENCES plans(id) ON DELETE CASCADE,
            role TEXT NOT NULL CHECK (role IN ('parent', 'child', 'member', 'admin')),
            status TEXT NOT NULL CHECK (status IN ('active', 'pending', 'removed')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (member_id, plan_id)
        );
    """)

    op.execute("""
        CREATE INDEX idx_memberships_plan ON memberships(plan_id) WHERE status = 'active';
    """)


def downgrade():
    op.execute("DROP TABLE IF EXISTS memberships CASCADE;")
    op.execute("DROP TABLE IF EXISTS plans CASCADE;")
    op.execute("DROP TABLE IF EXISTS parent_consents CASCADE;")
    op.execute("DROP TABLE IF EXISTS parent_links CASCADE;")
    op.execute("DROP TABLE IF EXISTS parent_approvals CASCADE;")
    op.execute("DROP TABLE IF EXISTS tokens CASCADE;")
    op.execute("DROP TABLE IF EXISTS users CASCADE;")
