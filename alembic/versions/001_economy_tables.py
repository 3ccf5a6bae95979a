"""Economy and progression tables.

Creates accounts, ledger_entries, achievement_definitions, user_achievements,
gift_items, group_gifts, group_gift_contributions, gift_transactions,
user_inventory, weekly_bonus_claims, daily_challenges, notification_outbox
and idempotency_records.

Revision ID: 001_economy_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_economy_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts & Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGINT PRIMARY KEY,
            balance BIGINT NOT NULL DEFAULT 0,
            xp_total BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_accounts_balance_non_negative CHECK (balance >= 0),
            CONSTRAINT ck_accounts_xp_non_negative CHECK (xp_total >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS ledger_entries (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            kind VARCHAR(8) NOT NULL,
            amount BIGINT NOT NULL,
            reason VARCHAR(64) NOT NULL,
            reference VARCHAR(128),
            metadata JSONB DEFAULT '{}',
            balance_after BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_ledger_entries_account_id
        ON ledger_entries(account_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_ledger_entries_reference
        ON ledger_entries(reference)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_definitions (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL DEFAULT 'general',
            requirements JSONB NOT NULL DEFAULT '{}',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            achievement_id VARCHAR(64) NOT NULL REFERENCES achievement_definitions(id),
            unlocked_at TIMESTAMPTZ,
            progress JSONB DEFAULT '{}',
            CONSTRAINT uq_user_achievements_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)

    # --- Gifts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gift_items (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            coin_price INTEGER NOT NULL,
            multiplier NUMERIC(6, 2) NOT NULL DEFAULT 1,
            grants_inventory BOOLEAN NOT NULL DEFAULT false,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT ck_gift_items_price_non_negative CHECK (coin_price >= 0)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS group_gifts (
            id BIGSERIAL PRIMARY KEY,
            organizer_id BIGINT NOT NULL REFERENCES accounts(id),
            recipient_id BIGINT NOT NULL REFERENCES accounts(id),
            item_id VARCHAR(64) NOT NULL REFERENCES gift_items(id),
            target_amount BIGINT NOT NULL,
            current_amount BIGINT NOT NULL DEFAULT 0,
            deadline TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            group_message TEXT,
            gift_transaction_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            closed_at TIMESTAMPTZ,
            CONSTRAINT ck_group_gifts_amount_bounds
                CHECK (current_amount >= 0 AND current_amount <= target_amount)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_group_gifts_status
        ON group_gifts(status)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS group_gift_contributions (
            id BIGSERIAL PRIMARY KEY,
            group_gift_id BIGINT NOT NULL REFERENCES group_gifts(id) ON DELETE CASCADE,
            contributor_id BIGINT NOT NULL REFERENCES accounts(id),
            amount BIGINT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_group_gift_contributions_group_gift_id
        ON group_gift_contributions(group_gift_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS gift_transactions (
            id BIGSERIAL PRIMARY KEY,
            sender_id BIGINT NOT NULL REFERENCES accounts(id),
            recipient_id BIGINT NOT NULL REFERENCES accounts(id),
            item_id VARCHAR(64) NOT NULL REFERENCES gift_items(id),
            amount_charged BIGINT NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            is_anonymous BOOLEAN NOT NULL DEFAULT false,
            message TEXT,
            funding_source VARCHAR(16) NOT NULL DEFAULT 'balance',
            group_gift_id BIGINT REFERENCES group_gifts(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            resolved_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_gift_transactions_sender_id
        ON gift_transactions(sender_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_gift_transactions_recipient_id
        ON gift_transactions(recipient_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_gift_transactions_status
        ON gift_transactions(status)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_inventory (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            item_id VARCHAR(64) NOT NULL REFERENCES gift_items(id),
            is_active BOOLEAN NOT NULL DEFAULT false,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_inventory_user_item UNIQUE (user_id, item_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS weekly_bonus_claims (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            week_iso VARCHAR(8) NOT NULL,
            amount BIGINT NOT NULL,
            claimed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_weekly_bonus_claims_user_week UNIQUE (user_id, week_iso)
        )
    """)

    # --- Daily challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_challenges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            challenge_day DATE NOT NULL,
            challenge_type VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL,
            current_progress INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            coin_reward INTEGER NOT NULL DEFAULT 0,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_daily_challenges_user_day_type
                UNIQUE (user_id, challenge_day, challenge_type),
            CONSTRAINT ck_daily_challenges_progress_bounds
                CHECK (current_progress >= 0 AND current_progress <= target_value)
        )
    """)

    # --- Notification outbox & idempotency ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_outbox (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            data JSONB DEFAULT '{}',
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            dispatched_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notification_outbox_user_id
        ON notification_outbox(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notification_outbox_pending
        ON notification_outbox(id) WHERE dispatched_at IS NULL
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS idempotency_records (
            id BIGSERIAL PRIMARY KEY,
            operation VARCHAR(64) NOT NULL,
            user_id BIGINT NOT NULL,
            key VARCHAR(128) NOT NULL,
            response JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_idempotency_records_scope UNIQUE (operation, user_id, key)
        )
    """)


def downgrade() -> None:
    for table in [
        "idempotency_records",
        "notification_outbox",
        "daily_challenges",
        "weekly_bonus_claims",
        "user_inventory",
        "gift_transactions",
        "group_gift_contributions",
        "group_gifts",
        "gift_items",
        "user_achievements",
        "achievement_definitions",
        "ledger_entries",
        "accounts",
    ]:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")  # noqa: S608
