"""001 – Initial schema: employees, leave history, leave-year settings, rollover runs.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-01-06 09:00:00.000000+07:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "employee_rank",
        ["KAKANIM", "KASUBBAG", "KASI", "KU", "KASUBSI", "JFT", "JFU", "P3K", "CPNS"],
    ),
    ("transaction_kind", ["accrual", "consumption"]),
    ("rollover_operation", ["advance", "revert_previous", "revert_next"]),
    ("rollover_strategy", ["bulk", "batched"]),
    ("rollover_status", ["running", "completed", "failed", "aborted", "resolved"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                       UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_number          VARCHAR(50)  NOT NULL UNIQUE,
            name                     VARCHAR(255) NOT NULL,
            rank                     employee_rank NOT NULL,
            department               VARCHAR(255),
            prior_year_balance       INTEGER NOT NULL DEFAULT 0,
            current_year_balance     INTEGER NOT NULL DEFAULT 0,
            two_years_ago_balance    INTEGER NOT NULL DEFAULT 0,
            next_year_backup_balance INTEGER,
            leave_year               INTEGER NOT NULL,
            version                  INTEGER NOT NULL DEFAULT 1,
            created_at               TIMESTAMPTZ DEFAULT NOW(),
            updated_at               TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_employees_prior_year_non_negative
                CHECK (prior_year_balance >= 0),
            CONSTRAINT ck_employees_current_year_non_negative
                CHECK (current_year_balance >= 0),
            CONSTRAINT ck_employees_two_years_ago_non_negative
                CHECK (two_years_ago_balance >= 0)
        )
    """)
    op.execute("CREATE INDEX ix_employees_leave_year ON employees(leave_year)")
    op.execute("CREATE INDEX ix_employees_name_lower ON employees(LOWER(name))")

    # ── 2. leave_transactions (append-only) ───────────────────────────────
    op.execute("""
        CREATE TABLE leave_transactions (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id            UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            kind                   transaction_kind NOT NULL,
            days                   INTEGER NOT NULL,
            start_date             DATE,
            end_date               DATE,
            reason                 TEXT NOT NULL,
            prior_year_delta       INTEGER NOT NULL,
            current_year_delta     INTEGER NOT NULL,
            cancels_transaction_id UUID REFERENCES leave_transactions(id) ON DELETE CASCADE,
            admin_id               UUID NOT NULL,
            submitted_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_transactions_days_positive CHECK (days > 0),
            CONSTRAINT ck_leave_transactions_range_ordered
                CHECK (end_date IS NULL OR start_date IS NULL OR end_date >= start_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_transactions_employee_submitted
            ON leave_transactions(employee_id, submitted_at)
    """)
    op.execute("""
        CREATE INDEX ix_leave_transactions_range
            ON leave_transactions(kind, start_date, end_date)
    """)
    op.execute("""
        CREATE INDEX ix_leave_transactions_cancels
            ON leave_transactions(cancels_transaction_id)
            WHERE cancels_transaction_id IS NOT NULL
    """)

    # ── 3. leave_year_settings ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_year_settings (
            id            INTEGER PRIMARY KEY,
            current_year  INTEGER NOT NULL,
            previous_year INTEGER,
            updated_at    TIMESTAMPTZ,
            updated_by    UUID
        )
    """)

    # ── 4. rollover_runs ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE rollover_runs (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            settings_id          INTEGER NOT NULL REFERENCES leave_year_settings(id),
            operation            rollover_operation NOT NULL,
            strategy             rollover_strategy NOT NULL,
            status               rollover_status NOT NULL,
            from_year            INTEGER NOT NULL,
            to_year              INTEGER NOT NULL,
            target_previous_year INTEGER,
            updated_employee_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
            cursor               UUID,
            error                TEXT,
            started_by           UUID,
            started_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            finished_at          TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX ix_rollover_runs_status ON rollover_runs(status)")

    # ── Seed data ─────────────────────────────────────────────────────────
    op.execute("""
        INSERT INTO leave_year_settings (id, current_year)
        VALUES (1, EXTRACT(YEAR FROM NOW() AT TIME ZONE 'Asia/Jakarta')::INTEGER)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "rollover_runs",
        "leave_year_settings",
        "leave_transactions",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
