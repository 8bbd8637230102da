"""001 – Attendance engine schema: directory, shifts, punches, daily records, workflow.

Revision ID: 001_attendance_engine_schema
Revises:
Create Date: 2026-03-02 10:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "001_attendance_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Enum-like columns are VARCHAR(32) holding the enum value (native_enum=False)

    # ── 1. branches ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE branches (
            id                     UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id        UUID NOT NULL,
            name                   VARCHAR(100) NOT NULL,
            timezone               VARCHAR(50) DEFAULT 'Asia/Kolkata',
            latitude               DOUBLE PRECISION,
            longitude              DOUBLE PRECISION,
            geofence_radius_meters DOUBLE PRECISION DEFAULT 100,
            is_active              BOOLEAN DEFAULT TRUE,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_branch_org_name UNIQUE (organization_id, name)
        )
    """)
    op.execute("CREATE INDEX ix_branches_organization_id ON branches(organization_id)")

    # ── 2. shifts ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE shifts (
            id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id           UUID NOT NULL,
            name                      VARCHAR(100) NOT NULL,
            start_time                TIME NOT NULL,
            end_time                  TIME NOT NULL,
            break_minutes             INTEGER DEFAULT 60,
            grace_minutes             INTEGER DEFAULT 15,
            early_departure_minutes   INTEGER DEFAULT 30,
            half_day_minutes          INTEGER DEFAULT 240,
            full_day_minutes          INTEGER DEFAULT 480,
            is_night_shift            BOOLEAN DEFAULT FALSE,
            weekly_offs               JSONB DEFAULT '[5, 6]'::jsonb,
            overtime_enabled          BOOLEAN DEFAULT TRUE,
            overtime_multiplier       DOUBLE PRECISION DEFAULT 1.5,
            night_overtime_multiplier DOUBLE PRECISION DEFAULT 2.0,
            is_active                 BOOLEAN DEFAULT TRUE,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_shift_org_name UNIQUE (organization_id, name)
        )
    """)
    op.execute("CREATE INDEX ix_shifts_organization_id ON shifts(organization_id)")

    # ── 3. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id      UUID NOT NULL,
            branch_id            UUID REFERENCES branches(id),
            employee_code        VARCHAR(30)  NOT NULL,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100),
            email                VARCHAR(200) NOT NULL,
            role                 VARCHAR(32) DEFAULT 'employee',
            reporting_manager_id UUID REFERENCES employees(id),
            shift_id             UUID REFERENCES shifts(id),
            machine_user_id      VARCHAR(50),
            is_active            BOOLEAN DEFAULT TRUE,
            attendance_enabled   BOOLEAN DEFAULT TRUE,
            geofence_required    BOOLEAN DEFAULT FALSE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_employee_org_code UNIQUE (organization_id, employee_code),
            CONSTRAINT uq_employee_org_machine_user UNIQUE (organization_id, machine_user_id)
        )
    """)
    op.execute("CREATE INDEX ix_employees_org_active ON employees(organization_id, is_active)")

    # ── 4. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL,
            branch_id       UUID REFERENCES branches(id),
            name            VARCHAR(150) NOT NULL,
            date            DATE NOT NULL,
            is_optional     BOOLEAN DEFAULT FALSE,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_holiday_org_branch_date UNIQUE (organization_id, branch_id, date)
        )
    """)
    op.execute("CREATE INDEX ix_holiday_org_date ON holidays(organization_id, date)")

    # ── 5. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL,
            user_id         UUID NOT NULL REFERENCES employees(id),
            leave_type      VARCHAR(50) NOT NULL,
            year            INTEGER NOT NULL,
            allotted        NUMERIC(5, 1) DEFAULT 0,
            used            NUMERIC(5, 1) DEFAULT 0,
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (user_id, leave_type, year)
        )
    """)

    # ── 6. attendance_machines ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_machines (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL,
            branch_id       UUID REFERENCES branches(id),
            name            VARCHAR(100) NOT NULL,
            serial_number   VARCHAR(100),
            provider_type   VARCHAR(32) DEFAULT 'generic',
            api_key         VARCHAR(80) NOT NULL UNIQUE,
            api_secret      VARCHAR(128) NOT NULL,
            auth_mode       VARCHAR(32) DEFAULT 'key',
            ip_address      INET,
            status          VARCHAR(32) DEFAULT 'active',
            last_sync_at    TIMESTAMPTZ,
            sync_count      INTEGER DEFAULT 0,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_attendance_machines_organization_id "
        "ON attendance_machines(organization_id)"
    )

    # ── 7. attendance_requests ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE attendance_requests (
            id                     UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id        UUID NOT NULL,
            user_id                UUID NOT NULL REFERENCES employees(id),
            request_type           VARCHAR(32) NOT NULL,
            sub_type               VARCHAR(32),
            target_date            DATE NOT NULL,
            end_date               DATE,
            leave_type             VARCHAR(50),
            is_half_day            BOOLEAN DEFAULT FALSE,
            days_count             NUMERIC(5, 1),
            balance_before         NUMERIC(5, 1),
            balance_after          NUMERIC(5, 1),
            reversal_of_id         UUID REFERENCES attendance_requests(id),
            new_first_in           TIMESTAMPTZ,
            new_last_out           TIMESTAMPTZ,
            old_first_in           TIMESTAMPTZ,
            old_last_out           TIMESTAMPTZ,
            reason                 TEXT NOT NULL,
            status                 VARCHAR(32) DEFAULT 'pending',
            priority               VARCHAR(32) DEFAULT 'medium',
            source                 VARCHAR(20) DEFAULT 'web',
            approval_required      INTEGER DEFAULT 0,
            current_approver_level INTEGER,
            submitted_at           TIMESTAMPTZ,
            sla_due_at             TIMESTAMPTZ,
            is_overdue             BOOLEAN DEFAULT FALSE,
            response_time_hours    DOUBLE PRECISION,
            linked_attendance_ids  JSONB DEFAULT '[]'::jsonb,
            linked_punch_ids       JSONB DEFAULT '[]'::jsonb,
            decided_at             TIMESTAMPTZ,
            decided_by             UUID,
            rejection_reason       TEXT,
            cancelled_at           TIMESTAMPTZ,
            cancelled_by           UUID,
            cancellation_reason    TEXT,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    # At most one open request per (user, date)
    op.execute("""
        CREATE UNIQUE INDEX uq_request_user_date_open
            ON attendance_requests(user_id, target_date)
            WHERE status IN ('pending', 'under_review')
    """)
    op.execute("CREATE INDEX ix_request_org_status ON attendance_requests(organization_id, status)")
    op.execute("CREATE INDEX ix_request_user_type  ON attendance_requests(user_id, request_type)")

    # ── 8. request_approvers ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE request_approvers (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            request_id      UUID NOT NULL REFERENCES attendance_requests(id) ON DELETE CASCADE,
            approver_id     UUID NOT NULL REFERENCES employees(id),
            role            VARCHAR(30) NOT NULL,
            status          VARCHAR(32) DEFAULT 'pending',
            "order"         INTEGER NOT NULL,
            is_mandatory    BOOLEAN DEFAULT TRUE,
            comments        TEXT,
            forwarded_to_id UUID REFERENCES employees(id),
            acted_at        TIMESTAMPTZ,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_request_approver_pending ON request_approvers(approver_id, status)"
    )

    # ── 9. request_history ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE request_history (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            request_id  UUID NOT NULL REFERENCES attendance_requests(id) ON DELETE CASCADE,
            action      VARCHAR(30) NOT NULL,
            actor_id    UUID,
            remarks     TEXT,
            old_status  VARCHAR(20),
            new_status  VARCHAR(20),
            metadata    JSONB,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_request_history_request ON request_history(request_id, created_at)"
    )

    # ── 10. punch_events (append-only) ────────────────────────────────────
    op.execute("""
        CREATE TABLE punch_events (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id      UUID NOT NULL,
            branch_id            UUID REFERENCES branches(id),
            user_id              UUID REFERENCES employees(id),
            raw_user_id          VARCHAR(50),
            machine_id           UUID REFERENCES attendance_machines(id),
            source               VARCHAR(32) NOT NULL,
            punch_type           VARCHAR(32) NOT NULL,
            timestamp            TIMESTAMPTZ NOT NULL,
            received_at          TIMESTAMPTZ DEFAULT NOW(),
            attributed_date      DATE,
            latitude             DOUBLE PRECISION,
            longitude            DOUBLE PRECISION,
            accuracy             DOUBLE PRECISION,
            distance_from_branch DOUBLE PRECISION,
            location_hash        VARCHAR(64),
            verification_state   VARCHAR(32) DEFAULT 'unverified',
            processing_state     VARCHAR(32) DEFAULT 'pending',
            flag_reason          VARCHAR(50),
            request_id           UUID REFERENCES attendance_requests(id),
            device_id            VARCHAR(100),
            ip_address           INET,
            raw_data             JSONB
        )
    """)
    op.execute("CREATE INDEX ix_punch_user_date    ON punch_events(user_id, attributed_date)")
    op.execute("CREATE INDEX ix_punch_user_type_ts ON punch_events(user_id, punch_type, timestamp)")
    op.execute("CREATE INDEX ix_punch_org_state    ON punch_events(organization_id, processing_state)")
    op.execute("CREATE INDEX ix_punch_request      ON punch_events(request_id)")

    # ── 11. daily_attendance ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE daily_attendance (
            id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id           UUID NOT NULL,
            user_id                   UUID NOT NULL REFERENCES employees(id),
            date                      DATE NOT NULL,
            shift_id                  UUID REFERENCES shifts(id),
            status                    VARCHAR(32),
            first_in                  TIMESTAMPTZ,
            last_out                  TIMESTAMPTZ,
            total_work_minutes        INTEGER DEFAULT 0,
            break_minutes             INTEGER DEFAULT 0,
            net_work_minutes          INTEGER DEFAULT 0,
            overtime_minutes          INTEGER DEFAULT 0,
            is_late                   BOOLEAN DEFAULT FALSE,
            late_by_minutes           INTEGER DEFAULT 0,
            is_early_departure        BOOLEAN DEFAULT FALSE,
            is_half_day               BOOLEAN DEFAULT FALSE,
            is_overtime               BOOLEAN DEFAULT FALSE,
            payout_multiplier         DOUBLE PRECISION DEFAULT 0,
            overtime_multiplier       DOUBLE PRECISION DEFAULT 0,
            holiday_name              VARCHAR(150),
            punch_ids                 JSONB DEFAULT '[]'::jsonb,
            leave_request_id          UUID,
            regularization_request_id UUID,
            is_regularized            BOOLEAN DEFAULT FALSE,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_daily_attendance_user_date UNIQUE (user_id, date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_daily_attendance_org_date ON daily_attendance(organization_id, date)"
    )

    # ── 12. reconciliation_runs ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE reconciliation_runs (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id      UUID NOT NULL,
            target_date          DATE NOT NULL,
            status               VARCHAR(32) DEFAULT 'running',
            triggered_by         VARCHAR(20) DEFAULT 'api',
            actor_id             UUID,
            users_total          INTEGER DEFAULT 0,
            created_count        INTEGER DEFAULT 0,
            updated_count        INTEGER DEFAULT 0,
            unchanged_count      INTEGER DEFAULT 0,
            skipped_count        INTEGER DEFAULT 0,
            failed_count         INTEGER DEFAULT 0,
            failed_user_ids      JSONB DEFAULT '[]'::jsonb,
            orphans_reattributed INTEGER DEFAULT 0,
            overdue_flagged      INTEGER DEFAULT 0,
            started_at           TIMESTAMPTZ DEFAULT NOW(),
            finished_at          TIMESTAMPTZ
        )
    """)
    op.execute(
        "CREATE INDEX ix_reconciliation_org_date "
        "ON reconciliation_runs(organization_id, target_date)"
    )

    # ── 13. notifications ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL,
            recipient_id    UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type            VARCHAR(32) DEFAULT 'info',
            title           VARCHAR(200) NOT NULL,
            message         TEXT NOT NULL,
            action_url      VARCHAR(500),
            entity_type     VARCHAR(50),
            entity_id       UUID,
            is_read         BOOLEAN DEFAULT FALSE,
            read_at         TIMESTAMPTZ,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notification_recipient_read ON notifications(recipient_id, is_read)"
    )

    # ── 14. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL,
            actor_id        UUID,
            action          VARCHAR(50) NOT NULL,
            entity_type     VARCHAR(50) NOT NULL,
            entity_id       UUID NOT NULL,
            old_values      JSONB,
            new_values      JSONB,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_org_action ON audit_trail(organization_id, action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "reconciliation_runs",
        "daily_attendance",
        "punch_events",
        "request_history",
        "request_approvers",
        "attendance_requests",
        "attendance_machines",
        "leave_balances",
        "holidays",
        "employees",
        "shifts",
        "branches",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")
