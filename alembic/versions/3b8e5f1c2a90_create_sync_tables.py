"""create sync tables (jobs, charges, flows, subscriptions, intimacoes, notifications)

Revision ID: 3b8e5f1c2a90
Revises:
Create Date: 2026-10-19 10:12:44.318201
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "3b8e5f1c2a90"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)

    if not insp.has_table("plans"):
        op.create_table(
            "plans",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("monthly_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("annual_price", sa.Numeric(12, 2), nullable=True),
        )

    if not insp.has_table("companies"):
        op.create_table(
            "companies",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id", ondelete="SET NULL"), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=True),
            sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("grace_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("subscription_cadence", sa.String(length=16), nullable=True),
        )

    if not insp.has_table("financial_flows"):
        op.create_table(
            "financial_flows",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pendente"),
            sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True),
            sa.Column("client_id", sa.Integer(), nullable=True),
        )
        op.create_index("ix_financial_flows_company_id", "financial_flows", ["company_id"])
        op.create_index("ix_financial_flows_client_id", "financial_flows", ["client_id"])

    if not insp.has_table("asaas_charges"):
        op.create_table(
            "asaas_charges",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("asaas_id", sa.String(length=64), nullable=False),
            sa.Column(
                "financial_flow_id",
                sa.Integer(),
                sa.ForeignKey("financial_flows.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("status", sa.String(length=64), nullable=False),
            sa.Column("extra", _json(), nullable=False, server_default=sa.text("'{}'")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_asaas_charges_asaas_id", "asaas_charges", ["asaas_id"], unique=True)
        op.create_index("ix_asaas_charges_financial_flow_id", "asaas_charges", ["financial_flow_id"])
        op.create_index("ix_asaas_charges_status", "asaas_charges", ["status"])

    if not insp.has_table("intimacoes"):
        op.create_table(
            "intimacoes",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("origem", sa.String(length=32), nullable=False),
            sa.Column("external_id", sa.String(length=255), nullable=False),
            sa.Column("numero_processo", sa.String(length=64), nullable=True),
            sa.Column("orgao", sa.Text(), nullable=True),
            sa.Column("assunto", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=128), nullable=True),
            sa.Column("prazo", sa.DateTime(timezone=True), nullable=True),
            sa.Column("recebida_em", sa.DateTime(timezone=True), nullable=True),
            sa.Column("fonte_criada_em", sa.DateTime(timezone=True), nullable=True),
            sa.Column("fonte_atualizada_em", sa.DateTime(timezone=True), nullable=True),
            sa.Column("payload", _json(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("origem", "external_id", name="uq_intimacoes_origem_external_id"),
        )
        op.create_index("ix_intimacoes_numero_processo", "intimacoes", ["numero_processo"])

    if not insp.has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(length=128), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("category", sa.String(length=64), nullable=False),
            sa.Column("type", sa.String(length=16), nullable=False, server_default="info"),
            sa.Column("extra", _json(), nullable=True),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_category", "notifications", ["category"])

    if not insp.has_table("sync_job_status"):
        op.create_table(
            "sync_job_status",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("job_name", sa.String(length=128), nullable=False),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("running", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("current_run_id", sa.Integer(), nullable=True),
            sa.Column("interval_ms", sa.BigInteger(), nullable=True),
            sa.Column("lookback_ms", sa.BigInteger(), nullable=True),
            sa.Column("overlap_ms", sa.BigInteger(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_error_message", sa.Text(), nullable=True),
            sa.Column("last_result", _json(), nullable=True),
            sa.Column("last_reference_used", sa.DateTime(timezone=True), nullable=True),
            sa.Column("next_reference", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_manual_trigger_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_sync_job_status_job_name", "sync_job_status", ["job_name"], unique=True)

    if not insp.has_table("sync_job_runs"):
        op.create_table(
            "sync_job_runs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("job_name", sa.String(length=128), nullable=False),
            sa.Column("manual", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("reference_used", sa.DateTime(timezone=True), nullable=True),
            sa.Column("next_reference", sa.DateTime(timezone=True), nullable=True),
            sa.Column("result", _json(), nullable=True),
        )
        op.create_index("ix_sync_job_runs_job_name", "sync_job_runs", ["job_name"])


def downgrade() -> None:
    op.drop_table("sync_job_runs")
    op.drop_table("sync_job_status")
    op.drop_table("notifications")
    op.drop_table("intimacoes")
    op.drop_table("asaas_charges")
    op.drop_table("financial_flows")
    op.drop_table("companies")
    op.drop_table("plans")
