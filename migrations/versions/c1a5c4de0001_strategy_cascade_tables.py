"""strategy_cascade_tables

Creates the strategy cascade schema:
  - strategic_plans      - plans with objectives / cascade ratios / action plans as JSON
  - challenges, pilots, campaigns, events, innovation_programs, solutions
                         - plan-linked innovation entities (soft delete)
  - demand_queue         - per-plan backlog of entity generation tasks
  - ai_usage_logs        - LLM gateway token / cost records

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: c1a5c4de0001
Revises:
Create Date: 2026-10-19 09:12:44.518302
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'c1a5c4de0001'
down_revision = None
branch_labels = None
depends_on = None


_ENTITY_TABLES = {
    "challenges": [
        sa.Column("sector", sa.String(100), nullable=True),
    ],
    "pilots": [
        sa.Column("challenge_id", sa.Integer(),
                  sa.ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True),
        sa.Column("duration_weeks", sa.Integer(), nullable=True),
    ],
    "campaigns": [
        sa.Column("channel", sa.String(50), nullable=True,
                  comment="email | social | on_site | mixed"),
    ],
    "events": [
        sa.Column("event_type", sa.String(50), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
    ],
    "innovation_programs": [],
    "solutions": [
        sa.Column("provider_name", sa.String(255), nullable=True),
        sa.Column("maturity_level", sa.String(30), nullable=True),
    ],
}


def _entity_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("strategic_plan_id", sa.Integer(),
                  sa.ForeignKey("strategic_plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("objective_id", sa.String(64), nullable=True,
                  comment="Objective id inside the plan JSON"),
        sa.Column("title_en", sa.String(255), nullable=False),
        sa.Column("title_ar", sa.String(255), nullable=True),
        sa.Column("description_en", sa.Text(), nullable=True),
        sa.Column("description_ar", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("is_ai_generated", sa.Boolean(), nullable=True),
        sa.Column("queue_item_id", sa.Integer(), nullable=True,
                  comment="Demand queue item that produced this row"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── StrategicPlan ─────────────────────────────────────────────────────
    if "strategic_plans" not in existing:
        op.create_table(
            "strategic_plans",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name_en", sa.String(255), nullable=False),
            sa.Column("name_ar", sa.String(255), nullable=True),
            sa.Column("description_en", sa.Text(), nullable=True),
            sa.Column("description_ar", sa.Text(), nullable=True),
            sa.Column("start_year", sa.Integer(), nullable=True),
            sa.Column("end_year", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="draft",
                      comment="draft | pending | approved | active | archived"),
            sa.Column("objectives", sa.JSON(), nullable=False),
            sa.Column("cascade_config", sa.JSON(), nullable=False),
            sa.Column("action_plans", sa.JSON(), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            sa.Column("submitted_by", sa.String(150), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )

    # ── Innovation entities ───────────────────────────────────────────────
    for table, extra in _ENTITY_TABLES.items():
        if table in existing:
            continue
        op.create_table(table, *_entity_columns(), *extra)
        op.create_index(f"ix_{table}_strategic_plan_id", table, ["strategic_plan_id"])
        op.create_index(f"ix_{table}_deleted_at", table, ["deleted_at"])

    # ── DemandQueueItem ───────────────────────────────────────────────────
    if "demand_queue" not in existing:
        op.create_table(
            "demand_queue",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("strategic_plan_id", sa.Integer(),
                      sa.ForeignKey("strategic_plans.id", ondelete="CASCADE"), nullable=False),
            sa.Column("objective_id", sa.String(64), nullable=True),
            sa.Column("entity_type", sa.String(30), nullable=False,
                      comment="challenge | pilot | solution | program | event | campaign"),
            sa.Column("generator_component", sa.String(80), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending",
                      comment="pending | in_progress | accepted | review | rejected | skipped"),
            sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("prefilled_spec", sa.JSON(), nullable=False),
            sa.Column("generated_entity_id", sa.Integer(), nullable=True),
            sa.Column("generated_entity_type", sa.String(30), nullable=True),
            sa.Column("quality_score", sa.Integer(), nullable=True, comment="0-100"),
            sa.Column("quality_feedback", sa.JSON(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_demand_queue_strategic_plan_id", "demand_queue", ["strategic_plan_id"])
        op.create_index(
            "ix_demand_queue_plan_type_status", "demand_queue",
            ["strategic_plan_id", "entity_type", "status"],
        )

    # ── AIUsageLog ────────────────────────────────────────────────────────
    if "ai_usage_logs" not in existing:
        op.create_table(
            "ai_usage_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(30), nullable=False,
                      comment="anthropic / openai / gemini / local"),
            sa.Column("model", sa.String(80), nullable=False),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("total_tokens", sa.Integer(), nullable=True),
            sa.Column("cost_usd", sa.Float(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("user", sa.String(150), nullable=True),
            sa.Column("purpose", sa.String(100), nullable=True,
                      comment="e.g. entity_generator, quality_assessor"),
            sa.Column("strategic_plan_id", sa.Integer(),
                      sa.ForeignKey("strategic_plans.id", ondelete="SET NULL"), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )


def downgrade():
    op.drop_table("ai_usage_logs")
    op.drop_index("ix_demand_queue_plan_type_status", table_name="demand_queue")
    op.drop_index("ix_demand_queue_strategic_plan_id", table_name="demand_queue")
    op.drop_table("demand_queue")
    # pilots references challenges; drop in reverse creation order
    for table in reversed(list(_ENTITY_TABLES)):
        op.drop_index(f"ix_{table}_deleted_at", table_name=table)
        op.drop_index(f"ix_{table}_strategic_plan_id", table_name=table)
        op.drop_table(table)
    op.drop_table("strategic_plans")
