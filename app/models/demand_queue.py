"""
Municipal Innovation Strategy Platform
Demand queue model - backlog of entities a strategic plan still needs.

Lifecycle:
    pending → in_progress → accepted | review
    pending | in_progress → skipped | rejected
    review → accepted | rejected

One row is one unit of required-but-not-yet-created work. Rows are only
physically removed by an explicit delete or the "clear pending" bulk call.
"""

from datetime import datetime, timezone

from app.models import db

# ── Shared constants ─────────────────────────────────────────────────────

QUEUE_STATUSES = {"pending", "in_progress", "accepted", "review", "rejected", "skipped"}

# Statuses whose demand is not yet backed by a generated entity
OPEN_QUEUE_STATUSES = {"pending", "in_progress"}

QUEUE_ENTITY_TYPES = {"challenge", "pilot", "solution", "program", "event", "campaign"}

# Gap-analysis kinds (plural) → queue entity types
KIND_TO_ENTITY_TYPE = {
    "challenges": "challenge",
    "pilots": "pilot",
    "campaigns": "campaign",
    "events": "event",
}

GENERATOR_COMPONENTS = {
    "challenge": "StrategyChallengeGenerator",
    "pilot": "StrategyToPilotGenerator",
    "program": "StrategyToProgramGenerator",
    "campaign": "StrategyToCampaignGenerator",
    "event": "StrategyToEventGenerator",
    "solution": "StrategyToSolutionGenerator",
}

ACTION_PLAN_PRIORITY_SCORES = {"high": 100, "medium": 60, "low": 30}

# Score at or above which a completed generation is accepted without review
QUALITY_ACCEPT_THRESHOLD = 70


class DemandQueueItem(db.Model):
    """A single generation task derived from a plan's coverage gap."""

    __tablename__ = "demand_queue"

    id = db.Column(db.Integer, primary_key=True)
    strategic_plan_id = db.Column(
        db.Integer,
        db.ForeignKey("strategic_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    objective_id = db.Column(db.String(64), nullable=True)
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="challenge | pilot | solution | program | event | campaign",
    )
    generator_component = db.Column(db.String(80), default="")
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | accepted | review | rejected | skipped",
    )
    priority_score = db.Column(db.Integer, nullable=False, default=0)
    prefilled_spec = db.Column(db.JSON, nullable=False, default=dict)

    generated_entity_id = db.Column(db.Integer, nullable=True)
    generated_entity_type = db.Column(db.String(30), nullable=True)
    quality_score = db.Column(db.Integer, nullable=True, comment="0-100")
    quality_feedback = db.Column(db.JSON, nullable=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(150), default="")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_demand_queue_plan_type_status", "strategic_plan_id", "entity_type", "status"),
    )

    @property
    def title(self) -> str:
        spec = self.prefilled_spec or {}
        return spec.get("title_en") or spec.get("name_en") or f"{self.entity_type} item"

    def to_dict(self):
        return {
            "id": self.id,
            "strategic_plan_id": self.strategic_plan_id,
            "objective_id": self.objective_id,
            "entity_type": self.entity_type,
            "generator_component": self.generator_component,
            "status": self.status,
            "priority_score": self.priority_score,
            "prefilled_spec": dict(self.prefilled_spec or {}),
            "title": self.title,
            "generated_entity_id": self.generated_entity_id,
            "generated_entity_type": self.generated_entity_type,
            "quality_score": self.quality_score,
            "quality_feedback": self.quality_feedback,
            "attempts": self.attempts,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DemandQueueItem {self.id}: {self.entity_type} [{self.status}]>"
