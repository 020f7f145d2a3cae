"""
Municipal Innovation Strategy Platform
Innovation entity models - the things a strategic plan cascades into.

Models:
    - Challenge: municipal problem statement open for solutions
    - Pilot: time-boxed trial of a solution against a challenge
    - Campaign: citizen / stakeholder engagement campaign
    - Event: workshop, hackathon, exhibition, etc.
    - InnovationProgram: accelerator / incubation program
    - Solution: provider offering that may address a challenge

All of them share PlanLinkedMixin (plan linkage, bilingual text, soft delete).
Rows with ``deleted_at`` set are excluded from cascade counts.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from app.models import db

ENTITY_STATUSES = {"draft", "submitted", "approved", "active", "completed", "archived"}


class PlanLinkedMixin:
    """Columns and helpers shared by every plan-linked innovation entity."""

    id = db.Column(db.Integer, primary_key=True)
    objective_id = db.Column(db.String(64), nullable=True, comment="Objective id inside the plan JSON")
    title_en = db.Column(db.String(255), nullable=False)
    title_ar = db.Column(db.String(255), default="")
    description_en = db.Column(db.Text, default="")
    description_ar = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="draft", nullable=False)
    is_ai_generated = db.Column(db.Boolean, default=False)
    queue_item_id = db.Column(db.Integer, nullable=True, comment="Demand queue item that produced this row")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    @declared_attr
    def strategic_plan_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey("strategic_plans.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        )

    # ── Soft delete

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        self.deleted_at = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))

    def _base_dict(self):
        return {
            "id": self.id,
            "entity_type": self.ENTITY_TYPE,
            "strategic_plan_id": self.strategic_plan_id,
            "objective_id": self.objective_id,
            "title_en": self.title_en,
            "title_ar": self.title_ar,
            "description_en": self.description_en,
            "description_ar": self.description_ar,
            "status": self.status,
            "is_ai_generated": self.is_ai_generated,
            "queue_item_id": self.queue_item_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def to_dict(self):
        return self._base_dict()

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: {self.title_en}>"


class Challenge(PlanLinkedMixin, db.Model):
    """Municipal challenge (problem statement)."""

    __tablename__ = "challenges"
    ENTITY_TYPE = "challenge"

    sector = db.Column(db.String(100), default="")

    def to_dict(self):
        result = self._base_dict()
        result["sector"] = self.sector
        return result


class Pilot(PlanLinkedMixin, db.Model):
    """Pilot trial, optionally tied to the challenge it tests against."""

    __tablename__ = "pilots"
    ENTITY_TYPE = "pilot"

    challenge_id = db.Column(
        db.Integer, db.ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True,
    )
    duration_weeks = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        result = self._base_dict()
        result["challenge_id"] = self.challenge_id
        result["duration_weeks"] = self.duration_weeks
        return result


class Campaign(PlanLinkedMixin, db.Model):
    __tablename__ = "campaigns"
    ENTITY_TYPE = "campaign"

    channel = db.Column(db.String(50), default="", comment="email | social | on_site | mixed")

    def to_dict(self):
        result = self._base_dict()
        result["channel"] = self.channel
        return result


class Event(PlanLinkedMixin, db.Model):
    __tablename__ = "events"
    ENTITY_TYPE = "event"

    event_type = db.Column(db.String(50), default="workshop")
    start_date = db.Column(db.Date, nullable=True)

    def to_dict(self):
        result = self._base_dict()
        result["event_type"] = self.event_type
        result["start_date"] = self.start_date.isoformat() if self.start_date else None
        return result


class InnovationProgram(PlanLinkedMixin, db.Model):
    __tablename__ = "innovation_programs"
    ENTITY_TYPE = "program"


class Solution(PlanLinkedMixin, db.Model):
    __tablename__ = "solutions"
    ENTITY_TYPE = "solution"

    provider_name = db.Column(db.String(255), default="")
    maturity_level = db.Column(db.String(30), default="prototype")

    def to_dict(self):
        result = self._base_dict()
        result["provider_name"] = self.provider_name
        result["maturity_level"] = self.maturity_level
        return result


# entity_type string → model class
ENTITY_MODELS = {
    model.ENTITY_TYPE: model
    for model in (Challenge, Pilot, Campaign, Event, InnovationProgram, Solution)
}

# Optional per-type columns accepted on create/update
ENTITY_EXTRA_FIELDS = {
    "challenge": ("sector",),
    "pilot": ("challenge_id", "duration_weeks"),
    "campaign": ("channel",),
    "event": ("event_type", "start_date"),
    "program": (),
    "solution": ("provider_name", "maturity_level"),
}
