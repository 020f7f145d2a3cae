"""
Municipal Innovation Strategy Platform
Strategic planning models.

Models:
    - StrategicPlan: multi-year municipal innovation strategy.
      Objectives, cascade ratios and wizard action plans are stored as
      JSON on the plan row (they are edited together through one form).
"""

from datetime import datetime, timezone

from app.models import db

# ── Shared constants ─────────────────────────────────────────────────────

PLAN_STATUSES = {"draft", "pending", "approved", "active", "archived"}

# Named cascade ratios and their defaults.
DEFAULT_CASCADE_CONFIG = {
    "challenges_per_objective": 5,
    "pilots_per_challenge": 2,
    "campaigns_per_objective": 2,
    "events_per_objective": 3,
}

ACTION_PLAN_PRIORITIES = {"high", "medium", "low"}


class StrategicPlan(db.Model):
    """
    A strategic plan owned by a municipality's strategy office.

    ``objectives`` is an ordered list of
    ``{"id", "title_en", "title_ar", "weight"}`` dicts. It may be empty
    while the plan is still being drafted.
    """

    __tablename__ = "strategic_plans"

    id = db.Column(db.Integer, primary_key=True)
    name_en = db.Column(db.String(255), nullable=False)
    name_ar = db.Column(db.String(255), default="")
    description_en = db.Column(db.Text, default="")
    description_ar = db.Column(db.Text, default="")
    start_year = db.Column(db.Integer, nullable=True)
    end_year = db.Column(db.Integer, nullable=True)
    status = db.Column(
        db.String(20),
        default="draft",
        nullable=False,
        comment="draft | pending | approved | active | archived",
    )
    objectives = db.Column(db.JSON, nullable=False, default=list)
    cascade_config = db.Column(db.JSON, nullable=False, default=dict)
    action_plans = db.Column(db.JSON, nullable=False, default=list)
    version_number = db.Column(db.Integer, default=1)

    created_by = db.Column(db.String(150), default="")
    submitted_by = db.Column(db.String(150), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships
    queue_items = db.relationship(
        "DemandQueueItem", backref="strategic_plan", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def effective_cascade_config(self) -> dict:
        """Cascade ratios with defaults filled in for missing keys."""
        from app.services.cascade import resolve_cascade_config

        return resolve_cascade_config(self.cascade_config)

    def to_dict(self):
        return {
            "id": self.id,
            "name_en": self.name_en,
            "name_ar": self.name_ar,
            "description_en": self.description_en,
            "description_ar": self.description_ar,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "status": self.status,
            "objectives": list(self.objectives or []),
            "cascade_config": self.effective_cascade_config,
            "action_plans": list(self.action_plans or []),
            "version_number": self.version_number,
            "created_by": self.created_by,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StrategicPlan {self.id}: {self.name_en}>"
