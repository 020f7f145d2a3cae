"""Tests for batch generation through the local-stub LLM provider.

The testing config routes every call to ``local-stub``, which returns a
deterministic bilingual draft and a quality score of 78.
"""

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.ai import AIUsageLog
from app.models.demand_queue import DemandQueueItem
from app.models.innovation import Challenge, Event
from app.services import batch_generation_service, demand_queue_service


class _FailingGenerator:
    def generate(self, item, plan, *, user="system"):
        return {"draft": None, "error": "AI generation failed: provider down"}


class _UnscoredAssessor:
    def assess(self, entity_type, draft, **kwargs):
        return {"quality_score": None, "strengths": [], "issues": [],
                "recommendation": None, "error": "AI response did not contain a quality_score"}


class TestRunBatch:
    def test_generates_and_links_entities(self, plan):
        demand_queue_service.materialize_gaps(plan.id, {"challenges": 2})
        result = batch_generation_service.run_batch(plan.id, "challenge", batch_size=5)

        assert result["total"] == 2
        assert result["completed"] == 2
        assert result["failed"] == 0
        for outcome in result["items"]:
            assert outcome["status"] == "review"
            assert outcome["quality_score"] == 78
            entity = db.session.get(Challenge, outcome["entity_id"])
            assert entity.is_ai_generated is True
            assert entity.strategic_plan_id == plan.id
            assert entity.queue_item_id == outcome["item_id"]
            assert entity.title_en.startswith("Challenge for")

    def test_auto_approve_respects_min_score(self, plan, make_item):
        make_item(plan, "event")
        make_item(plan, "event")
        accepted = batch_generation_service.run_batch(
            plan.id, "event", batch_size=1, auto_approve=True, min_quality_score=70,
        )
        held = batch_generation_service.run_batch(
            plan.id, "event", batch_size=1, auto_approve=True, min_quality_score=90,
        )
        assert accepted["items"][0]["status"] == "accepted"
        assert held["items"][0]["status"] == "review"
        assert Event.query.count() == 2

    def test_usage_is_logged_per_call(self, plan, make_item):
        make_item(plan)
        batch_generation_service.run_batch(plan.id, batch_size=1)
        purposes = sorted(log.purpose for log in AIUsageLog.query.all())
        assert purposes == ["entity_generator", "quality_assessor"]

    def test_batch_size_bounds_claims(self, plan, make_item):
        for _ in range(4):
            make_item(plan)
        result = batch_generation_service.run_batch(plan.id, batch_size=3)
        assert result["total"] == 3
        assert DemandQueueItem.query.filter_by(status="pending").count() == 1

    def test_failure_returns_item_to_pending(self, plan, make_item):
        item = make_item(plan)
        result = batch_generation_service.run_batch(
            plan.id, batch_size=5, generator=_FailingGenerator(),
            assessor=_UnscoredAssessor(),
        )
        assert result["total"] == 1
        assert result["failed"] == 1
        refreshed = demand_queue_service.get_item(item.id)
        assert refreshed.status == "pending"
        assert refreshed.attempts == 1
        assert "provider down" in refreshed.quality_feedback["error"]
        assert Challenge.query.count() == 0

    def test_unscored_draft_goes_to_review(self, plan, make_item):
        make_item(plan)
        from app.ai import get_gateway, get_prompt_registry
        from app.ai.assistants import EntityGenerator

        generator = EntityGenerator(gateway=get_gateway(), prompt_registry=get_prompt_registry())
        result = batch_generation_service.run_batch(
            plan.id, auto_approve=True, min_quality_score=0,
            generator=generator, assessor=_UnscoredAssessor(),
        )
        outcome = result["items"][0]
        assert outcome["quality_score"] == 0
        item = demand_queue_service.get_item(outcome["item_id"])
        assert item.status == "review"
        assert "assessment_error" in item.quality_feedback

    def test_missing_assessor_template_sends_draft_to_review(self, plan, make_item):
        item = make_item(plan)
        from app.ai import get_gateway
        from app.ai.assistants import QualityAssessor
        from app.ai.prompt_registry import PromptRegistry

        registry = PromptRegistry()
        registry._templates.pop("quality_assessor")
        result = batch_generation_service.run_batch(
            plan.id, auto_approve=True,
            assessor=QualityAssessor(gateway=get_gateway(), prompt_registry=registry),
        )
        assert result["failed"] == 0
        refreshed = demand_queue_service.get_item(item.id)
        assert refreshed.status == "review"
        assert "template not found" in refreshed.quality_feedback["assessment_error"]
        assert db.session.get(Challenge, refreshed.generated_entity_id) is not None

    def test_empty_queue(self, plan):
        assert batch_generation_service.run_batch(plan.id)["total"] == 0

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"batch_size": 21}, {"min_quality_score": 101}])
    def test_validation(self, plan, kwargs):
        with pytest.raises(ValidationError):
            batch_generation_service.run_batch(plan.id, **kwargs)

    def test_unknown_plan(self):
        with pytest.raises(NotFoundError):
            batch_generation_service.run_batch(999)
