"""Tests for the demand queue service.

Covers:
    - ordering (priority desc, id asc) and empty / unknown plans
    - gap materialisation: one item per unit, priority formula, objective spread
    - atomic claiming, lost races, release
    - update_status / complete_item threshold (70 inclusive) and attempts
    - failure recording, delete, clear pending, stats
    - review decisions and rejection summary
    - action plan enqueueing on submit
"""

from unittest.mock import patch

import pytest

from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models import db
from app.models.demand_queue import DemandQueueItem
from app.services import demand_queue_service as dqs


class TestListing:
    def test_priority_desc_then_id(self, plan, make_item):
        low = make_item(plan, priority_score=10)
        high_a = make_item(plan, priority_score=90)
        high_b = make_item(plan, priority_score=90)
        assert [i.id for i in dqs.list_items(plan.id)] == [high_a.id, high_b.id, low.id]

    def test_empty_plan_is_empty_list(self, plan):
        assert dqs.list_items(plan.id) == []

    def test_unknown_plan(self):
        with pytest.raises(NotFoundError):
            dqs.list_items(4242)

    def test_filters(self, plan, make_item):
        make_item(plan, "challenge")
        make_item(plan, "event", status="review")
        assert [i.entity_type for i in dqs.list_items(plan.id, status="review")] == ["event"]
        assert len(dqs.list_items(plan.id, entity_type="challenge")) == 1

    def test_get_next_pending(self, plan, make_item):
        make_item(plan, "challenge", priority_score=10)
        best = make_item(plan, "challenge", priority_score=80)
        make_item(plan, "event", priority_score=99)
        assert dqs.get_next_pending(plan.id, "challenge").id == best.id
        assert dqs.get_next_pending(plan.id, "pilot") is None


class TestMaterialize:
    def test_one_item_per_unit(self, plan):
        created = dqs.materialize_gaps(plan.id, {"challenges": 3, "events": 2, "pilots": 0})
        assert len(created) == 5
        assert {i.entity_type for i in created} == {"challenge", "event"}
        assert all(i.status == "pending" and i.attempts == 0 for i in created)

    def test_larger_gap_sorts_first(self, plan):
        dqs.materialize_gaps(plan.id, {"challenges": 3, "events": 2})
        ordered = dqs.list_items(plan.id)
        assert [i.entity_type for i in ordered[:3]] == ["challenge"] * 3

    def test_priority_formula_and_objective_spread(self, plan):
        created = dqs.materialize_gaps(plan.id, {"challenges": 2})
        # heaviest objective (weight 60) first, bonus 99; weight 40 -> round(66)
        assert [i.objective_id for i in created] == ["obj-1", "obj-2"]
        assert [i.priority_score for i in created] == [299, 266]

    def test_no_objectives_means_no_bonus(self, make_plan):
        bare = make_plan(objectives=[])
        created = dqs.materialize_gaps(bare.id, {"events": 2})
        assert {i.priority_score for i in created} == {200}
        assert created[0].objective_id is None

    def test_prefilled_spec_is_bilingual(self, plan):
        item = dqs.materialize_gaps(plan.id, {"campaign": 1})[0]
        spec = item.prefilled_spec
        assert spec["title_en"].startswith("Campaign for")
        assert spec["title_ar"]
        assert spec["ai_context"]["objective_id"] == "obj-1"
        assert item.generator_component == "StrategyToCampaignGenerator"

    def test_limit(self, plan):
        assert len(dqs.materialize_gaps(plan.id, {"challenges": 10}, limit=4)) == 4

    def test_rejects_negative_and_unknown(self, plan):
        with pytest.raises(ValidationError):
            dqs.materialize_gaps(plan.id, {"challenges": -1})
        with pytest.raises(ValidationError):
            dqs.materialize_gaps(plan.id, {"widgets": 1})


class TestClaiming:
    def test_claim_next_marks_in_progress(self, plan, make_item):
        item = make_item(plan)
        claimed = dqs.claim_next(plan.id, "challenge")
        assert claimed.id == item.id
        assert claimed.status == "in_progress"
        assert claimed.last_attempt_at is not None

    def test_claim_next_never_hands_out_twice(self, plan, make_item):
        make_item(plan)
        first = dqs.claim_next(plan.id, "challenge")
        second = dqs.claim_next(plan.id, "challenge")
        assert first is not None
        assert second is None

    def test_empty_queue_writes_nothing(self, plan, make_item):
        item = make_item(plan, "event", status="accepted")
        assert dqs.claim_next(plan.id, "event") is None
        db.session.refresh(item)
        assert item.status == "accepted"

    def test_lost_race_moves_to_next_candidate(self, plan, make_item, monkeypatch):
        top = make_item(plan, priority_score=90)
        runner_up = make_item(plan, priority_score=50)
        real = dqs._conditional_transition

        def _contended(item_id, from_status, to_status, **values):
            if item_id == top.id:
                # another consumer claims it between our select and update
                real(item_id, from_status, to_status, **values)
                return False
            return real(item_id, from_status, to_status, **values)

        monkeypatch.setattr(dqs, "_conditional_transition", _contended)
        claimed = dqs.claim_next(plan.id, "challenge")
        assert claimed.id == runner_up.id

    def test_exclude_ids(self, plan, make_item):
        top = make_item(plan, priority_score=90)
        other = make_item(plan, priority_score=10)
        assert dqs.claim_next(plan.id, None, exclude_ids=[top.id]).id == other.id

    def test_claim_item_conflict(self, plan, make_item):
        item = make_item(plan)
        dqs.claim_item(item.id)
        with pytest.raises(StateConflictError) as exc:
            dqs.claim_item(item.id)
        assert exc.value.current_status == "in_progress"

    def test_release(self, plan, make_item):
        item = make_item(plan)
        dqs.claim_item(item.id)
        assert dqs.release_item(item.id).status == "pending"
        with pytest.raises(StateConflictError):
            dqs.release_item(item.id)


class TestStatusAndCompletion:
    def test_update_status_stamps_attempt_time(self, plan, make_item):
        item = make_item(plan)
        updated = dqs.update_status(item.id, "in_progress")
        assert updated.last_attempt_at is not None

    def test_update_status_rejects_unknown(self, plan, make_item):
        item = make_item(plan)
        with pytest.raises(ValidationError):
            dqs.update_status(item.id, "done")

    @pytest.mark.parametrize("score,expected", [(70, "accepted"), (69, "review"), (100, "accepted"), (0, "review")])
    def test_threshold(self, plan, make_item, score, expected):
        item = make_item(plan, status="in_progress")
        done = dqs.complete_item(item.id, 11, "challenge", score)
        assert done.status == expected
        assert done.attempts == 1
        assert done.generated_entity_id == 11
        assert done.quality_score == score

    def test_score_out_of_range(self, plan, make_item):
        item = make_item(plan, status="in_progress")
        with pytest.raises(ValidationError):
            dqs.complete_item(item.id, 1, "challenge", 101)
        with pytest.raises(ValidationError):
            dqs.complete_item(item.id, 1, "challenge", -1)

    def test_auto_accept_off_goes_to_review(self, plan, make_item):
        item = make_item(plan, status="in_progress")
        assert dqs.complete_item(item.id, 1, "challenge", 95, auto_accept=False).status == "review"

    def test_configured_threshold(self, app, plan, make_item):
        item = make_item(plan, status="in_progress")
        app.config["QUALITY_ACCEPT_THRESHOLD"] = 90
        try:
            assert dqs.complete_item(item.id, 1, "challenge", 80).status == "review"
        finally:
            app.config["QUALITY_ACCEPT_THRESHOLD"] = 70

    def test_record_failure(self, plan, make_item):
        item = make_item(plan, status="in_progress")
        failed = dqs.record_failure(item.id, "model timeout")
        assert failed.status == "pending"
        assert failed.attempts == 1
        assert failed.quality_feedback["error"] == "model timeout"
        assert "failed_at" in failed.quality_feedback


class TestDeletion:
    def test_delete_item(self, plan, make_item):
        item = make_item(plan)
        dqs.delete_item(item.id)
        assert db.session.get(DemandQueueItem, item.id) is None
        with pytest.raises(NotFoundError):
            dqs.delete_item(item.id)

    def test_clear_pending_keeps_other_statuses(self, plan, make_item):
        make_item(plan)
        make_item(plan, "event")
        kept = make_item(plan, status="accepted")
        assert dqs.clear_pending(plan.id) == 2
        assert [i.id for i in dqs.list_items(plan.id)] == [kept.id]

    def test_clear_pending_idempotent(self, plan, make_item):
        make_item(plan)
        dqs.clear_pending(plan.id)
        assert dqs.clear_pending(plan.id) == 0

    def test_plan_delete_cascades(self, plan, make_item):
        make_item(plan)
        db.session.delete(plan)
        db.session.commit()
        assert DemandQueueItem.query.count() == 0


class TestStats:
    def test_counts(self, plan, make_item):
        make_item(plan)
        make_item(plan, status="in_progress")
        make_item(plan, "event", status="accepted")
        make_item(plan, "event", status="review")
        make_item(plan, "event", status="skipped")
        stats = dqs.queue_stats(plan.id)
        assert stats["total"] == 5
        assert stats["pending"] == 1
        assert stats["in_progress"] == 1
        assert stats["completed"] == 1
        assert stats["review"] == 1
        assert stats["skipped"] == 1
        assert stats["by_type"]["event"]["total"] == 3


class TestReview:
    def test_review_listing_and_count(self, plan, make_item):
        make_item(plan, status="review")
        make_item(plan)
        assert dqs.review_count(plan.id) == 1
        assert len(dqs.list_review_items(plan.id)) == 1

    def test_accept(self, plan, make_item):
        item = make_item(plan, status="review", quality_feedback={"issues": ["x"]})
        decided = dqs.decide_review(item.id, "accepted", reviewer="analyst")
        assert decided.status == "accepted"
        assert decided.quality_feedback["issues"] == ["x"]
        assert decided.quality_feedback["reviewed_by"] == "analyst"

    def test_reject_records_reason(self, plan, make_item):
        item = make_item(plan, status="review")
        decided = dqs.decide_review(item.id, "rejected", reason="Off-strategy")
        assert decided.status == "rejected"
        assert decided.quality_feedback["rejection_reason"] == "Off-strategy"

    def test_only_review_items(self, plan, make_item):
        item = make_item(plan)
        with pytest.raises(StateConflictError):
            dqs.decide_review(item.id, "accepted")

    def test_rejection_summary(self, plan, make_item):
        make_item(plan, status="rejected", quality_feedback={"rejection_reason": "dup", "timestamp": "2026-01-02"})
        make_item(plan, "event", status="skipped", quality_feedback={"skip_reason": "later", "timestamp": "2026-01-03"})
        make_item(plan, status="accepted")
        summary = dqs.rejection_summary(plan.id)
        assert summary["total_rejected"] == 1
        assert summary["total_skipped"] == 1
        assert summary["rejection_rate_pct"] == 50
        assert [r["reason"] for r in summary["recent"]] == ["later", "dup"]

    def test_rejection_summary_reads_queue_once(self, plan, make_item):
        make_item(plan, status="rejected", quality_feedback={"rejection_reason": "dup"})
        make_item(plan, status="review")
        with patch.object(dqs, "list_items", wraps=dqs.list_items) as spy:
            summary = dqs.rejection_summary(plan.id)
        assert spy.call_count == 1
        assert summary["rejection_rate_pct"] == 50


class TestActionPlans:
    def test_enqueue_flagged_action_plans(self, make_plan):
        plan = make_plan(action_plans=[
            {"name_en": "Hackathon", "type": "event", "priority": "high",
             "objective_index": 1, "should_create_entity": True},
            {"name_en": "Accelerator", "type": "program", "should_create_entity": True},
            {"name_en": "Report", "type": "event", "should_create_entity": False},
            {"name_en": "Unknown", "type": "report", "should_create_entity": True},
        ])
        created = dqs.enqueue_action_plans(plan)
        assert [i.entity_type for i in created] == ["event", "program"]
        assert [i.priority_score for i in created] == [100, 60]
        assert created[0].objective_id == "obj-2"
        assert created[0].prefilled_spec["title_en"] == "Hackathon"
        assert created[1].generator_component == "StrategyToProgramGenerator"
