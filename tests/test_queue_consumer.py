"""Tests for the queue consumer state machine (idle / loaded)."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.demand_queue import DemandQueueItem
from app.services.queue_consumer import ConsumerSession, QueueConsumer


class TestLoading:
    def test_starts_idle(self, plan):
        consumer = QueueConsumer(plan.id)
        assert consumer.state == "idle"
        assert consumer.current_item is None

    def test_load_next_claims(self, plan, make_item):
        item = make_item(plan, priority_score=80)
        make_item(plan, priority_score=20)
        consumer = QueueConsumer(plan.id)
        loaded = consumer.load_next("challenge", auto_mode=True)
        assert loaded.id == item.id
        assert consumer.state == "loaded"
        assert consumer.session.auto_mode is True
        assert db.session.get(DemandQueueItem, item.id).status == "in_progress"

    def test_empty_queue_goes_idle_and_leaves_auto_mode(self, plan):
        consumer = QueueConsumer(plan.id, session=ConsumerSession(strategic_plan_id=plan.id, auto_mode=True))
        assert consumer.load_next("pilot") is None
        assert consumer.state == "idle"
        assert consumer.session.auto_mode is False

    def test_cannot_load_twice(self, plan, make_item):
        make_item(plan)
        make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        with pytest.raises(ValidationError):
            consumer.load_next("challenge")

    def test_two_consumers_never_share_an_item(self, plan, make_item):
        make_item(plan)
        first, second = QueueConsumer(plan.id), QueueConsumer(plan.id)
        assert first.load_next("challenge") is not None
        assert second.load_next("challenge") is None


class TestOutcomes:
    def test_complete(self, plan, make_item):
        item = make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        done = consumer.complete(entity_id=5, quality_score=70)
        assert done.id == item.id
        assert done.status == "accepted"
        assert done.generated_entity_type == "challenge"
        assert consumer.state == "idle"

    def test_complete_and_load_next(self, plan, make_item):
        first = make_item(plan, priority_score=90)
        second = make_item(plan, priority_score=10)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        completed, next_item = consumer.complete_and_load_next(entity_id=3, quality_score=40)
        assert completed.id == first.id
        assert completed.status == "review"
        assert next_item.id == second.id
        assert consumer.session.current_item_id == second.id
        assert consumer.session.auto_mode is True

    def test_complete_and_load_next_on_drained_queue(self, plan, make_item):
        make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge", auto_mode=True)
        _, next_item = consumer.complete_and_load_next(entity_id=3, quality_score=90)
        assert next_item is None
        assert consumer.state == "idle"
        assert consumer.session.auto_mode is False

    def test_skip_preserves_row(self, plan, make_item):
        item = make_item(plan, quality_feedback={"note": "kept"})
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        skipped = consumer.skip("Not this quarter")
        assert skipped.status == "skipped"
        assert skipped.quality_feedback["skip_reason"] == "Not this quarter"
        assert skipped.quality_feedback["note"] == "kept"
        assert "timestamp" in skipped.quality_feedback
        assert db.session.get(DemandQueueItem, item.id) is not None
        assert consumer.state == "idle"

    def test_reject(self, plan, make_item):
        make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        rejected = consumer.reject("Duplicate of existing challenge")
        assert rejected.status == "rejected"
        assert rejected.quality_feedback["rejection_reason"] == "Duplicate of existing challenge"

    @pytest.mark.parametrize("operation", ["skip", "reject"])
    def test_requires_loaded_item(self, plan, operation):
        with pytest.raises(ValidationError):
            getattr(QueueConsumer(plan.id), operation)("x")

    def test_complete_requires_loaded_item(self, plan):
        with pytest.raises(ValidationError):
            QueueConsumer(plan.id).complete(entity_id=1, quality_score=80)


class TestExitAndFailures:
    def test_exit_leaves_row_in_progress(self, plan, make_item):
        item = make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge", auto_mode=True)
        consumer.exit_auto_mode()
        assert consumer.state == "idle"
        assert consumer.session.auto_mode is False
        assert db.session.get(DemandQueueItem, item.id).status == "in_progress"

    def test_exit_with_release(self, plan, make_item):
        item = make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        consumer.exit_auto_mode(release=True)
        assert db.session.get(DemandQueueItem, item.id).status == "pending"

    def test_store_failure_keeps_local_state(self, plan, make_item):
        make_item(plan)
        consumer = QueueConsumer(plan.id)
        consumer.load_next("challenge")
        before = consumer.session

        with patch(
            "app.services.queue_consumer.demand_queue_service.complete_item",
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
        ):
            with pytest.raises(OperationalError):
                consumer.complete(entity_id=1, quality_score=90)
        assert consumer.session == before
        assert consumer.state == "loaded"

    def test_session_to_dict(self, plan):
        session = ConsumerSession(strategic_plan_id=plan.id, entity_type="event", current_item_id=4)
        assert session.to_dict()["state"] == "loaded"
