"""API tests for /api/v1/demand-queue."""

import pytest


@pytest.fixture()
def queued(client, plan):
    """Plan with 20 gap items materialised through the API."""
    res = client.post(f"/api/v1/gap-analysis/{plan.id}/generate-queue", json={"limit": 20})
    assert res.status_code == 201
    return plan


class TestListing:
    def test_list_ordered(self, client, queued):
        items = client.get(f"/api/v1/demand-queue?plan_id={queued.id}").get_json()["items"]
        scores = [i["priority_score"] for i in items]
        assert scores == sorted(scores, reverse=True)
        assert len(items) == 20

    def test_list_requires_plan(self, client):
        res = client.get("/api/v1/demand-queue")
        assert res.status_code == 400

    def test_list_unknown_plan(self, client):
        assert client.get("/api/v1/demand-queue?plan_id=999").status_code == 404

    def test_stats(self, client, queued):
        stats = client.get(f"/api/v1/demand-queue/stats?plan_id={queued.id}").get_json()
        assert stats["total"] == 20
        assert stats["pending"] == 20
        assert stats["by_type"]["challenge"]["pending"] == 10


class TestBatchInsert:
    def test_insert(self, client, plan):
        res = client.post("/api/v1/demand-queue", json={
            "strategic_plan_id": plan.id,
            "items": [
                {"entity_type": "solution", "priority_score": 75,
                 "prefilled_spec": {"title_en": "Smart meters"}},
                {"entity_type": "pilot"},
            ],
        })
        body = res.get_json()
        assert res.status_code == 201
        assert body["created_count"] == 2
        assert body["items"][0]["title"] == "Smart meters"
        assert body["items"][1]["generator_component"] == "StrategyToPilotGenerator"

    def test_insert_unknown_type_is_422(self, client, plan):
        res = client.post("/api/v1/demand-queue", json={
            "strategic_plan_id": plan.id, "items": [{"entity_type": "widget"}],
        })
        assert res.status_code == 422

    def test_insert_requires_items(self, client, plan):
        res = client.post("/api/v1/demand-queue", json={"strategic_plan_id": plan.id, "items": []})
        assert res.status_code == 400


class TestPatch:
    def test_status_update(self, client, plan, make_item):
        item = make_item(plan)
        res = client.patch(f"/api/v1/demand-queue/{item.id}", json={"status": "in_progress"})
        assert res.status_code == 200
        assert res.get_json()["last_attempt_at"] is not None

    def test_unknown_status_is_422(self, client, plan, make_item):
        item = make_item(plan)
        res = client.patch(f"/api/v1/demand-queue/{item.id}", json={"status": "finished"})
        assert res.status_code == 422

    @pytest.mark.parametrize("score,expected", [(70, "accepted"), (69, "review")])
    def test_completion(self, client, plan, make_item, score, expected):
        item = make_item(plan, status="in_progress")
        res = client.patch(f"/api/v1/demand-queue/{item.id}", json={
            "generated_entity_id": 12, "generated_entity_type": "challenge", "quality_score": score,
        })
        body = res.get_json()
        assert body["status"] == expected
        assert body["attempts"] == 1

    def test_completion_score_out_of_range(self, client, plan, make_item):
        item = make_item(plan, status="in_progress")
        res = client.patch(f"/api/v1/demand-queue/{item.id}", json={
            "generated_entity_id": 12, "quality_score": 120,
        })
        assert res.status_code == 422

    def test_empty_patch(self, client, plan, make_item):
        item = make_item(plan)
        assert client.patch(f"/api/v1/demand-queue/{item.id}", json={}).status_code == 400

    def test_missing_item(self, client):
        assert client.patch("/api/v1/demand-queue/404", json={"status": "skipped"}).status_code == 404


class TestDeletion:
    def test_delete_item(self, client, plan, make_item):
        item = make_item(plan)
        assert client.delete(f"/api/v1/demand-queue/{item.id}").status_code == 200
        assert client.delete(f"/api/v1/demand-queue/{item.id}").status_code == 404

    def test_clear_pending(self, client, queued, make_item):
        make_item(queued, status="accepted")
        res = client.delete(f"/api/v1/demand-queue?plan_id={queued.id}&status=pending")
        assert res.get_json()["deleted"] == 20
        remaining = client.get(f"/api/v1/demand-queue?plan_id={queued.id}").get_json()
        assert remaining["total"] == 1

    def test_clear_only_pending(self, client, plan):
        res = client.delete(f"/api/v1/demand-queue?plan_id={plan.id}&status=accepted")
        assert res.status_code == 400


class TestClaiming:
    def test_next_claims_highest_priority(self, client, queued):
        res = client.post("/api/v1/demand-queue/next", json={
            "strategic_plan_id": queued.id, "entity_type": "challenge",
        })
        item = res.get_json()["item"]
        assert item["status"] == "in_progress"
        assert item["entity_type"] == "challenge"

    def test_next_empty(self, client, plan):
        res = client.post("/api/v1/demand-queue/next", json={"strategic_plan_id": plan.id})
        assert res.status_code == 200
        assert res.get_json()["item"] is None

    def test_claim_conflict_and_release(self, client, plan, make_item):
        item = make_item(plan)
        assert client.post(f"/api/v1/demand-queue/{item.id}/claim").status_code == 200
        res = client.post(f"/api/v1/demand-queue/{item.id}/claim")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
        res = client.post(f"/api/v1/demand-queue/{item.id}/release")
        assert res.get_json()["status"] == "pending"


class TestReview:
    def test_review_flow(self, client, plan, make_item):
        item = make_item(plan, status="review")
        listing = client.get(f"/api/v1/demand-queue/review?plan_id={plan.id}").get_json()
        assert listing["count"] == 1

        res = client.post(f"/api/v1/demand-queue/{item.id}/review",
                          json={"decision": "rejected", "reason": "Too vague"},
                          headers={"X-User": "reviewer-1"})
        assert res.status_code == 200
        feedback = res.get_json()["quality_feedback"]
        assert feedback["rejection_reason"] == "Too vague"
        assert feedback["reviewed_by"] == "reviewer-1"

        summary = client.get(f"/api/v1/demand-queue/rejections?plan_id={plan.id}").get_json()
        assert summary["total_rejected"] == 1
        assert summary["by_type"]["challenge"]["rejected"] == 1

    def test_reject_requires_reason(self, client, plan, make_item):
        item = make_item(plan, status="review")
        res = client.post(f"/api/v1/demand-queue/{item.id}/review", json={"decision": "rejected"})
        assert res.status_code == 400

    def test_review_non_review_item_is_409(self, client, plan, make_item):
        item = make_item(plan)
        res = client.post(f"/api/v1/demand-queue/{item.id}/review", json={"decision": "accepted"})
        assert res.status_code == 409


class TestBatch:
    def test_batch_endpoint(self, client, queued):
        res = client.post("/api/v1/demand-queue/batch", json={
            "strategic_plan_id": queued.id, "entity_type": "event",
            "batch_size": 2, "auto_approve": True,
        })
        body = res.get_json()
        assert res.status_code == 200
        assert body["completed"] == 2
        assert {i["status"] for i in body["items"]} == {"accepted"}

    def test_batch_size_limit(self, client, queued):
        res = client.post("/api/v1/demand-queue/batch", json={
            "strategic_plan_id": queued.id, "batch_size": 50,
        })
        assert res.status_code == 422
