"""API tests for /api/v1/strategic-plans and /api/v1/gap-analysis."""

from app.models.demand_queue import DemandQueueItem


def _create_plan(client, **overrides):
    payload = {
        "name_en": "Innovation Strategy 2030",
        "name_ar": "استراتيجية الابتكار 2030",
        "start_year": 2026,
        "end_year": 2030,
        "objectives": [
            {"title_en": "Digital services", "weight": 50},
            {"title_en": "Mobility", "weight": 50},
        ],
    }
    payload.update(overrides)
    res = client.post("/api/v1/strategic-plans", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestPlanCrud:
    def test_create_fills_defaults(self, client):
        plan = _create_plan(client)
        assert plan["status"] == "draft"
        assert [o["id"] for o in plan["objectives"]] == ["obj-1", "obj-2"]
        assert plan["cascade_config"]["challenges_per_objective"] == 5
        assert plan["version_number"] == 1

    def test_create_requires_name(self, client):
        res = client.post("/api/v1/strategic-plans", json={"name_ar": "خطة"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_negative_weight_is_422(self, client):
        res = client.post("/api/v1/strategic-plans", json={
            "name_en": "Bad", "objectives": [{"title_en": "x", "weight": -1}],
        })
        assert res.status_code == 422
        assert "weight" in res.get_json()["error"]

    def test_negative_ratio_is_422(self, client):
        res = client.post("/api/v1/strategic-plans", json={
            "name_en": "Bad", "cascade_config": {"events_per_objective": -2},
        })
        assert res.status_code == 422

    def test_non_json_body_is_415(self, client):
        res = client.post("/api/v1/strategic-plans", data="name_en=x",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415

    def test_list_body_is_400(self, client):
        res = client.post("/api/v1/strategic-plans", json=[{"name_en": "x"}])
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_list_and_get(self, client):
        created = _create_plan(client)
        listing = client.get("/api/v1/strategic-plans").get_json()
        assert listing["total"] == 1
        res = client.get(f"/api/v1/strategic-plans/{created['id']}")
        assert res.get_json()["name_en"] == "Innovation Strategy 2030"

    def test_list_rejects_unknown_status(self, client):
        assert client.get("/api/v1/strategic-plans?status=bogus").status_code == 400

    def test_get_missing_is_404(self, client):
        res = client.get("/api/v1/strategic-plans/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_bumps_version_on_objective_change(self, client):
        plan = _create_plan(client)
        res = client.put(f"/api/v1/strategic-plans/{plan['id']}", json={"description_en": "Updated"})
        assert res.get_json()["version_number"] == 1
        res = client.put(f"/api/v1/strategic-plans/{plan['id']}", json={
            "cascade_config": {"events_per_objective": 4},
        })
        assert res.status_code == 200
        assert res.get_json()["version_number"] == 2

    def test_delete_removes_queue(self, client):
        plan = _create_plan(client)
        client.post(f"/api/v1/gap-analysis/{plan['id']}/generate-queue", json={"limit": 3})
        res = client.delete(f"/api/v1/strategic-plans/{plan['id']}")
        assert res.status_code == 200
        assert DemandQueueItem.query.count() == 0


class TestLifecycle:
    def test_submit_queues_action_plans(self, client):
        plan = _create_plan(client, action_plans=[
            {"name_en": "Hackathon", "type": "event", "priority": "high",
             "objective_index": 0, "should_create_entity": True},
            {"name_en": "Memo", "type": "event", "should_create_entity": False},
        ])
        res = client.post(f"/api/v1/strategic-plans/{plan['id']}/submit", headers={"X-User": "planner"})
        body = res.get_json()
        assert res.status_code == 200
        assert body["plan"]["status"] == "pending"
        assert body["plan"]["submitted_by"] == "planner"
        assert len(body["queued_items"]) == 1
        assert body["queued_items"][0]["priority_score"] == 100

    def test_submit_twice_is_409(self, client):
        plan = _create_plan(client)
        client.post(f"/api/v1/strategic-plans/{plan['id']}/submit")
        res = client.post(f"/api/v1/strategic-plans/{plan['id']}/submit")
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "pending"

    def test_duplicate(self, client):
        plan = _create_plan(client)
        res = client.post(f"/api/v1/strategic-plans/{plan['id']}/duplicate")
        copy = res.get_json()
        assert res.status_code == 201
        assert copy["id"] != plan["id"]
        assert copy["status"] == "draft"
        assert copy["objectives"] == plan["objectives"]


class TestGapAnalysisApi:
    def test_standard_report(self, client):
        plan = _create_plan(client)
        res = client.post("/api/v1/gap-analysis", json={"strategic_plan_id": plan["id"]})
        report = res.get_json()
        assert res.status_code == 200
        assert report["gaps"]["priority_order"] == ["challenges", "events", "campaigns"]
        assert len(report["objectives"]) == 2

    def test_comprehensive_report(self, client):
        plan = _create_plan(client)
        res = client.post("/api/v1/gap-analysis", json={
            "strategic_plan_id": plan["id"], "analysis_depth": "comprehensive",
        })
        assert res.status_code == 200
        assert res.get_json()["recommendations"]

    def test_requires_plan_id(self, client):
        res = client.post("/api/v1/gap-analysis", json={})
        assert res.status_code == 400

    def test_bad_depth(self, client):
        plan = _create_plan(client)
        res = client.post("/api/v1/gap-analysis", json={
            "strategic_plan_id": plan["id"], "analysis_depth": "deep",
        })
        assert res.status_code == 400

    def test_unknown_plan_is_404(self, client):
        res = client.post("/api/v1/gap-analysis", json={"strategic_plan_id": 777})
        assert res.status_code == 404

    def test_generate_queue(self, client):
        plan = _create_plan(client)
        res = client.post(f"/api/v1/gap-analysis/{plan['id']}/generate-queue", json={"limit": 7})
        body = res.get_json()
        assert res.status_code == 201
        assert body["created_count"] == 7
        assert body["items"][0]["entity_type"] == "challenge"

    def test_generate_queue_default_limit(self, client):
        plan = _create_plan(client)
        res = client.post(f"/api/v1/gap-analysis/{plan['id']}/generate-queue", json={})
        assert res.get_json()["created_count"] == 20

    def test_generate_queue_bad_limit(self, client):
        plan = _create_plan(client)
        res = client.post(f"/api/v1/gap-analysis/{plan['id']}/generate-queue", json={"limit": 0})
        assert res.status_code == 400
