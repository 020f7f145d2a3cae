"""Health endpoints and app-level error handlers."""


def test_ready(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 200
    assert res.get_json() == {"status": "ok"}


def test_live_reports_database(client, plan, make_item):
    make_item(plan)
    res = client.get("/api/v1/health/live")
    body = res.get_json()
    assert res.status_code == 200
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["strategic_plans_rows"] == 1
    assert body["checks"]["database"]["demand_queue_rows"] == 1
    assert body["checks"]["ai"]["default_model"] == "local-stub"


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nothing-here")
    assert res.status_code == 404
    assert "error" in res.get_json()


def test_wrong_method_is_405(client):
    res = client.put("/api/v1/health/ready")
    assert res.status_code == 405
