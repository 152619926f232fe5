def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["database"] == "ok"


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["message"] == "Route not found: /does-not-exist"


def test_malformed_json_is_400(client, auth):
    r = client.post(
        "/milestones",
        data="{not json",
        content_type="application/json",
        headers=auth("admin"),
    )
    assert r.status_code == 400
    assert r.json["success"] is False


def test_errors_include_stack_outside_production(app, client):
    @app.get("/boom")
    def _boom():
        raise RuntimeError("kaboom")

    r = client.get("/boom")
    assert r.status_code == 500
    assert r.json["message"] == "Server error"
    assert "stack" in r.json


def test_errors_hide_stack_in_production(app, client):
    app.config["ENV"] = "production"

    @app.get("/boom")
    def _boom():
        raise RuntimeError("kaboom")

    r = client.get("/boom")
    assert r.status_code == 500
    assert "stack" not in r.json


def test_cors_allows_configured_origin(client):
    r = client.get("/health", headers={"Origin": "http://localhost:3000"})
    assert r.headers.get("Access-Control-Allow-Origin") == "http://localhost:3000"
    assert r.headers.get("Access-Control-Allow-Credentials") == "true"


def test_index_lists_resources(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "/milestones" in r.json["resources"]
