"""App-level wiring: health endpoints and the JSON error envelope."""


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_root_names_the_site(client):
    assert "BX Library" in client.get("/").json()["message"]


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_request_validation_is_400_with_field_details(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email", "password": "x"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "email"
