def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Moonlit Scheduling API is running"}
    assert client.get("/health").json() == {"status": "healthy"}


def test_security_headers_on_api_routes(client, db):
    response = client.get("/api/payers")
    assert response.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'none'" in response.headers["Content-Security-Policy"]
    assert response.headers["Cache-Control"].startswith("no-store")


def test_health_is_excluded_from_security_headers(client):
    response = client.get("/health")
    assert "Content-Security-Policy" not in response.headers


def test_validation_errors_use_error_envelope(client, db):
    response = client.post("/api/patient-booking/book", json={"provider_id": "p"})
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "INVALID_REQUEST"
    fields = {tuple(error["loc"])[-1] for error in detail["errors"]}
    assert {"payer_id", "start"} <= fields
