def test_register_login_and_me(client):
    response = client.post("/api/auth/register", json={
        "name": "Asha", "email": "asha@example.com", "password": "s3cret-pass",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == "user"
    assert body["token"]

    response = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "s3cret-pass"})
    assert response.status_code == 200
    token = response.json()["token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    profile = response.json()["user"]
    assert profile["email"] == "asha@example.com"
    assert "password_hash" not in profile


def test_register_rejects_taken_email(client):
    payload = {"name": "Asha", "email": "taken@example.com", "password": "pw"}
    assert client.post("/api/auth/register", json=payload).status_code == 200

    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Email already registered"}


def test_unknown_role_falls_back_to_user(client):
    response = client.post("/api/auth/register", json={
        "name": "Root", "email": "root@example.com", "password": "pw", "role": "admin",
    })
    assert response.json()["user"]["role"] == "user"


def test_login_with_wrong_password(client):
    client.post("/api/auth/register", json={"name": "Ravi", "email": "ravi@example.com", "password": "right"})
    response = client.post("/api/auth/login", json={"email": "ravi@example.com", "password": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}


def test_mutations_require_a_token(client):
    response = client.post("/api/reports", json={"title": "Pothole", "description": "Deep"})
    assert response.status_code == 401
    assert response.json() == {"error": "Missing Authorization header"}

    response = client.post("/api/reports", json={"title": "Pothole", "description": "Deep"},
                           headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or expired token"}


def test_validation_errors_use_the_error_shape(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert "error" in response.json()


def test_unknown_route_is_404(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_health_endpoints(client):
    assert client.get("/").json() == {"message": "Civic-Sense API running"}
    info = client.get("/test").json()
    assert info["backend"] == "running"
    assert info["database"] == "connected"
