from conftest import png_bytes
from lms.services import PWD_CTX


def test_create_user_hides_password(client):
    r = client.post(
        "/api/v1/users",
        json={"email": "ada@example.com", "password": "secret123", "firstName": "Ada"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "User created successfully"
    user = body["data"]
    assert user["email"] == "ada@example.com"
    assert user["firstName"] == "Ada"
    assert user["role"] == "STUDENT"
    assert user["isActive"] is True
    assert "password" not in user and "passwordHash" not in user


def test_password_is_stored_hashed(client, app):
    r = client.post("/api/v1/users", json={"email": "hash@example.com", "password": "secret123"})
    stored = app.state.user_service.users.get(r.json()["data"]["id"])
    assert stored.password_hash != "secret123"
    assert PWD_CTX.verify("secret123", stored.password_hash)


def test_duplicate_email_conflicts(client, make_user):
    make_user(email="dup@example.com")
    r = client.post("/api/v1/users", json={"email": "dup@example.com", "password": "secret123"})
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "User with this email already exists"}


def test_invalid_payload_is_validation_error(client):
    r = client.post("/api/v1/users", json={"email": "not-an-email", "password": "123"})
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "Validation failed"
    assert {e["path"] for e in body["errors"]} >= {"body.email", "body.password"}


def test_get_unknown_user(client):
    r = client.get("/api/v1/users/does-not-exist")
    assert r.status_code == 404
    assert r.json()["message"] == "User not found"


def test_bulk_create_all_succeed(client):
    r = client.post(
        "/api/v1/users/bulk",
        json={"users": [
            {"email": "b1@example.com", "password": "secret123"},
            {"email": "b2@example.com", "password": "secret123", "role": "INSTRUCTOR"},
        ]},
    )
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["totalSuccess"] == 2
    assert data["totalFailed"] == 0
    assert {u["email"] for u in data["successful"]} == {"b1@example.com", "b2@example.com"}


def test_bulk_create_partial_failure_is_207(client, make_user):
    make_user(email="taken@example.com")
    r = client.post(
        "/api/v1/users/bulk",
        json={"users": [
            {"email": "fresh@example.com", "password": "secret123"},
            {"email": "taken@example.com", "password": "secret123"},
        ]},
    )
    assert r.status_code == 207
    body = r.json()
    assert body["success"] is False
    results = body["results"]
    assert results["totalSuccess"] == 1
    assert results["totalFailed"] == 1
    failure = results["failed"][0]
    assert failure["user"]["email"] == "taken@example.com"
    assert "password" not in failure["user"]
    assert "already exists" in failure["error"]


def test_bulk_create_rejects_duplicates_in_batch(client):
    r = client.post(
        "/api/v1/users/bulk",
        json={"users": [
            {"email": "same@example.com", "password": "secret123"},
            {"email": "same@example.com", "password": "secret456"},
        ]},
    )
    assert r.status_code == 400
    assert "same@example.com" in r.json()["message"]
    assert client.get("/api/v1/users").json()["meta"]["total"] == 0


def test_list_users_filters_and_search(client, make_user):
    make_user(role="INSTRUCTOR", email="grace@example.com", firstName="Grace")
    make_user(role="INSTRUCTOR", email="linus@example.com", firstName="Linus", isActive=False)
    make_user(role="STUDENT", email="guido@example.com", firstName="Guido")

    r = client.get("/api/v1/users", params={"role": "INSTRUCTOR"})
    assert r.status_code == 200
    body = r.json()
    assert body["meta"] == {"page": 1, "limit": 10, "total": 2}
    assert {u["email"] for u in body["data"]} == {"grace@example.com", "linus@example.com"}

    r = client.get("/api/v1/users", params={"role": "INSTRUCTOR", "isActive": "true"})
    assert [u["email"] for u in r.json()["data"]] == ["grace@example.com"]

    r = client.get("/api/v1/users", params={"searchTerm": "GUI"})
    assert [u["email"] for u in r.json()["data"]] == ["guido@example.com"]


def test_list_users_sorting_and_limits(client, make_user):
    for name in ("carol", "alice", "bob"):
        make_user(email=f"{name}@example.com")
    r = client.get("/api/v1/users", params={"sortBy": "email", "sortOrder": "asc", "limit": 2})
    assert [u["email"] for u in r.json()["data"]] == ["alice@example.com", "bob@example.com"]
    assert r.json()["meta"]["total"] == 3

    assert client.get("/api/v1/users", params={"sortBy": "passwordHash"}).status_code == 400
    assert client.get("/api/v1/users", params={"limit": 101}).status_code == 400
    assert client.get("/api/v1/users", params={"page": 0}).status_code == 400


def test_update_user(client, app, make_user):
    user = make_user(email="upd@example.com")
    r = client.patch(f"/api/v1/users/{user['id']}", json={"lastName": "Lovelace", "password": "newsecret"})
    assert r.status_code == 200
    assert r.json()["data"]["lastName"] == "Lovelace"
    stored = app.state.user_service.users.get(user["id"])
    assert PWD_CTX.verify("newsecret", stored.password_hash)


def test_update_email_to_taken_conflicts(client, make_user):
    make_user(email="first@example.com")
    second = make_user(email="second@example.com")
    r = client.patch(f"/api/v1/users/{second['id']}", json={"email": "first@example.com"})
    assert r.status_code == 400
    assert r.json()["message"] == "Email is already in use"


def test_update_unknown_user(client):
    r = client.patch("/api/v1/users/missing", json={"firstName": "X"})
    assert r.status_code == 404


def test_delete_user_schedules_avatar_cleanup(client, cleanup, make_user):
    user = make_user(avatar="https://media.test/lms/avatars/avatar-me-1.png")
    r = client.delete(f"/api/v1/users/{user['id']}")
    assert r.status_code == 200
    assert r.json()["data"]["id"] == user["id"]
    assert client.get(f"/api/v1/users/{user['id']}").status_code == 404
    assert cleanup.public_ids == ["lms/avatars/avatar-me-1"]


def test_delete_user_with_courses_is_refused(client, make_user, make_course):
    instructor = make_user(role="INSTRUCTOR")
    make_course(instructor["id"])
    r = client.delete(f"/api/v1/users/{instructor['id']}")
    assert r.status_code == 400
    assert client.get(f"/api/v1/users/{instructor['id']}").status_code == 200


def test_avatar_upload_replaces_previous(client, cleanup, media_host, make_user):
    user = make_user(avatar="https://media.test/lms/avatars/avatar-old-1.png")
    r = client.post(
        f"/api/v1/users/{user['id']}/avatar",
        files={"file": ("me.png", png_bytes(), "image/png")},
    )
    assert r.status_code == 200
    assert r.json()["data"]["avatar"] == media_host.uploads[0]
    assert "/lms/avatars/" in media_host.uploads[0]
    assert cleanup.submitted == [("lms/avatars/avatar-old-1", "avatar_replaced")]


def test_avatar_upload_rejects_non_images(client, media_host, make_user):
    user = make_user()
    r = client.post(
        f"/api/v1/users/{user['id']}/avatar",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert r.status_code == 400
    assert media_host.uploads == []


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/v1/nothing-here")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Route not found", "path": "/api/v1/nothing-here"}


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.headers["X-Request-ID"]


def test_search_term_wildcards_match_literally(client, make_user):
    make_user(email="a_c@example.com")
    make_user(email="abcd@example.com")
    make_user(email="pct@example.com", firstName="100%")
    make_user(email="plain@example.com", firstName="1000")

    r = client.get("/api/v1/users", params={"searchTerm": "a_c"})
    assert [u["email"] for u in r.json()["data"]] == ["a_c@example.com"]

    r = client.get("/api/v1/users", params={"searchTerm": "100%"})
    assert [u["email"] for u in r.json()["data"]] == ["pct@example.com"]
