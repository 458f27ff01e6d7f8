from quizfunnel.models import AuthSession


def test_register_validation(client):
	assert client.post("/auth/register", json={"email": "a@example.com"}).status_code == 400
	assert client.post("/auth/register", json={"email": "not-an-email", "password": "longenough"}).status_code == 400
	assert client.post("/auth/register", json={"email": "a@example.com", "password": "short"}).status_code == 400


def test_register_duplicate_is_409(client, register):
	register(email="dup@example.com")
	r = client.post("/auth/register", json={"email": "DUP@example.com", "password": "another-pass"})
	assert r.status_code == 409


def test_login_and_me(client, register):
	headers = register(email="Me@Example.com", name="Morgan Reyes")
	me = client.get("/auth/me", headers=headers).json()
	assert me == {"email": "me@example.com", "name": "Morgan Reyes"}


def test_wrong_password_is_401(client, register):
	register(email="a@example.com", password="right-password")
	r = client.post("/auth/token", data={"username": "a@example.com", "password": "wrong-password"})
	assert r.status_code == 401


def test_revoked_session_is_rejected(client, auth_headers, db):
	assert client.get("/auth/me", headers=auth_headers).status_code == 200
	db.query(AuthSession).delete()
	db.commit()
	assert client.get("/auth/me", headers=auth_headers).status_code == 401


def test_garbage_token_is_401(client):
	assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def _journey(client, headers, **body):
	body.setdefault("title", "My journey")
	r = client.post("/api/journeys", json=body, headers=headers)
	assert r.status_code == 201, r.text
	return r.json()


def test_create_and_list_journeys(client, auth_headers):
	assert client.post("/api/journeys", json={}, headers=auth_headers).status_code == 400
	journey = _journey(client, auth_headers, sections=["closest-schools"])
	assert journey["sections"] == ["closest-schools"]
	listed = client.get("/api/journeys", headers=auth_headers).json()["journeys"]
	assert [j["id"] for j in listed] == [journey["id"]]


def test_add_sections_in_order(client, auth_headers):
	journey = _journey(client, auth_headers)
	url = f"/api/journeys/{journey['id']}/sections"
	assert client.post(url, json={}, headers=auth_headers).status_code == 400
	for section in ("closest-schools", "closest-schools", "ai-experience"):
		r = client.post(url, json={"section_id": section}, headers=auth_headers)
	assert r.json()["sections"] == ["closest-schools", "ai-experience"]


def test_other_users_journey_is_404(client, register):
	owner = register(email="owner@example.com")
	intruder = register(email="intruder@example.com")
	journey = _journey(client, owner)
	r = client.post(f"/api/journeys/{journey['id']}/sections", json={"section_id": "x"}, headers=intruder)
	assert r.status_code == 404
	assert client.post("/api/journey/share", json={"journey_id": journey["id"]}, headers=intruder).status_code == 404


def test_share_is_stable_and_public_view(client, primary, auth_headers):
	journey = _journey(client, auth_headers)
	assert client.get(f"/api/share/journey/{'0' * 32}").status_code == 404
	assert client.post("/api/journey/share", json={}, headers=auth_headers).status_code == 400

	primary.outcomes = ['{"title": "t", "subtitle": "s", "schools": [], "call_to_action": "go"}']
	client.post(
		"/api/ai/generate-section",
		json={"section_id": "closest-schools", "data": {"grade": "3rd", "user_location": "Austin"}},
		headers=auth_headers,
	)
	client.post(f"/api/journeys/{journey['id']}/sections", json={"section_id": "closest-schools"}, headers=auth_headers)

	first = client.post("/api/journey/share", json={"journey_id": journey["id"]}, headers=auth_headers).json()
	second = client.post("/api/journey/share", json={"journey_id": journey["id"]}, headers=auth_headers).json()
	assert first["share_id"] == second["share_id"]
	assert first["share_url"].endswith(f"/journey/{first['share_id']}")

	view = client.get(f"/api/share/journey/{first['share_id']}").json()["data"]
	assert view["owner_name"] == "Pat Parent"
	assert view["view_count"] == 1
	assert [s["type"] for s in view["sections"]] == ["closest-schools"]
	assert view["sections"][0]["title"] == "School Locations Near You"


def test_legacy_share_flow(client, register):
	headers = register(email="p@example.com", name="Pat")
	client.post("/api/quiz/save", json={"quiz_data": {"user_type": "parents"}, "is_partial": True}, headers=headers)
	assert client.post("/api/share/journey", json={"viewed_sections": []}, headers=headers).status_code == 400

	client.post("/api/quiz/save", json={"quiz_data": {"user_type": "parents"}}, headers=headers)
	assert client.get("/api/share/journey", headers=headers).json() == {"shared": False}

	first = client.post("/api/share/journey", json={"viewed_sections": ["a"]}, headers=headers).json()
	second = client.post("/api/share/journey", json={"viewed_sections": ["a", "b"]}, headers=headers).json()
	assert first["share_id"] == second["share_id"]
	assert "/shared/" in first["share_url"]

	shared = client.get(f"/api/share/{first['share_id']}").json()["data"]
	assert shared["name"] == "Pat"
	assert shared["viewed_sections"] == ["a", "b"]

	status = client.get("/api/share/journey", headers=headers).json()
	assert status["shared"] is True
	assert status["view_count"] == 1
	assert client.get("/api/share/unknown123").status_code == 404


def test_legacy_share_uses_the_signed_in_account(client, register, store):
	store.save_quiz("victim@example.com", name="Vic", quiz_data={"user_type": "parents"})
	headers = register(email="someone@example.com")
	r = client.post("/api/share/journey", json={"email": "victim@example.com", "viewed_sections": []}, headers=headers)
	assert r.status_code == 400
	assert store.get_share_status("victim@example.com") is None
	assert client.get("/api/share/journey", params={"email": "victim@example.com"}, headers=headers).json() == {"shared": False}
