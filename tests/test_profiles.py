import io

from app.samrambhaka.db import session_scope
from app.samrambhaka.modules.follows.models import Follow
from app.samrambhaka.modules.notifications.models import Notification


def test_profile_update_and_privacy(make_user, login_as, client):
    uid = make_user("asha@example.com", full_name="Asha", phone_number="+91 98765", email="asha@contact.in")
    c = login_as("asha@example.com")

    r = c.patch(
        "/api/profiles/me",
        json={"username": "Asha_R", "bio": "Potter", "location": "Pune, MH", "show_location": False, "show_mobile": True},
    )
    assert r.status_code == 200
    me = r.json["profile"]
    assert me["username"] == "asha_r"
    assert me["location"] == "Pune, MH"
    assert me["show_location"] is False
    assert me["email"] == "asha@contact.in"

    # anonymous viewers only see what the privacy flags allow
    r = client.get(f"/api/profiles/{uid}")
    assert r.status_code == 200
    public = r.json["profile"]
    assert public["location"] is None
    assert public["email"] is None
    assert public["phone_number"] == "+91 98765"
    assert "show_email" not in public
    assert public["follower_count"] == 0


def test_profile_update_rejects_taken_username(make_user, login_as):
    make_user("a@example.com", username="ravi")
    make_user("b@example.com")
    c = login_as("b@example.com")
    r = c.patch("/api/profiles/me", json={"username": "Ravi"})
    assert r.status_code == 409
    r = c.patch("/api/profiles/me", json={"username": "x"})
    assert r.status_code == 400


def test_blocked_profile_hidden_from_public(make_user, client):
    uid = make_user("blocked@example.com", is_blocked=True)
    assert client.get(f"/api/profiles/{uid}").status_code == 404


def test_skills_add_list_delete(make_user, login_as):
    make_user("a@example.com")
    c = login_as("a@example.com")
    r = c.post("/api/profiles/me/skills", json={"skill_name": "Pottery"})
    assert r.status_code == 201
    skill_id = r.json["skill"]["id"]

    r = c.post("/api/profiles/me/skills", json={"skill_name": "pottery"})
    assert r.status_code == 409

    r = c.get("/api/profiles/me/skills")
    assert [sk["skill_name"] for sk in r.json["skills"]] == ["Pottery"]

    assert c.delete(f"/api/profiles/me/skills/{skill_id}").status_code == 200
    assert c.get("/api/profiles/me/skills").json["skills"] == []


def test_search_and_nearby(make_user, login_as):
    make_user("me@example.com", full_name="Me", location="Pune, Maharashtra")
    make_user("meera@example.com", full_name="Meera Kulkarni", location="Kothrud, Pune")
    make_user("rahul@example.com", full_name="Rahul", location="Mumbai")
    make_user("hidden@example.com", full_name="Meera Blocked", is_blocked=True, location="Pune")
    c = login_as("me@example.com")

    r = c.get("/api/profiles/search?q=meera")
    names = [p["full_name"] for p in r.json["profiles"]]
    assert names == ["Meera Kulkarni"]

    r = c.get("/api/profiles/nearby")
    assert r.json["location"] == "Pune, Maharashtra"
    assert [p["full_name"] for p in r.json["profiles"]] == ["Meera Kulkarni"]


def test_search_treats_wildcards_literally(make_user, login_as):
    make_user("me@example.com", full_name="Me")
    make_user("a@example.com", full_name="Ravi K", username="ravi_k")
    make_user("b@example.com", full_name="Ravi-Kumar", username="ravikumar")
    c = login_as("me@example.com")

    r = c.get("/api/profiles/search", query_string={"q": "i_k"})
    assert [p["full_name"] for p in r.json["profiles"]] == ["Ravi K"]
    r = c.get("/api/profiles/search", query_string={"q": "%"})
    assert r.json["profiles"] == []


def test_avatar_upload_served_from_local_media(make_user, login_as):
    make_user("a@example.com")
    c = login_as("a@example.com")
    png = b"\x89PNG\r\n\x1a\n" + b"0" * 32
    r = c.post(
        "/api/profiles/me/avatar",
        data={"file": (io.BytesIO(png), "me.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    url = r.json["avatar_url"]
    assert url.startswith("/media/avatars/")
    assert url.endswith(".png")

    r = c.get(url)
    assert r.status_code == 200
    assert r.data == png


def test_avatar_upload_rejects_non_images(make_user, login_as):
    make_user("a@example.com")
    c = login_as("a@example.com")
    r = c.post(
        "/api/profiles/me/avatar",
        data={"file": (io.BytesIO(b"hello"), "notes.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


def test_follow_toggle_counts_and_notification(app, make_user, login_as):
    a = make_user("a@example.com", full_name="Asha")
    b = make_user("b@example.com", full_name="Bala")
    ca = login_as("a@example.com")

    r = ca.post("/api/follows/toggle", json={"following_id": b})
    assert r.status_code == 200
    assert r.json == {"success": True, "following": True, "follower_count": 1}

    # explicit follow is idempotent
    r = ca.post("/api/follows/toggle", json={"following_id": b, "action": "follow"})
    assert r.json["follower_count"] == 1

    with session_scope(app) as s:
        assert s.query(Follow).count() == 1
        n = s.query(Notification).filter(Notification.user_id == b).one()
        assert n.type == "follow"

    cb = login_as("b@example.com")
    r = cb.get("/api/notifications")
    assert r.json["notifications"][0]["link"] == f"/user/{a}"

    r = ca.post("/api/follows/toggle", json={"following_id": b})
    assert r.json["following"] is False
    assert r.json["follower_count"] == 0


def test_follow_rejects_self_and_foreign_user_id(make_user, login_as):
    a = make_user("a@example.com")
    b = make_user("b@example.com")
    ca = login_as("a@example.com")

    r = ca.post("/api/follows/toggle", json={"following_id": a})
    assert r.status_code == 400

    r = ca.post("/api/follows/toggle", json={"following_id": b, "action": 1})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid action. Use 'follow' or 'unfollow'."

    r = ca.post("/api/follows/toggle", json={"user_id": b, "following_id": b})
    assert r.status_code == 403

    r = ca.post("/api/follows/toggle", json={"following_id": 9999})
    assert r.status_code == 404


def test_followers_following_and_friends(make_user, login_as, client):
    a = make_user("a@example.com", full_name="Asha")
    b = make_user("b@example.com", full_name="Bala")
    c_id = make_user("c@example.com", full_name="Chitra")

    ca = login_as("a@example.com")
    ca.post("/api/follows/toggle", json={"following_id": b})
    ca.post("/api/follows/toggle", json={"following_id": c_id})
    login_as("b@example.com").post("/api/follows/toggle", json={"following_id": a})

    r = client.get(f"/api/follows/{b}/followers")
    assert [p["id"] for p in r.json["profiles"]] == [a]

    r = client.get(f"/api/follows/{a}/following")
    assert {p["id"] for p in r.json["profiles"]} == {b, c_id}

    r = ca.get("/api/follows/friends")
    assert r.json["mutual_ids"] == [b]

    r = ca.get(f"/api/profiles/{b}")
    assert r.json["profile"]["is_following"] is True
