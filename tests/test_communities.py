from app.samrambhaka.db import session_scope
from app.samrambhaka.modules.notifications.models import Notification


def _create(c, name="Pune Potters", **extra):
    return c.post("/api/communities", json={"name": name, "description": "Clay people", **extra})


def test_create_makes_creator_admin_member(make_user, login_as, client):
    creator = make_user("a@example.com", full_name="Asha")
    c = login_as("a@example.com")

    r = _create(c)
    assert r.status_code == 201
    community = r.json["community"]
    assert community["member_count"] == 1
    assert community["is_member"] is True
    assert community["my_role"] == "admin"

    r = client.get(f"/api/communities/{community['id']}/members")
    assert r.json["members"][0]["user"]["id"] == creator
    assert r.json["members"][0]["role"] == "admin"

    assert _create(c, name="ab").status_code == 400


def test_create_for_business_requires_ownership(app, make_user, login_as):
    make_user("owner@example.com")
    make_user("other@example.com")
    bid = login_as("owner@example.com").post("/api/businesses", json={"name": "Clay Works", "category": "handmade"}).json["business"]["id"]

    assert _create(login_as("other@example.com"), business_id=bid).status_code == 403
    assert _create(login_as("owner@example.com"), business_id=bid).status_code == 201


def test_join_leave(app, make_user, login_as):
    creator = make_user("a@example.com")
    make_user("b@example.com", full_name="Bala")
    cid = _create(login_as("a@example.com")).json["community"]["id"]
    cb = login_as("b@example.com")

    r = cb.post(f"/api/communities/{cid}/join")
    assert r.json == {"success": True, "is_member": True}
    assert cb.post(f"/api/communities/{cid}/join").status_code == 409
    assert cb.get(f"/api/communities/{cid}").json["community"]["member_count"] == 2

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == creator).one()
        assert n.type == "community_join"

    assert cb.post(f"/api/communities/{cid}/leave").json["is_member"] is False
    assert cb.post(f"/api/communities/{cid}/leave").status_code == 404


def test_discussions_members_only_and_notify(app, make_user, login_as, client):
    make_user("a@example.com")
    b = make_user("b@example.com")
    make_user("c@example.com")
    ca = login_as("a@example.com")
    cid = _create(ca).json["community"]["id"]
    cb = login_as("b@example.com")
    cb.post(f"/api/communities/{cid}/join")

    r = login_as("c@example.com").post(f"/api/communities/{cid}/discussions", json={"content": "hi"})
    assert r.status_code == 403

    r = ca.post(f"/api/communities/{cid}/discussions", json={"content": "Kiln day on Sunday"})
    assert r.status_code == 201
    discussion_id = r.json["discussion"]["id"]

    r = client.get(f"/api/communities/{cid}/discussions")
    assert [d["content"] for d in r.json["discussions"]] == ["Kiln day on Sunday"]

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == b, Notification.type == "community_discussion").one()
        assert n.title == "New discussion in Pune Potters"

    # plain members cannot remove someone else's message; the community admin can
    assert cb.delete(f"/api/communities/{cid}/discussions/{discussion_id}").status_code == 403
    r = cb.post(f"/api/communities/{cid}/discussions", json={"content": "I'll bring glaze"})
    mine = r.json["discussion"]["id"]
    assert ca.delete(f"/api/communities/{cid}/discussions/{mine}").status_code == 200
    assert ca.delete(f"/api/communities/{cid}/discussions/{discussion_id}").status_code == 200


def test_admin_disable_hides_community(make_user, login_as, client):
    make_user("a@example.com")
    make_user("admin@example.com", roles=("category_manager",))
    cid = _create(login_as("a@example.com")).json["community"]["id"]
    admin = login_as("admin@example.com")

    r = admin.post(f"/admin/communities/{cid}/disable", json={"reason": "Spam"})
    assert r.json["community"]["is_disabled"] is True
    assert client.get(f"/api/communities/{cid}").status_code == 404
    assert client.get("/api/communities").json["communities"] == []
    assert admin.get(f"/api/communities/{cid}").status_code == 200

    admin.post(f"/admin/communities/{cid}/enable")
    assert client.get(f"/api/communities/{cid}").status_code == 200
