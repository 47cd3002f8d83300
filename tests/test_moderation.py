from app.samrambhaka.db import session_scope
from app.samrambhaka.models import AuditEvent
from app.samrambhaka.modules.notifications.models import Notification


def _actions(app, action):
    with session_scope(app) as s:
        return [e.entity_id for e in s.query(AuditEvent).filter(AuditEvent.action == action).all()]


# ---------- Reports ----------
def test_report_create_and_duplicate(make_user, login_as):
    make_user("a@example.com")
    target = make_user("b@example.com")
    c = login_as("a@example.com")
    payload = {"reported_type": "user", "reported_id": target, "reason": "Spam", "evidence_urls": ["https://img.example.com/1.png"]}

    r = c.post("/api/reports", json=payload)
    assert r.status_code == 201
    assert r.json["success"] is True
    assert r.json["report"]["status"] == "pending"
    assert r.json["report"]["evidence_urls"] == ["https://img.example.com/1.png"]

    assert c.post("/api/reports", json=payload).status_code == 409

    r = c.post("/api/reports", json={"reported_type": "planet", "reason": ""})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_admin_resolves_report(app, make_user, login_as):
    make_user("a@example.com")
    mod = make_user("mod@example.com", roles=("content_moderator",))
    rid = login_as("a@example.com").post("/api/reports", json={"reported_type": "post", "reported_id": 1, "reason": "Rude"}).json["report"]["id"]
    admin = login_as("mod@example.com")

    assert [r["id"] for r in admin.get("/admin/reports?status=pending").json["reports"]] == [rid]

    r = admin.post(f"/admin/reports/{rid}", json={"status": "reviewing"})
    assert r.json["report"]["resolved_by"] is None

    r = admin.post(f"/admin/reports/{rid}", json={"status": "resolved", "action_taken": "Post hidden"})
    report = r.json["report"]
    assert report["status"] == "resolved"
    assert report["resolved_by"] == mod
    assert report["resolved_at"] is not None
    assert report["action_taken"] == "Post hidden"
    assert admin.get("/admin/reports?status=pending").json["reports"] == []

    assert admin.post(f"/admin/reports/{rid}", json={"status": "closed"}).status_code == 400
    assert _actions(app, "update_report") == [str(rid), str(rid)]


def test_reports_admin_requires_permission(make_user, login_as):
    make_user("cm@example.com", roles=("category_manager",))
    r = login_as("cm@example.com").get("/admin/reports")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "reports.manage"


# ---------- Post actions ----------
def test_hide_unhide_delete_post(app, make_user, login_as, client):
    author = make_user("a@example.com")
    make_user("mod@example.com", roles=("content_moderator",))
    pid = login_as("a@example.com").post("/api/posts", json={"content": "Fresh mangoes"}).json["post"]["id"]
    admin = login_as("mod@example.com")

    r = admin.post("/admin/posts/actions", json={"action": "hide", "post_id": pid})
    assert r.json == {"success": True, "message": "Post hidden successfully"}
    assert client.get(f"/api/posts/{pid}").status_code == 404

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == author, Notification.type == "moderation").one()
        assert n.body == "Hidden by admin due to report"

    r = admin.post("/admin/posts/actions", json={"action": "unhide", "post_id": pid})
    assert r.json["message"] == "Post unhidden successfully"
    assert client.get(f"/api/posts/{pid}").status_code == 200

    r = admin.post("/admin/posts/actions", json={"action": "delete", "post_id": pid, "reason": "Duplicate"})
    assert r.json["message"] == "Post deleted successfully"
    assert client.get(f"/api/posts/{pid}").status_code == 404

    assert _actions(app, "hide_post") == [str(pid)]
    assert _actions(app, "unhide_post") == [str(pid)]
    assert _actions(app, "delete_post") == [str(pid)]


def test_post_action_validation(make_user, login_as):
    make_user("mod@example.com", roles=("content_moderator",))
    admin = login_as("mod@example.com")

    r = admin.post("/admin/posts/actions", json={"action": "hide"})
    assert r.json["error"] == "action and post_id are required"
    r = admin.post("/admin/posts/actions", json={"action": "pin", "post_id": 1})
    assert r.json["error"] == "Invalid action. Use 'hide', 'unhide', or 'delete'"
    assert admin.post("/admin/posts/actions", json={"action": "hide", "post_id": 999}).status_code == 404


# ---------- Users ----------
def test_block_and_unblock_user(app, make_user, login_as, client):
    target = make_user("b@example.com", full_name="Bala")
    make_user("mod@example.com", roles=("content_moderator",))
    victim = login_as("b@example.com")
    admin = login_as("mod@example.com")

    assert [u["id"] for u in admin.get("/admin/users?q=bala").json["users"]] == [target]

    r = admin.post(f"/admin/users/{target}/block", json={"reason": "Harassment"})
    assert r.json["user"]["is_blocked"] is True

    # existing session is dropped on the next request
    assert victim.get("/auth/me").status_code == 401
    r = client.post("/auth/login", json={"email": "b@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["reason"] == "Harassment"

    admin.post(f"/admin/users/{target}/unblock")
    assert client.post("/auth/login", json={"email": "b@example.com", "password": "password123"}).status_code == 200
    assert _actions(app, "block_user") == [str(target)]


def test_chat_toggle(app, make_user, login_as):
    target = make_user("b@example.com")
    make_user("mod@example.com", roles=("content_moderator",))
    admin = login_as("mod@example.com")

    assert admin.post(f"/admin/users/{target}/chat", json={}).status_code == 400
    assert admin.post(f"/admin/users/{target}/chat", json={"disabled": True}).json["user"]["chat_disabled"] is True
    assert admin.post(f"/admin/users/{target}/chat", json={"disabled": False}).json["user"]["chat_disabled"] is False
    assert _actions(app, "disable_chat") == [str(target)]
    assert _actions(app, "enable_chat") == [str(target)]


def test_suspend_and_lift(make_user, login_as, client):
    target = make_user("b@example.com")
    make_user("mod@example.com", roles=("content_moderator",))
    admin = login_as("mod@example.com")

    assert admin.post(f"/admin/users/{target}/suspend", json={"reason": "Spam"}).status_code == 400
    r = admin.post(f"/admin/users/{target}/suspend", json={"reason": "Spam", "days": 10_000_000})
    assert r.status_code == 400
    assert r.json["error"] == "Suspensions longer than 3650 days must be permanent."
    r = admin.post(f"/admin/users/{target}/suspend", json={"reason": "Spam", "days": 3})
    assert r.status_code == 201
    suspension = r.json["suspension"]
    assert suspension["is_active"] is True
    assert suspension["expires_at"] is not None

    r = client.post("/auth/login", json={"email": "b@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["reason"] == "Spam"
    assert r.json["expires_at"] == suspension["expires_at"]

    assert [row["id"] for row in admin.get("/admin/suspensions").json["suspensions"]] == [suspension["id"]]
    r = admin.post(f"/admin/suspensions/{suspension['id']}/lift")
    assert r.json["suspension"]["is_active"] is False
    assert admin.post(f"/admin/suspensions/{suspension['id']}/lift").status_code == 409
    assert client.post("/auth/login", json={"email": "b@example.com", "password": "password123"}).status_code == 200


def test_permanent_suspension(make_user, login_as, client):
    target = make_user("b@example.com")
    make_user("mod@example.com", roles=("content_moderator",))
    r = login_as("mod@example.com").post(f"/admin/users/{target}/suspend", json={"reason": "Fraud", "permanent": True})
    assert r.json["suspension"]["is_permanent"] is True
    assert r.json["suspension"]["expires_at"] is None

    r = client.post("/auth/login", json={"email": "b@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["expires_at"] is None


# ---------- Blocked words ----------
def test_blocked_words_crud(make_user, login_as):
    make_user("mod@example.com", roles=("content_moderator",))
    make_user("a@example.com")
    admin = login_as("mod@example.com")
    author = login_as("a@example.com")

    r = admin.post("/admin/blocked-words", json={"word": "  Fake   Loan "})
    assert r.status_code == 201
    word = r.json["blocked_word"]
    assert word["word"] == "fake loan"
    assert admin.post("/admin/blocked-words", json={"word": "fake loan"}).status_code == 409
    assert admin.post("/admin/blocked-words", json={"word": " "}).status_code == 400

    assert author.post("/api/posts", json={"content": "Get a FAKE  loan today"}).status_code == 400

    r = admin.patch(f"/admin/blocked-words/{word['id']}", json={"is_active": False})
    assert r.json["blocked_word"]["is_active"] is False
    assert author.post("/api/posts", json={"content": "Get a fake loan today"}).status_code == 201

    assert admin.delete(f"/admin/blocked-words/{word['id']}").json == {"success": True}
    assert admin.get("/admin/blocked-words").json["blocked_words"] == []
    assert admin.delete(f"/admin/blocked-words/{word['id']}").status_code == 404


# ---------- Activity log and roles ----------
def test_activity_log_filters_by_action(make_user, login_as):
    target = make_user("b@example.com")
    make_user("root@example.com", roles=("super_admin",))
    admin = login_as("root@example.com")
    admin.post(f"/admin/users/{target}/chat", json={"disabled": True})

    events = admin.get("/admin/activity?action=disable_chat").json["events"]
    assert [(e["action"], e["entity_id"], e["actor_user_email"]) for e in events] == [
        ("disable_chat", str(target), "root@example.com")
    ]
    assert login_as("b@example.com").get("/admin/activity").status_code == 403


def test_grant_and_revoke_roles(make_user, login_as):
    target = make_user("b@example.com")
    root = make_user("root@example.com", roles=("super_admin",))
    admin = login_as("root@example.com")

    r = admin.post(f"/admin/users/{target}/roles", json={"role": "content_moderator"})
    assert r.json == {"user_id": target, "roles": ["content_moderator"]}
    assert admin.post(f"/admin/users/{target}/roles", json={"role": "content_moderator"}).status_code == 409
    assert admin.post(f"/admin/users/{target}/roles", json={"role": "wizard"}).status_code == 400
    assert admin.post(f"/admin/users/{target}/roles", json={"role": ["super_admin"]}).status_code == 400

    assert login_as("b@example.com").get("/admin/reports").status_code == 200

    r = admin.delete(f"/admin/users/{target}/roles/content_moderator")
    assert r.json["roles"] == []
    assert admin.delete(f"/admin/users/{target}/roles/content_moderator").status_code == 404

    r = admin.delete(f"/admin/users/{root}/roles/super_admin")
    assert r.status_code == 400
    assert r.json["error"] == "You cannot remove your own super_admin role."
