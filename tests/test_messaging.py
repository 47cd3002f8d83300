from app.samrambhaka.db import session_scope
from app.samrambhaka.modules.notifications.models import Notification
from app.samrambhaka.modules.profiles.models import Profile


def _start(c, other_id):
    return c.post("/api/messages/conversations", json={"other_user_id": other_id})


def test_start_conversation_is_idempotent(make_user, login_as):
    make_user("a@example.com")
    b = make_user("b@example.com", full_name="Bala")
    ca = login_as("a@example.com")

    r = _start(ca, b)
    assert r.status_code == 201
    assert r.json["created"] is True
    assert r.json["conversation"]["other_user"]["id"] == b
    conv_id = r.json["conversation"]["id"]

    r = _start(ca, b)
    assert r.status_code == 200
    assert r.json["created"] is False
    assert r.json["conversation"]["id"] == conv_id

    assert _start(ca, 9999).status_code == 404
    assert _start(ca, None).status_code == 400


def test_send_open_and_unread(app, make_user, login_as):
    a = make_user("a@example.com", full_name="Asha")
    b = make_user("b@example.com")
    ca = login_as("a@example.com")
    cb = login_as("b@example.com")
    conv_id = _start(ca, b).json["conversation"]["id"]
    assert _start(cb, a).json["conversation"]["id"] == conv_id

    first = ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "Namaste"})
    assert first.status_code == 201
    ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "Are you at the market?"})
    assert ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "  "}).status_code == 400

    assert cb.get("/api/messages/unread-count").json == {"unread_count": 2}
    listed = cb.get("/api/messages/conversations").json["conversations"]
    assert listed[0]["unread_count"] == 2
    assert listed[0]["last_message"]["content"] == "Are you at the market?"

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == b, Notification.type == "message").first()
        assert n.title == "New message from Asha"

    r = cb.get(f"/api/messages/conversations/{conv_id}")
    assert [m["content"] for m in r.json["messages"]] == ["Namaste", "Are you at the market?"]
    assert cb.get("/api/messages/unread-count").json["unread_count"] == 0
    # opening the conversation does not mark your own messages read
    assert ca.get("/api/messages/unread-count").json["unread_count"] == 0

    since = first.json["message"]["id"]
    r = ca.get(f"/api/messages/conversations/{conv_id}?since_id={since}")
    assert [m["content"] for m in r.json["messages"]] == ["Are you at the market?"]
    assert r.json["messages"][0]["is_read"] is True


def test_mark_single_message_read(make_user, login_as):
    make_user("a@example.com")
    b = make_user("b@example.com")
    make_user("c@example.com")
    ca = login_as("a@example.com")
    conv_id = _start(ca, b).json["conversation"]["id"]
    mid = ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "hello"}).json["message"]["id"]

    assert ca.post(f"/api/messages/{mid}/read").status_code == 404
    assert login_as("c@example.com").post(f"/api/messages/{mid}/read").status_code == 404
    r = login_as("b@example.com").post(f"/api/messages/{mid}/read")
    assert r.status_code == 200
    assert r.json["message"]["is_read"] is True


def test_outsiders_cannot_see_conversation(make_user, login_as):
    make_user("a@example.com")
    b = make_user("b@example.com")
    make_user("c@example.com")
    conv_id = _start(login_as("a@example.com"), b).json["conversation"]["id"]

    cc = login_as("c@example.com")
    assert cc.get(f"/api/messages/conversations/{conv_id}").status_code == 404
    assert cc.post(f"/api/messages/conversations/{conv_id}", json={"content": "hi"}).status_code == 404
    assert cc.delete(f"/api/messages/conversations/{conv_id}").status_code == 404


def test_chat_disabled_blocks_sending(app, make_user, login_as):
    a = make_user("a@example.com")
    b = make_user("b@example.com")
    ca = login_as("a@example.com")
    conv_id = _start(ca, b).json["conversation"]["id"]

    with session_scope(app) as s:
        s.get(Profile, a).chat_disabled = True

    r = ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "hi"})
    assert r.status_code == 403
    assert r.json["error"] == "Chat has been disabled for your account."

    r = login_as("b@example.com").post(f"/api/messages/conversations/{conv_id}", json={"content": "hi"})
    assert r.status_code == 403
    assert r.json["error"] == "This user cannot receive messages."


def test_delete_conversation(make_user, login_as):
    make_user("a@example.com")
    b = make_user("b@example.com")
    ca = login_as("a@example.com")
    conv_id = _start(ca, b).json["conversation"]["id"]
    ca.post(f"/api/messages/conversations/{conv_id}", json={"content": "hello"})

    assert ca.delete(f"/api/messages/conversations/{conv_id}").json == {"success": True}
    assert ca.get(f"/api/messages/conversations/{conv_id}").status_code == 404
    assert ca.get("/api/messages/conversations").json["conversations"] == []
