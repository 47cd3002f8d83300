from datetime import date, timedelta

from app.samrambhaka.db import session_scope
from app.samrambhaka.models import AuditEvent


def _manager(make_user, login_as):
    make_user("cm@example.com", roles=("category_manager",))
    return login_as("cm@example.com")


# ---------- Promotions ----------
def test_promotion_crud(app, make_user, login_as):
    admin = _manager(make_user, login_as)

    r = admin.post("/admin/promotions", json={"title": "Diwali Mela", "link_url": "https://mela.example.com", "display_order": "2"})
    assert r.status_code == 201
    promo = r.json["promotion"]
    assert promo["content_type"] == "banner"
    assert promo["display_order"] == 2
    assert promo["is_live"] is True

    r = admin.patch(f"/admin/promotions/{promo['id']}", json={"is_active": False})
    assert r.json["promotion"]["is_live"] is False
    assert admin.get(f"/admin/promotions/{promo['id']}").json["promotion"]["is_active"] is False

    assert admin.delete(f"/admin/promotions/{promo['id']}").json == {"success": True}
    assert admin.get(f"/admin/promotions/{promo['id']}").status_code == 404

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "PromotionalContent").order_by(AuditEvent.id)]
    assert actions == ["promotion.create", "promotion.edit", "promotion.delete"]


def test_promotion_validation(make_user, login_as):
    admin = _manager(make_user, login_as)

    r = admin.post("/admin/promotions", json={"title": " ", "content_type": "popup"})
    assert r.status_code == 400
    assert "Title is required." in r.json["errors"]

    r = admin.post("/admin/promotions", json={"title": "Sale", "start_date": "2026-05-10", "end_date": "2026-05-01"})
    assert r.json["error"] == "end_date must be on or after start_date."

    pid = admin.post("/admin/promotions", json={"title": "Sale", "start_date": "2026-05-10"}).json["promotion"]["id"]
    r = admin.patch(f"/admin/promotions/{pid}", json={"end_date": "2026-05-01"})
    assert r.status_code == 400


def test_promotions_require_content_permission(make_user, login_as):
    make_user("mod@example.com", roles=("content_moderator",))
    r = login_as("mod@example.com").post("/admin/promotions", json={"title": "x"})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "content.manage"


# ---------- Featured ----------
def test_featured_requires_existing_target(make_user, login_as):
    make_user("a@example.com")
    admin = _manager(make_user, login_as)
    pid = login_as("a@example.com").post("/api/posts", json={"content": "Handloom sarees"}).json["post"]["id"]

    assert admin.post("/admin/featured", json={"content_type": "post", "content_id": 999}).status_code == 404
    assert admin.post("/admin/featured", json={"content_type": "event", "content_id": pid}).status_code == 400

    r = admin.post("/admin/featured", json={"content_type": "post", "content_id": pid})
    assert r.status_code == 201
    fid = r.json["featured"]["id"]
    assert r.json["featured"]["placement"] == "home"
    assert [f["id"] for f in admin.get("/admin/featured").json["featured"]] == [fid]

    assert admin.delete(f"/admin/featured/{fid}").json == {"success": True}
    assert admin.delete(f"/admin/featured/{fid}").status_code == 404


# ---------- Settings ----------
def test_settings_public_keys(make_user, login_as, client):
    make_user("root@example.com", roles=("super_admin",))
    cm = _manager(make_user, login_as)
    root = login_as("root@example.com")

    assert cm.put("/admin/settings/site_name", json={"value": "x"}).status_code == 403

    r = root.put("/admin/settings/site_name", json={"value": "Samrambhaka"})
    assert r.json["setting"]["value"] == "Samrambhaka"
    assert root.put("/admin/settings/site_name", json={}).status_code == 400

    # not public yet
    assert client.get("/api/settings/site_name").status_code == 404

    assert root.put("/admin/settings/public_keys", json={"value": "site_name"}).status_code == 400
    root.put("/admin/settings/public_keys", json={"value": ["site_name", "missing"]})
    assert client.get("/api/settings/site_name").json == {"key": "site_name", "value": "Samrambhaka"}
    assert client.get("/api/settings/missing").status_code == 404

    keys = [row["key"] for row in root.get("/admin/settings").json["settings"]]
    assert keys == ["public_keys", "site_name"]


# ---------- Discovery ----------
def test_discover(app, make_user, login_as, client):
    make_user("a@example.com")
    admin = _manager(make_user, login_as)
    c = login_as("a@example.com")
    for name in ("Weavers", "Potters", "Farmers", "Bakers"):
        c.post("/api/communities", json={"name": name})
    bid = c.post("/api/businesses", json={"name": "Clay Works", "category": "handmade"}).json["business"]["id"]

    admin.post("/admin/promotions", json={"title": "Live now"})
    future = (date.today() + timedelta(days=7)).isoformat()
    admin.post("/admin/promotions", json={"title": "Next week", "start_date": future})
    admin.post("/admin/featured", json={"content_type": "business", "content_id": bid})

    r = client.get("/api/discover")
    assert [x["name"] for x in r.json["communities"]] == ["Bakers", "Farmers", "Potters"]
    assert [x["name"] for x in r.json["businesses"]] == ["Clay Works"]
    assert [p["title"] for p in r.json["promotions"]] == ["Live now"]
    assert [(f["content_type"], f["content_id"]) for f in r.json["featured"]] == [("business", bid)]

    # member flags follow the viewer
    assert all(x["is_member"] for x in c.get("/api/discover").json["communities"])
