import io

import pytest

from app.samrambhaka.db import session_scope
from app.samrambhaka.models import AuditEvent, User
from app.samrambhaka.modules.businesses.models import Business, BusinessImage
from app.samrambhaka.modules.businesses.service import delete_image
from app.samrambhaka.modules.notifications.models import Notification


def _create(c, **overrides):
    payload = {"name": "Clay Works", "category": "handmade", "location": "Pune", "website_url": "https://clay.example"}
    payload.update(overrides)
    return c.post("/api/businesses", json=payload)


def test_create_business_pending(make_user, login_as, client):
    owner = make_user("owner@example.com")
    c = login_as("owner@example.com")

    r = _create(c)
    assert r.status_code == 201
    b = r.json["business"]
    assert b["approval_status"] == "pending"
    assert b["owner_id"] == owner
    assert b["follower_count"] == 0

    r = c.get("/api/businesses/mine")
    assert [x["id"] for x in r.json["businesses"]] == [b["id"]]

    r = client.get(f"/api/businesses/{b['id']}")
    assert r.status_code == 200
    assert r.json["business"]["is_owner"] is False
    assert r.json["business"]["posts"] == []


def test_create_business_validation(make_user, login_as):
    make_user("owner@example.com")
    c = login_as("owner@example.com")
    assert _create(c, name="X").status_code == 400
    assert _create(c, category="spaceships").status_code == 400
    assert _create(c, website_url="ftp://nope").status_code == 400


def test_update_business_owner_only(make_user, login_as):
    make_user("owner@example.com")
    make_user("other@example.com")
    bid = _create(login_as("owner@example.com")).json["business"]["id"]

    r = login_as("other@example.com").patch(f"/api/businesses/{bid}", json={"name": "Stolen"})
    assert r.status_code == 403

    r = login_as("owner@example.com").patch(f"/api/businesses/{bid}", json={"description": "Hand thrown"})
    assert r.status_code == 200
    assert r.json["business"]["description"] == "Hand thrown"
    assert r.json["business"]["name"] == "Clay Works"


def test_business_follow_toggle(app, make_user, login_as):
    owner = make_user("owner@example.com")
    make_user("fan@example.com")
    co = login_as("owner@example.com")
    bid = _create(co).json["business"]["id"]

    r = co.post(f"/api/businesses/{bid}/follow")
    assert r.status_code == 400

    cf = login_as("fan@example.com")
    r = cf.post(f"/api/businesses/{bid}/follow")
    assert r.json == {"following": True, "follower_count": 1}
    assert cf.get(f"/api/businesses/{bid}").json["business"]["is_following"] is True

    r = cf.post(f"/api/businesses/{bid}/follow")
    assert r.json == {"following": False, "follower_count": 0}

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == owner).one()
        assert n.type == "business_follow"


def test_gallery_upload_and_delete(make_user, login_as, client):
    make_user("owner@example.com")
    c = login_as("owner@example.com")
    bid = _create(c).json["business"]["id"]

    r = c.post(
        f"/api/businesses/{bid}/images",
        data={"file": (io.BytesIO(b"\xff\xd8\xff" + b"0" * 16), "shop.jpg", "image/jpeg"), "caption": "Storefront"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    image = r.json["image"]
    assert image["caption"] == "Storefront"
    assert image["image_url"].startswith(f"/media/businesses/{bid}/gallery/")
    assert client.get(image["image_url"]).status_code == 200

    r = client.get(f"/api/businesses/{bid}/images")
    assert [i["id"] for i in r.json["images"]] == [image["id"]]

    assert c.delete(f"/api/businesses/{bid}/images/{image['id']}").status_code == 200
    assert client.get(image["image_url"]).status_code == 404
    assert client.get(f"/api/businesses/{bid}/images").json["images"] == []


def test_gallery_file_survives_failed_delete(app, make_user, login_as, client):
    owner = make_user("owner@example.com")
    c = login_as("owner@example.com")
    bid = _create(c).json["business"]["id"]
    image = c.post(
        f"/api/businesses/{bid}/images",
        data={"file": (io.BytesIO(b"\xff\xd8\xff" + b"0" * 16), "shop.jpg", "image/jpeg")},
        content_type="multipart/form-data",
    ).json["image"]

    with pytest.raises(RuntimeError):
        with session_scope(app) as s:
            key = delete_image(s, s.get(Business, bid), image["id"], s.get(User, owner))
            assert key.startswith(f"businesses/{bid}/gallery/")
            raise RuntimeError("commit failed")

    # the row was rolled back, so its file must still be there
    with session_scope(app) as s:
        assert s.get(BusinessImage, image["id"]) is not None
    assert client.get(image["image_url"]).status_code == 200


def test_admin_approval_disable_and_feature(app, make_user, login_as, client):
    owner = make_user("owner@example.com")
    make_user("admin@example.com", roles=("category_manager",))
    bid = _create(login_as("owner@example.com")).json["business"]["id"]
    admin = login_as("admin@example.com")

    r = admin.get("/admin/businesses?status=pending")
    assert [b["id"] for b in r.json["businesses"]] == [bid]
    assert admin.get("/admin/businesses?status=archived").status_code == 400

    r = admin.post(f"/admin/businesses/{bid}/approve")
    assert r.json["business"]["approval_status"] == "approved"

    r = admin.post(f"/admin/businesses/{bid}/feature", json={"is_featured": True})
    assert r.json["business"]["is_featured"] is True

    r = admin.post(f"/admin/businesses/{bid}/disable", json={"reason": "Fake listing"})
    assert r.json["business"]["is_disabled"] is True
    assert client.get(f"/api/businesses/{bid}").status_code == 404
    assert client.get("/api/businesses").json["businesses"] == []
    # owners still see their own disabled business
    assert login_as("owner@example.com").get(f"/api/businesses/{bid}").status_code == 200

    admin.post(f"/admin/businesses/{bid}/enable")
    assert client.get(f"/api/businesses/{bid}").status_code == 200

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == owner).one()
        assert n.type == "business_update"
        actions = {e.action for e in s.query(AuditEvent).all()}
    assert {"approve_business", "feature_business", "disable_business", "enable_business"} <= actions


def test_admin_reject_notifies_owner_with_reason(app, make_user, login_as):
    owner = make_user("owner@example.com")
    make_user("admin@example.com", roles=("category_manager",))
    bid = _create(login_as("owner@example.com")).json["business"]["id"]

    r = login_as("admin@example.com").post(f"/admin/businesses/{bid}/reject", json={"reason": 42})
    assert r.status_code == 200
    assert r.json["business"]["approval_status"] == "rejected"
    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == owner).one()
        assert n.title == "Your business was rejected"
        assert n.body == "42"

def test_category_filter_and_search(make_user, login_as, client):
    make_user("owner@example.com")
    c = login_as("owner@example.com")
    _create(c, name="Clay Works", category="handmade")
    _create(c, name="Spice Route", category="food", description="Masalas and pickles")

    r = client.get("/api/businesses?category=food")
    assert [b["name"] for b in r.json["businesses"]] == ["Spice Route"]

    r = client.get("/api/businesses?q=pickle")
    assert [b["name"] for b in r.json["businesses"]] == ["Spice Route"]
