import io

from app.samrambhaka.db import session_scope
from app.samrambhaka.modules.businesses.models import Business, BusinessFollow
from app.samrambhaka.modules.moderation.models import BlockedWord
from app.samrambhaka.modules.notifications.models import Notification
from app.samrambhaka.modules.posts.models import Post


def _business(app, owner_id: int, **fields) -> int:
    with session_scope(app) as s:
        b = Business(owner_id=owner_id, name=fields.pop("name", "Clay Works"), category="handmade", approval_status="approved", **fields)
        s.add(b)
        s.flush()
        return b.id


def test_create_post_and_feed(make_user, login_as, client):
    make_user("a@example.com", full_name="Asha")
    c = login_as("a@example.com")

    r = c.post("/api/posts", json={"content": "  First pots of the season  "})
    assert r.status_code == 201
    post = r.json["post"]
    assert r.json["success"] is True
    assert post["content"] == "First pots of the season"
    assert post["author"]["full_name"] == "Asha"
    assert post["like_count"] == 0

    r = client.get("/api/posts/feed")
    assert [p["id"] for p in r.json["posts"]] == [post["id"]]
    assert r.json["next_before_id"] is None


def test_create_post_validation(make_user, login_as):
    other = make_user("b@example.com")
    make_user("a@example.com")
    c = login_as("a@example.com")

    r = c.post("/api/posts", json={"content": "   "})
    assert r.status_code == 400
    assert r.json["error"] == "Post must have content, image, or video"

    r = c.post("/api/posts", json={"content": "hi", "user_id": other})
    assert r.status_code == 403

    r = c.post("/api/posts", json={"youtube_url": "not a url"})
    assert r.status_code == 400

    r = c.post("/api/posts", json={"youtube_url": "https://youtu.be/abc"})
    assert r.status_code == 201


def test_post_as_business_requires_ownership_and_notifies_followers(app, make_user, login_as):
    owner = make_user("owner@example.com", full_name="Owner")
    fan = make_user("fan@example.com")
    make_user("other@example.com")
    bid = _business(app, owner)
    with session_scope(app) as s:
        s.add(BusinessFollow(business_id=bid, user_id=fan))

    r = login_as("other@example.com").post("/api/posts", json={"content": "hi", "business_id": bid})
    assert r.status_code == 403
    assert r.json["error"] == "You don't have permission to post for this business"

    r = login_as("owner@example.com").post("/api/posts", json={"content": "New glaze!", "business_id": bid})
    assert r.status_code == 201
    assert r.json["post"]["business"]["id"] == bid

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == fan).one()
        assert n.type == "business_post"
        assert s.query(Notification).filter(Notification.user_id == owner).count() == 0


def test_post_blocked_words(app, make_user, login_as):
    with session_scope(app) as s:
        s.add(BlockedWord(word="scam"))
        s.add(BlockedWord(word="get rich"))
    make_user("a@example.com")
    c = login_as("a@example.com")

    assert c.post("/api/posts", json={"content": "This is a SCAM!"}).status_code == 400
    assert c.post("/api/posts", json={"content": "how to get   rich quick"}).status_code == 400
    # whole words only
    assert c.post("/api/posts", json={"content": "scampi for dinner"}).status_code == 201


def test_feed_pagination_and_hidden_posts(app, make_user, login_as, client):
    uid = make_user("a@example.com")
    with session_scope(app) as s:
        for i in range(5):
            s.add(Post(user_id=uid, content=f"post {i}"))
        s.add(Post(user_id=uid, content="hidden", is_hidden=True))

    r = client.get("/api/posts/feed?limit=2")
    first = r.json["posts"]
    assert len(first) == 2
    assert r.json["next_before_id"] == first[-1]["id"]

    r = client.get(f"/api/posts/feed?limit=10&before_id={first[-1]['id']}")
    assert len(r.json["posts"]) == 3
    assert all(p["content"] != "hidden" for p in r.json["posts"])

    # the author still sees their hidden post on their own profile
    r = login_as("a@example.com").get(f"/api/profiles/{uid}/posts")
    assert len(r.json["posts"]) == 6
    assert len(client.get(f"/api/profiles/{uid}/posts").json["posts"]) == 5


def test_like_toggle_and_notification(app, make_user, login_as):
    a = make_user("a@example.com")
    b = make_user("b@example.com", full_name="Bala")
    with session_scope(app) as s:
        p = Post(user_id=a, content="hello")
        s.add(p)
        s.flush()
        post_id = p.id

    cb = login_as("b@example.com")
    r = cb.post(f"/api/posts/{post_id}/like")
    assert r.json == {"liked": True, "like_count": 1}
    r = cb.get(f"/api/posts/{post_id}")
    assert r.json["post"]["liked_by_me"] is True

    r = cb.post(f"/api/posts/{post_id}/like")
    assert r.json == {"liked": False, "like_count": 0}

    # liking your own post does not notify you
    login_as("a@example.com").post(f"/api/posts/{post_id}/like")
    with session_scope(app) as s:
        rows = s.query(Notification).filter(Notification.user_id == a).all()
        assert [n.type for n in rows] == ["like"]


def test_comments_add_list_delete(app, make_user, login_as, client):
    a = make_user("a@example.com")
    make_user("b@example.com")
    make_user("c@example.com")
    with session_scope(app) as s:
        p = Post(user_id=a, content="hello")
        s.add(p)
        s.flush()
        post_id = p.id

    cb = login_as("b@example.com")
    r = cb.post(f"/api/posts/{post_id}/comments", json={"content": "Lovely"})
    assert r.status_code == 201
    comment_id = r.json["comment"]["id"]
    assert cb.post(f"/api/posts/{post_id}/comments", json={"content": " "}).status_code == 400

    r = client.get(f"/api/posts/{post_id}/comments")
    assert [c["content"] for c in r.json["comments"]] == ["Lovely"]
    assert client.get(f"/api/posts/{post_id}").json["post"]["comment_count"] == 1

    # neither the commenter nor the post author: refused
    r = login_as("c@example.com").delete(f"/api/posts/{post_id}/comments/{comment_id}")
    assert r.status_code == 403
    # post author may remove comments on their post
    r = login_as("a@example.com").delete(f"/api/posts/{post_id}/comments/{comment_id}")
    assert r.status_code == 200
    assert client.get(f"/api/posts/{post_id}/comments").json["comments"] == []


def test_delete_post_author_only(app, make_user, login_as, client):
    a = make_user("a@example.com")
    make_user("b@example.com")
    with session_scope(app) as s:
        p = Post(user_id=a, content="hello")
        s.add(p)
        s.flush()
        post_id = p.id

    assert login_as("b@example.com").delete(f"/api/posts/{post_id}").status_code == 403
    assert login_as("a@example.com").delete(f"/api/posts/{post_id}").status_code == 200
    assert client.get(f"/api/posts/{post_id}").status_code == 404


def test_post_image_upload(make_user, login_as):
    make_user("a@example.com")
    c = login_as("a@example.com")
    r = c.post(
        "/api/posts/image",
        data={"file": (io.BytesIO(b"GIF89a" + b"0" * 16), "x.gif", "image/gif")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    url = r.json["url"]
    assert url.startswith("/media/posts/")

    r = c.post("/api/posts", json={"image_url": f"http://localhost{url}"})
    assert r.status_code == 201
