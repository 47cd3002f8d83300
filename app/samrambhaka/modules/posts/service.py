from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import FEED_DEFAULT_LIMIT, MAX_COMMENT_LENGTH, MAX_POST_LENGTH
from app.samrambhaka.errors import ForbiddenError, NotFoundError, ValidationError
from app.samrambhaka.modules.businesses.models import BusinessFollow
from app.samrambhaka.modules.businesses.service import business_summary, get_owned_business
from app.samrambhaka.modules.moderation.service import ensure_clean_text
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.posts.models import Comment, Post, PostLike
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import ensure_profile, profile_summary
from app.samrambhaka.uploads import store_image
from app.samrambhaka.utils import clean_str, is_valid_url, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.samrambhaka.models import User


_MEDIA_FIELDS = ("image_url", "youtube_url", "instagram_url")


def _display_name(p: Profile | None) -> str:
    if p is None:
        return "Someone"
    return p.full_name or p.username or "Someone"


def validate_post_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    content = clean_str(payload.get("content"))
    media = [clean_str(payload.get(f)) for f in _MEDIA_FIELDS]
    if not content and not any(media):
        errors.append("Post must have content, image, or video")
    if content and len(content) > MAX_POST_LENGTH:
        errors.append(f"Post content must be {MAX_POST_LENGTH} characters or fewer.")
    for field, value in zip(_MEDIA_FIELDS, media):
        if value and not is_valid_url(value):
            errors.append(f"{field} must be an http(s) URL.")
    return errors


def create_post(s: "Session", payload: dict, user: "User") -> Post:
    """
    Create a post as `user`, optionally on behalf of a business they own.
    Followers of that business are notified.
    """
    body_user_id = parse_int(payload.get("user_id"))
    if body_user_id is not None and body_user_id != user.id:
        raise ForbiddenError("user_id does not match the signed-in user.")

    author = ensure_profile(s, user)
    if author.is_blocked:
        raise ForbiddenError("Your account is blocked.")

    business = None
    business_id = parse_int(payload.get("business_id"))
    if payload.get("business_id") not in (None, "") and business_id is None:
        raise ValidationError("business_id must be an integer.")
    if business_id is not None:
        business = get_owned_business(s, business_id, user, message="You don't have permission to post for this business")
        if business.is_disabled:
            raise ForbiddenError("This business has been disabled.")

    errors = validate_post_payload(payload)
    if errors:
        raise ValidationError(errors)
    content = clean_str(payload.get("content"))
    ensure_clean_text(s, content, "Post")

    now = datetime.utcnow()
    post = Post(
        user_id=author.id,
        business_id=business.id if business else None,
        content=content,
        image_url=clean_str(payload.get("image_url")),
        youtube_url=clean_str(payload.get("youtube_url")),
        instagram_url=clean_str(payload.get("instagram_url")),
        created_at=now,
        updated_at=now,
    )
    s.add(post)
    s.flush()

    if business is not None:
        follower_ids = [
            r[0]
            for r in s.query(BusinessFollow.user_id).filter(BusinessFollow.business_id == business.id).all()
        ]
        for follower_id in follower_ids:
            notify(
                s,
                user_id=follower_id,
                type="business_post",
                title=f"New post from {business.name}",
                body=(content or "")[:140] or None,
                data={"business_id": business.id, "post_id": post.id},
                actor_id=author.id,
            )

    record_event(
        s,
        actor=user,
        action="post.create",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"business_id": post.business_id},
    )
    return post


def upload_post_image(s: "Session", file: "FileStorage | None", user: "User", business_id: Any = None) -> str:
    """Store an image for a post. Business uploads are keyed under the business id."""
    owner = user.id
    bid = parse_int(business_id)
    if bid is not None:
        owner = get_owned_business(s, bid, user).id
    key, url = store_image(f"posts/{owner}", file)
    record_event(s, actor=user, action="post.image_upload", entity_type="Post", metadata={"storage_key": key})
    return url


def _visible_query(s: "Session"):
    return (
        s.query(Post)
        .join(Profile, Profile.id == Post.user_id)
        .filter(Post.is_hidden.is_(False), Profile.is_blocked.is_(False))
    )


def feed(s: "Session", *, limit: int = FEED_DEFAULT_LIMIT, before_id: int | None = None) -> list[Post]:
    q = _visible_query(s)
    if before_id is not None:
        q = q.filter(Post.id < before_id)
    return q.order_by(Post.id.desc()).limit(limit).all()


def list_user_posts(s: "Session", user_id: int, *, viewer: "User | None") -> list[Post]:
    q = s.query(Post).filter(Post.user_id == user_id)
    if not viewer or viewer.id != user_id:
        q = q.filter(Post.is_hidden.is_(False))
    return q.order_by(Post.id.desc()).all()


def list_business_posts(s: "Session", business_id: int) -> list[Post]:
    return _visible_query(s).filter(Post.business_id == business_id).order_by(Post.id.desc()).all()


def get_post_for_viewer(s: "Session", post_id: int, *, viewer: "User | None", viewer_is_admin: bool) -> Post:
    post = s.get(Post, post_id)
    if not post:
        raise NotFoundError("Post not found.")
    if post.is_hidden and not viewer_is_admin and not (viewer and viewer.id == post.user_id):
        raise NotFoundError("Post not found.")
    return post


def _counts(s: "Session", model, post_ids: list[int]) -> dict[int, int]:
    if not post_ids:
        return {}
    rows = (
        s.query(model.post_id, func.count(model.id))
        .filter(model.post_id.in_(post_ids))
        .group_by(model.post_id)
        .all()
    )
    return {pid: int(n) for pid, n in rows}


def posts_to_dicts(s: "Session", posts: list[Post], *, viewer_id: int | None) -> list[dict[str, Any]]:
    ids = [p.id for p in posts]
    likes = _counts(s, PostLike, ids)
    comments = _counts(s, Comment, ids)
    liked: set[int] = set()
    if viewer_id and ids:
        liked = {
            r[0]
            for r in s.query(PostLike.post_id).filter(PostLike.user_id == viewer_id, PostLike.post_id.in_(ids)).all()
        }
    out = []
    for p in posts:
        out.append(
            {
                "id": p.id,
                "user_id": p.user_id,
                "business_id": p.business_id,
                "content": p.content,
                "image_url": p.image_url,
                "youtube_url": p.youtube_url,
                "instagram_url": p.instagram_url,
                "is_featured": p.is_featured,
                "is_hidden": p.is_hidden,
                "hidden_reason": p.hidden_reason if p.is_hidden else None,
                "created_at": p.created_at.isoformat() if p.created_at else None,
                "updated_at": p.updated_at.isoformat() if p.updated_at else None,
                "author": profile_summary(p.author),
                "business": business_summary(p.business),
                "like_count": likes.get(p.id, 0),
                "comment_count": comments.get(p.id, 0),
                "liked_by_me": p.id in liked,
            }
        )
    return out


def comment_to_dict(c: Comment) -> dict[str, Any]:
    return {
        "id": c.id,
        "post_id": c.post_id,
        "user_id": c.user_id,
        "content": c.content,
        "author": profile_summary(c.author),
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


def delete_post(s: "Session", post: Post, user: "User") -> None:
    if post.user_id != user.id:
        raise ForbiddenError("Only the author can delete this post.")
    record_event(s, actor=user, action="post.delete", entity_type="Post", entity_id=str(post.id))
    s.delete(post)


def toggle_like(s: "Session", post: Post, user: "User") -> dict[str, Any]:
    me = ensure_profile(s, user)
    existing = s.query(PostLike).filter(PostLike.post_id == post.id, PostLike.user_id == me.id).one_or_none()
    if existing:
        s.delete(existing)
        liked = False
    else:
        s.add(PostLike(post_id=post.id, user_id=me.id))
        liked = True
        notify(
            s,
            user_id=post.user_id,
            type="like",
            title="New like",
            body=f"{_display_name(me)} liked your post",
            data={"post_id": post.id},
            actor_id=me.id,
        )
    s.flush()
    count = s.query(func.count(PostLike.id)).filter(PostLike.post_id == post.id).scalar() or 0
    return {"liked": liked, "like_count": int(count)}


def list_comments(s: "Session", post_id: int) -> list[Comment]:
    return (
        s.query(Comment)
        .join(Profile, Profile.id == Comment.user_id)
        .filter(Comment.post_id == post_id, Profile.is_blocked.is_(False))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )


def add_comment(s: "Session", post: Post, raw_content: Any, user: "User") -> Comment:
    content = clean_str(raw_content)
    if not content:
        raise ValidationError("Comment cannot be empty.")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment must be {MAX_COMMENT_LENGTH} characters or fewer.")
    ensure_clean_text(s, content, "Comment")
    me = ensure_profile(s, user)
    if me.is_blocked:
        raise ForbiddenError("Your account is blocked.")

    now = datetime.utcnow()
    comment = Comment(post_id=post.id, user_id=me.id, content=content, created_at=now, updated_at=now)
    s.add(comment)
    s.flush()
    notify(
        s,
        user_id=post.user_id,
        type="comment",
        title="New comment",
        body=f"{_display_name(me)} commented: {content[:100]}",
        data={"post_id": post.id, "comment_id": comment.id},
        actor_id=me.id,
    )
    record_event(s, actor=user, action="comment.create", entity_type="Comment", entity_id=str(comment.id), metadata={"post_id": post.id})
    return comment


def delete_comment(s: "Session", post: Post, comment_id: int, user: "User") -> None:
    comment = s.get(Comment, comment_id)
    if not comment or comment.post_id != post.id:
        raise NotFoundError("Comment not found.")
    if user.id not in (comment.user_id, post.user_id):
        raise ForbiddenError("You cannot delete this comment.")
    record_event(s, actor=user, action="comment.delete", entity_type="Comment", entity_id=str(comment.id), metadata={"post_id": post.id})
    s.delete(comment)
