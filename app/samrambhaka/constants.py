"""
Central constants for the Samrambhaka application.
"""
from __future__ import annotations

# Admin roles (user_roles) and what each may do.
ROLE_SUPER_ADMIN = "super_admin"
ROLE_CONTENT_MODERATOR = "content_moderator"
ROLE_CATEGORY_MANAGER = "category_manager"

ADMIN_ROLES = {
    ROLE_SUPER_ADMIN: "Super Admin",
    ROLE_CONTENT_MODERATOR: "Content Moderator",
    ROLE_CATEGORY_MANAGER: "Category Manager",
}

PERMISSIONS = {
    "admin.view": "Admin: view panel",
    "posts.moderate": "Posts: hide/unhide/delete",
    "reports.manage": "Reports: review and resolve",
    "users.moderate": "Users: block, suspend, disable chat",
    "users.roles": "Users: grant/revoke admin roles",
    "blocked_words.manage": "Blocked words: manage",
    "businesses.manage": "Businesses: approve/disable/feature",
    "communities.manage": "Communities: disable/enable",
    "content.manage": "Promotions and featured content: manage",
    "settings.manage": "Platform settings: manage",
    "activity.view": "Admin activity log: view",
}

ROLE_PERMISSIONS = {
    ROLE_SUPER_ADMIN: tuple(PERMISSIONS),
    ROLE_CONTENT_MODERATOR: (
        "admin.view",
        "posts.moderate",
        "reports.manage",
        "users.moderate",
        "blocked_words.manage",
    ),
    ROLE_CATEGORY_MANAGER: (
        "admin.view",
        "businesses.manage",
        "communities.manage",
        "content.manage",
    ),
}

# Profile.role value that grants every admin permission (alongside "user").
PROFILE_ROLE_ADMIN = "admin"

BUSINESS_CATEGORIES = (
    "food",
    "tech",
    "handmade",
    "services",
    "agriculture",
    "retail",
    "education",
    "health",
    "finance",
    "other",
)
BUSINESS_APPROVAL_STATUSES = ("pending", "approved", "rejected")

COMMUNITY_ROLE_ADMIN = "admin"
COMMUNITY_ROLE_MEMBER = "member"

NOTIFICATION_TYPES = frozenset(
    {
        "like",
        "comment",
        "new_post",
        "follow",
        "community_discussion",
        "community_update",
        "community_join",
        "message",
        "business_update",
        "business_follow",
        "business_post",
        "moderation",
    }
)

REPORTED_TYPES = ("post", "comment", "user", "community", "business", "message")
REPORT_STATUSES = ("pending", "reviewing", "resolved", "dismissed")

PROMOTION_CONTENT_TYPES = ("banner", "video", "announcement")
FEATURED_CONTENT_TYPES = ("post", "business", "community")

# Limits
MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
MAX_POST_LENGTH = 5000
MAX_COMMENT_LENGTH = 2000
MAX_MESSAGE_LENGTH = 2000
MAX_DISCUSSION_LENGTH = 2000
MAX_SUSPENSION_DAYS = 3650
FEED_DEFAULT_LIMIT = 20
FEED_MAX_LIMIT = 50
NOTIFICATIONS_LIMIT = 50
DISCUSSIONS_LIMIT = 50
SEARCH_LIMIT = 20
DISCOVERY_LIMIT = 3

# Default hide/delete reasons for admin post actions
DEFAULT_HIDE_REASON = "Hidden by admin due to report"
DEFAULT_DELETE_REASON = "Deleted by admin"

# Signups through phone OTP use a synthetic email in this domain.
PHONE_SIGNUP_EMAIL_DOMAIN = "@phone.local"
