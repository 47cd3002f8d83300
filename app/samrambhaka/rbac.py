from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g
from sqlalchemy.orm import Session

from app.samrambhaka.constants import ADMIN_ROLES, PERMISSIONS, PROFILE_ROLE_ADMIN, ROLE_PERMISSIONS
from app.samrambhaka.models import Permission, Role, User


def _profile_is_admin(user: User) -> bool:
    profile = user.profile
    return bool(profile and profile.role == PROFILE_ROLE_ADMIN)


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    if _profile_is_admin(user):
        return True
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_permission_keys(user: User | None) -> list[str]:
    if not user or not user.is_active:
        return []
    if _profile_is_admin(user):
        return sorted(PERMISSIONS)
    return sorted({p.key for r in user.roles for p in r.permissions})


def is_admin(user: User | None) -> bool:
    """Any admin role, or the profile-level admin flag."""
    if not user or not user.is_active:
        return False
    return bool(user.roles) or _profile_is_admin(user)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 so clients can send the user to sign in.
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def seed_roles_and_permissions(s: Session) -> dict[str, Role]:
    """
    Idempotently create every permission and admin role with its grants.
    Returns roles keyed by role key.
    """
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])

    roles: dict[str, Role] = {r.key: r for r in s.query(Role).all()}
    for key, name in ADMIN_ROLES.items():
        role = roles.get(key)
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
            roles[key] = role
        for perm_key in ROLE_PERMISSIONS[key]:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
    s.flush()
    return roles
