import os
import sys
from datetime import datetime
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.samrambhaka.constants import PROFILE_ROLE_ADMIN, ROLE_SUPER_ADMIN
from app.samrambhaka.models import User
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.rbac import seed_roles_and_permissions
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/super admin in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@samrambhaka.app").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///samrambhaka.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        roles = seed_roles_and_permissions(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
            s.flush()
        if s.get(Profile, user.id) is None:
            now = datetime.utcnow()
            s.add(Profile(id=user.id, full_name="Administrator", role=PROFILE_ROLE_ADMIN, created_at=now, updated_at=now))
        if roles[ROLE_SUPER_ADMIN] not in user.roles:
            user.roles.append(roles[ROLE_SUPER_ADMIN])

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
