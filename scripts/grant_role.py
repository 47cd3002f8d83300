#!/usr/bin/env python3
"""Grant an admin role to a user (idempotent).

Usage:
  python scripts/grant_role.py --email mod@example.com --role content_moderator
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.samrambhaka.constants import ADMIN_ROLES
from app.samrambhaka.models import Role, User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email to grant the role to")
    parser.add_argument("--role", default="super_admin", choices=sorted(ADMIN_ROLES), help="Admin role key")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///samrambhaka.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print("Role not found. Run python scripts/init_db.py first.")
            return
        if role in (user.roles or []):
            print(f"User already has {args.role}: {args.email}")
            return
        user.roles.append(role)
    print(f"{args.role} granted to {args.email}")


if __name__ == "__main__":
    main()
