#!/usr/bin/env python3
"""Assign a role to a user (idempotent).

Usage:
  python scripts/assign_role.py --email ana@example.com --role executive
  python scripts/assign_role.py --email ana@example.com --role client --revoke
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.finsync.constants import Role
from app.finsync.models import User, UserRole
from app.finsync.rbac import assign_role, get_user_roles
from scripts._db_utils import database_url_from_env, script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", required=True, choices=[r.value for r in Role], help="Role to assign")
    parser.add_argument("--revoke", action="store_true", help="Remove the role instead of assigning it")
    args = parser.parse_args()

    role = Role(args.role)
    with script_session(database_url_from_env()) as s:
        user = s.query(User).filter(User.email.ilike(args.email.strip())).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            sys.exit(1)
        if args.revoke:
            deleted = (
                s.query(UserRole)
                .filter(UserRole.user_id == user.id)
                .filter(UserRole.role == role.value)
                .delete(synchronize_session=False)
            )
            print(f"Removed {role.value} from {user.email}" if deleted else f"{user.email} did not have {role.value}")
        else:
            assign_role(s, user.id, role)
            print(f"Assigned {role.value} to {user.email}")
        s.flush()
        current = sorted(r.value for r in get_user_roles(s, user.id))
        print("Roles now: " + (", ".join(current) or "(none)"))


if __name__ == "__main__":
    main()
