#!/usr/bin/env python3
"""User administration from the shell.

Usage:
    python scripts/manage_users.py create-admin <email> <name> [department]
    python scripts/manage_users.py set-role <email> <role>

create-admin prompts for the password. Roles: user, manager, admin.
Admins see /api/dashboard/stats; admins and managers can approve/reject
(see APPROVER_ROLES).
"""
import getpass
import os
import sys

# Ensure repo root is in path
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, REPO_ROOT)

from src.auth.tokens import hash_password  # noqa: E402
from src.core import db  # noqa: E402
from src.core.errors import ValidationError  # noqa: E402

ROLES = ("user", "manager", "admin")


def create_admin(email, name, department=""):
    password = getpass.getpass(f"Password for {email}: ")
    if not password:
        print("FAIL: empty password")
        return 1
    try:
        user_id = db.create_user(email, name, department, hash_password(password), role="admin")
    except ValidationError as e:
        print(f"FAIL: {e.message}")
        return 1
    print(f"OK: admin {email} created (id={user_id})")
    return 0


def set_role(email, role):
    if role not in ROLES:
        print(f"FAIL: role must be one of {', '.join(ROLES)}")
        return 1
    if not db.set_user_role(email, role):
        print(f"FAIL: no account for {email}")
        return 1
    print(f"OK: {email} is now {role}")
    return 0


def main(argv):
    db.init_db()
    if len(argv) >= 3 and argv[0] == "create-admin":
        return create_admin(*argv[1:4])
    if len(argv) == 3 and argv[0] == "set-role":
        return set_role(argv[1], argv[2].lower())
    print(__doc__)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
