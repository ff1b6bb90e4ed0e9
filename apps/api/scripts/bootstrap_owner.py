"""Create the first owner account and profile (ops script).

Owners cannot be invited, so a fresh deployment needs exactly one run of this:

    python scripts/bootstrap_owner.py --email owner@example.org --full-name "Ana Li" --commit

The password is read from BOOTSTRAP_OWNER_PASSWORD or prompted for.
"""

from __future__ import annotations

import getpass
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))


def main() -> int:
    import argparse

    from core.database import get_db_sync
    from core.exceptions import APIException
    from core.password_policy import get_password_requirements_text, validate_password
    from core.validators import is_valid_email
    from models import Profile
    from services.identity_provider import LocalIdentityProvider
    from services.user_service import bootstrap_owner

    parser = argparse.ArgumentParser()
    parser.add_argument("--email", default=os.getenv("BOOTSTRAP_OWNER_EMAIL"), help="owner email")
    parser.add_argument("--full-name", default="", help="owner display name")
    parser.add_argument("--commit", action="store_true", help="Create the owner (default: dry-run)")
    args = parser.parse_args()

    if not args.email or not is_valid_email(args.email):
        print("ERROR: missing or invalid --email (or BOOTSTRAP_OWNER_EMAIL)")
        return 2

    password = os.getenv("BOOTSTRAP_OWNER_PASSWORD") or getpass.getpass("Owner password: ")
    ok, errors = validate_password(password)
    if not ok:
        print("ERROR: weak password")
        for error in errors:
            print(f"  - {error}")
        print(get_password_requirements_text())
        return 2

    db = get_db_sync()
    try:
        owners = db.query(Profile).filter(Profile.role == "owner").count()
        if owners:
            print(f"Note: {owners} owner profile(s) already exist")

        if not args.commit:
            print(f"DRY_RUN: would create owner {args.email.strip().lower()!r}")
            return 0

        try:
            profile = bootstrap_owner(
                db,
                LocalIdentityProvider(db),
                email=args.email,
                password=password,
                full_name=args.full_name.strip(),
            )
        except APIException as e:
            print(f"ERROR: {e.detail}")
            return 1

        print(f">>> Owner created: {profile.id} ({profile.email})")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
