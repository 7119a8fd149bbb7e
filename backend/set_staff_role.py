#!/usr/bin/env python3
"""
Grants a back-office role to a Firebase user (custom claim `role`) and mirrors
it to `users/{uid}` so the user receives order notifications.

Usage: python set_staff_role.py <user_email> [staff|admin|customer]
"""
import argparse
import logging
import sys

from firebase_admin import auth

from storefront.config import get_db
from storefront.repositories import users as users_repo
from storefront.routers.users import apply_role_claim

logger = logging.getLogger("storefront.staff")


def set_staff_role(user_email: str, role: str) -> bool:
    try:
        user = auth.get_user_by_email(user_email)
    except auth.UserNotFoundError:
        logger.error("User not found: %s", user_email)
        return False

    apply_role_claim(user.uid, role)
    users_repo.set_role(get_db(), user.uid, role, email=user.email, name=user.display_name)
    logger.info("Role %s set for %s (%s)", role, user_email, user.uid)
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Set the back-office role of a Firebase user.")
    parser.add_argument("email")
    parser.add_argument("role", nargs="?", default="admin", choices=["staff", "admin", "customer"])
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    # get_db() initialises the Firebase app before any auth call
    get_db()
    if not set_staff_role(args.email, args.role):
        return 1
    print("The user will need to sign out and sign in again for the change to take effect.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
