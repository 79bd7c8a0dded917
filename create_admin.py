"""Create the first admin account.

    python create_admin.py admin@example.com 'S3cret!' Ada Admin
"""
import argparse
import logging
import sys

from database import db
from errors import Conflict
from schemas import Role, UserCreate
from users import create_user

logger = logging.getLogger("create_admin")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create an admin user")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("first_name", nargs="?", default="Admin")
    parser.add_argument("last_name", nargs="?", default="User")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    existing = db["user"].find_one({"email": args.email})
    if existing and existing.get("role") == Role.ADMIN.value:
        logger.info("Admin %s already exists", args.email)
        return 0
    if existing:
        db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": Role.ADMIN.value}})
        logger.info("Promoted %s to admin", args.email)
        return 0

    try:
        user = create_user(UserCreate(
            email=args.email,
            password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            role=Role.ADMIN,
        ))
    except Conflict as e:
        logger.error("%s", e.detail)
        return 1
    logger.info("Admin created: %s (%s)", user["email"], user["id"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
