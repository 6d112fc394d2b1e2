# scripts/create_admin.py
"""Create an administrator from the command line.

    python -m scripts.create_admin --email admin@example.com --name "Admin" --phone +8801000000000
"""
import argparse
import getpass
import logging
import sys

from dotenv import load_dotenv
from sqlmodel import Session

load_dotenv()

from core.database import create_db_and_tables, engine  # noqa: E402
from core.errors import AppError  # noqa: E402
from routes.setup import admin_exists, create_admin_user  # noqa: E402

logger = logging.getLogger("create_admin")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a BX Library administrator.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--phone", default="")
    parser.add_argument("--password", help="Prompted for when omitted")
    parser.add_argument("--force", action="store_true", help="Create even if an admin already exists")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    create_db_and_tables()

    with Session(engine) as session:
        if admin_exists(session) and not args.force:
            logger.error("❌ An administrator already exists (use --force to add another)")
            return 1

        password = args.password or getpass.getpass("Password: ")
        try:
            user = create_admin_user(
                session, name=args.name, email=args.email, phone=args.phone,
                password=password, method="cli",
            )
        except AppError as e:
            logger.error(f"❌ {e.message}")
            return 1

    print(f"✅ Admin created: {user.email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
