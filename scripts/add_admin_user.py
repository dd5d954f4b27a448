#!/usr/bin/env python3
import argparse
import sys
from pathlib import Path

WEB_ROOT = Path(__file__).resolve().parents[1] / "srv" / "web"
if str(WEB_ROOT) not in sys.path:
    sys.path.insert(0, str(WEB_ROOT))

from portfolio.config import load_env_file, load_settings  # noqa: E402
from portfolio.db import ContentStore  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Allow an email address to sign in to the admin area")
    parser.add_argument("email")
    parser.add_argument("--name", default=None)
    parser.add_argument("--db", default=None, help="SQLite path (defaults to PORTFOLIO_DATABASE_PATH)")
    args = parser.parse_args()

    load_env_file()
    settings = load_settings()
    db_path = Path(args.db).expanduser() if args.db else settings.database_path
    store = ContentStore(db_path, locales=settings.supported_locales, admin_emails=settings.admin_emails)

    existing = store.get_user_by_email(args.email)
    try:
        user = store.create_user(args.email, args.name)
    except ValueError as exc:
        raise SystemExit(str(exc))

    store.record_audit(
        event_type="admin.user.add",
        result="noop" if existing else "success",
        actor_user_id=None,
        details={"email": user.email, "source": "cli"},
    )
    verb = "Already present" if existing else "Added"
    print(f"{verb}: {user.email} ({user.id}) in {db_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
