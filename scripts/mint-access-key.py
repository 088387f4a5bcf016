#!/usr/bin/env python3
"""Print an access key for Field Capture clients.

The key is signed with JWT_SECRET_KEY, so run this with the same
environment (or .env) the API server uses.

Usage:
    python3 scripts/mint-access-key.py                     # anon key, no expiry
    python3 scripts/mint-access-key.py --role service_role --days 90
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "api-server"))

from auth import ALLOWED_ROLES, create_access_token  # noqa: E402


def main():
    p = argparse.ArgumentParser(description="Mint a Field Capture access key")
    p.add_argument("--role", choices=ALLOWED_ROLES, default="anon")
    p.add_argument("--days", type=int, default=None, help="Expire after this many days (default: never)")
    args = p.parse_args()

    if args.days is not None and args.days <= 0:
        print("ERROR: --days must be positive", file=sys.stderr)
        sys.exit(1)

    print(create_access_token(role=args.role, expires_days=args.days))


if __name__ == "__main__":
    main()
