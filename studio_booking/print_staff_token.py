"""Print a staff access token to stdout.

Usage:
    python -m studio_booking.print_staff_token <staff-id> [--minutes N]
"""
import argparse
import sys

from studio_booking.auth import jwt_handler
from studio_booking.core import config


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Mint a bearer token for staff endpoints.")
    parser.add_argument("staff_id", help="Identifier recorded on bookings created with this token.")
    parser.add_argument("--minutes", type=int, default=config.STAFF_JWT_EXPIRES_MINUTES)
    args = parser.parse_args(argv)

    staff_id = args.staff_id.strip()
    if not staff_id:
        print("Staff id must not be empty.", file=sys.stderr)
        sys.exit(1)
    if args.minutes <= 0:
        print("Token lifetime must be positive.", file=sys.stderr)
        sys.exit(1)

    print(jwt_handler.create_access_token(staff_id, role=jwt_handler.ROLE_STAFF, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
