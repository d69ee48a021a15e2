#!/usr/bin/env python3
"""Print the unverified claims and expiry of a bearer token.

Usage:
    python scripts/inspect_token.py <token>

    # Or read the token from the environment:
    AUTHSESSION_TOKEN=eyJ... python scripts/inspect_token.py

The signature is NOT checked. Use this to debug expiry and refresh timing,
never to decide whether a token is trustworthy.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def describe_token(token: str) -> dict | None:
    """Collect claims and expiry details, or None when the token is unreadable."""
    from authsession.service.claims import (
        EXPIRY_LEAD_SECONDS,
        decode_claims,
        expiration_instant,
        is_expired,
        time_until_expiration,
    )

    claims = decode_claims(token)
    if claims is None:
        return None
    expires_ms = expiration_instant(token)
    return {
        "subject": claims.subject,
        "issued_at": claims.issued_at,
        "expires_at": claims.expires_at,
        "expires_at_iso": (
            datetime.fromtimestamp(expires_ms / 1000, tz=timezone.utc).isoformat()
            if expires_ms is not None
            else None
        ),
        "expired": is_expired(token),
        "lead_seconds": EXPIRY_LEAD_SECONDS,
        "ms_until_expiration": time_until_expiration(token),
        "claims": dict(claims.extra),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Inspect the unverified claims of a bearer token",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "token",
        nargs="?",
        default=os.environ.get("AUTHSESSION_TOKEN"),
        help="Token to inspect (or set AUTHSESSION_TOKEN env var)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )

    args = parser.parse_args()

    if not args.token:
        print("Error: token argument or AUTHSESSION_TOKEN environment variable required")
        sys.exit(1)

    details = describe_token(args.token)
    if details is None:
        print("Error: not a readable three-segment token")
        sys.exit(1)

    if args.json:
        print(json.dumps(details, indent=2, default=str))
        return

    print(f"Subject:     {details['subject']}")
    print(f"Issued at:   {details['issued_at']}")
    print(f"Expires at:  {details['expires_at_iso'] or 'no exp claim'}")
    status = "EXPIRED" if details["expired"] else "valid"
    print(f"Status:      {status} (lead buffer {details['lead_seconds']}s)")
    if details["ms_until_expiration"] is not None:
        print(f"Remaining:   {details['ms_until_expiration'] // 1000}s")
    if details["claims"]:
        print("Other claims:")
        for name, value in sorted(details["claims"].items()):
            print(f"  {name}: {value}")


if __name__ == "__main__":
    main()
