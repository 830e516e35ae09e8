#!/usr/bin/env python3
"""Decode a protobuf user export and print it as JSON.

RUN:  python scripts/decode_export.py users_export.pb [keys/public.pem]

With a public key, each user gets a "signature_valid" field so a bad
export can be inspected record by record (the dashboard itself silently
drops invalid records instead).

Get an export with:
    curl -o users_export.pb http://localhost:3000/users/export
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from pathlib import Path

from userdash.core.errors import DashboardError
from userdash.services.export_codec import decode_users
from userdash.services.integrity import load_public_key, verify_signature


def main(argv: list[str]) -> int:
    if len(argv) not in (2, 3):
        print(__doc__.strip().splitlines()[2], file=sys.stderr)
        return 2

    try:
        export = decode_users(Path(argv[1]).read_bytes())
        public_key = load_public_key(Path(argv[2]).read_bytes()) if len(argv) == 3 else None
    except (OSError, DashboardError) as e:
        print(f"Failed to decode export: {e}", file=sys.stderr)
        return 1

    users = []
    for user in export.users:
        item = asdict(user)
        if public_key is not None:
            item["signature_valid"] = verify_signature(
                user.email_hash, user.signature, public_key
            )
        users.append(item)

    print(
        json.dumps(
            {
                "exported_at": export.exported_at,
                "total_count": export.total_count,
                "users": users,
            },
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
