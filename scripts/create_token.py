#!/usr/bin/env python3
"""
Create an API token entry for config.yaml.

Prints the raw bearer token once, followed by the YAML snippet to paste under
``auth.api_tokens``. Only the bcrypt hash is ever stored in configuration.

Usage:
    python scripts/create_token.py <user_id> <username> <ADMIN|OPERATOR|VIEWER>
"""

import sys
from pathlib import Path

import yaml

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from subca.models.auth import Role
from subca.services.auth_service import IdentityProvider


def build_entry(user_id: str, username: str, role: Role) -> tuple[str, dict]:
    """
    Generate a token and its config entry.

    Returns:
        Tuple of (raw token, api_tokens entry)
    """
    token = IdentityProvider.generate_token()
    entry = {
        "user_id": user_id,
        "username": username,
        "role": role.value,
        "token_hash": IdentityProvider.hash_token(token),
    }
    return token, entry


def main() -> int:
    if len(sys.argv) != 4:
        print(__doc__)
        return 1

    user_id, username, role_name = sys.argv[1:]
    try:
        role = Role(role_name.upper())
    except ValueError:
        print(f"Unknown role: {role_name} (expected one of {', '.join(r.value for r in Role)})")
        return 1

    token, entry = build_entry(user_id, username, role)
    print(f"Bearer token (shown once): {token}")
    print()
    print("Add to config.yaml under auth.api_tokens:")
    print(yaml.safe_dump([entry], sort_keys=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
