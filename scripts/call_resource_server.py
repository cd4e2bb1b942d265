#!/usr/bin/env python3
"""Call the resource server's secured endpoints as a service client.

The client obtains its own access token with the OAuth2 client credentials
grant and sends it as a bearer token.

Usage:
    OAUTH_TOKEN_URL=http://localhost:8080/realms/lab/protocol/openid-connect/token \\
    OAUTH_CLIENT_ID=web-client OAUTH_CLIENT_SECRET=... \\
        python scripts/call_resource_server.py --endpoint secure

Environment Variables:
    RESOURCE_SERVER_URL: Base URL of the resource server (default http://localhost:8081)
    OAUTH_TOKEN_URL: Token endpoint of the identity provider
    OAUTH_CLIENT_ID / OAUTH_CLIENT_SECRET: Client registration
    OAUTH_SCOPE: Optional scope to request
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main():
    parser = argparse.ArgumentParser(
        description="Fetch data from the resource server with a client credentials token",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--endpoint",
        choices=("secure", "admin"),
        default="secure",
        help="Which secured endpoint to call",
    )
    args = parser.parse_args()

    # Import here so settings are read after argument parsing
    from authlab.config import get_settings
    from authlab.service.errors import ServiceError
    from authlab.service.resource_client import ResourceServerClient

    try:
        client = ResourceServerClient.from_settings(get_settings())
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    try:
        with client:
            if args.endpoint == "admin":
                print(client.fetch_admin_data())
            else:
                print(client.fetch_secure_data())
    except ServiceError as e:
        print(f"Error: {e.message}")
        if e.detail:
            print(f"       {e.detail}")
        sys.exit(1)


if __name__ == "__main__":
    main()
