#!/usr/bin/env python3
"""
One-time script to obtain the Google OAuth refresh token used by the
Google Meet provider.

Usage:
    python scripts/get_token.py

Requirements:
    - GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET set in .env or the environment
    - Or pass them as arguments: python scripts/get_token.py --client-id=XXX --client-secret=YYY
"""
import argparse
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from google_auth_oauthlib.flow import InstalledAppFlow

from meeting_service.core.config import settings
from meeting_service.providers.google_meet import SCOPES


def main():
    parser = argparse.ArgumentParser(description="Get Google OAuth refresh token for Google Meet")
    parser.add_argument("--client-id", help="Google OAuth Client ID")
    parser.add_argument("--client-secret", help="Google OAuth Client Secret")
    args = parser.parse_args()

    client_id = args.client_id or settings.google_client_id
    client_secret = args.client_secret or settings.google_client_secret
    if not client_id or not client_secret:
        print("Error: GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required.")
        print("Set them in .env or pass --client-id and --client-secret.")
        sys.exit(1)

    client_config = {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }
    flow = InstalledAppFlow.from_client_config(client_config, SCOPES)

    # Allow HTTP for the localhost redirect in the copy-paste flow
    os.environ["OAUTHLIB_INSECURE_TRANSPORT"] = "1"
    flow.redirect_uri = "http://localhost:8080/"

    auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")
    print("Open this URL in a browser and authorize calendar event access:")
    print()
    print(auth_url)
    print()
    print("You will be redirected to a localhost URL that fails to load.")
    redirect_response = input("Paste that full redirect URL here: ").strip()

    flow.fetch_token(authorization_response=redirect_response)
    print()
    print("Add the following to your .env file:")
    print()
    print(f"GOOGLE_REFRESH_TOKEN={flow.credentials.refresh_token}")


if __name__ == "__main__":
    main()
