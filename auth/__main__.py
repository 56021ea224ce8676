"""Command line interface for issuing session tokens"""
import argparse
import json
from datetime import timedelta

from config import settings_conf
from . import SESSION_EXPIRY_DAYS, issue_session_token

def main(argv=None):
    """Print a session token for a user as JSON"""
    parser = argparse.ArgumentParser(description="Issue a session token signed with jwt_secret")
    parser.add_argument("user_id", type=int, help="User the session belongs to")
    parser.add_argument("--days", type=int, default=SESSION_EXPIRY_DAYS, help="Session lifetime in days")
    args = parser.parse_args(argv)

    # The API process would not accept a token signed with this process's random secret
    if not settings_conf.get('jwt_secret'):
        parser.error("jwt_secret is not set in settings.conf")

    print(json.dumps(issue_session_token(args.user_id, expires_in=timedelta(days=args.days)), indent=2))

if __name__ == "__main__":
    main()
