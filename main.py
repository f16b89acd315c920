#!/usr/bin/env python3
"""
oauthgate - OAuth2 login gate for session-based web applications.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep oauthgate imports lazy (inside functions) so `--help` works without
# the web stack installed.
#


def check_config() -> int:
    """Validate configuration from the environment and print a summary."""
    from oauthgate.auth.config import load_gate_config
    from oauthgate.auth.errors import ConfigInvalid

    try:
        cfg = load_gate_config()
    except ConfigInvalid as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    if cfg.oauth2 is None:
        print("OAuth2: not configured (all protected routes are public)")
    else:
        print(f"OAuth2: callback={cfg.oauth2.redirect_url} scopes={' '.join(cfg.oauth2.scopes)}")
    print(f"Session: ttl={cfg.session_ttl_seconds}s secure_cookie={cfg.cookie_secure}")
    return 0


def list_admins() -> int:
    from oauthgate.auth.admins import AdminRegistry
    from oauthgate.auth.config import load_gate_config

    admins = AdminRegistry(load_gate_config().admins).get_admins()
    if not admins:
        print("(no admins configured: every authenticated user is an admin)")
    for email in admins:
        print(email)
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="OAuth2 login gate for session-based web applications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate OAUTH2_* / SESSION_* environment configuration
  python main.py --check-config

  # Show the normalized admin list from GATE_ADMINS
  python main.py --list-admins

  # Run the server
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--check-config", action="store_true", help="Validate configuration and exit")
    parser.add_argument("--list-admins", action="store_true", help="Print the normalized admin emails and exit")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    if args.check_config:
        sys.exit(check_config())

    if args.list_admins:
        sys.exit(list_admins())

    if args.serve:
        from oauthgate.api.server import run

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
