"""Start the profile REST API."""
import argparse
import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from collabstr_scraper.api.server import create_app
from collabstr_scraper.config import create_store_engine, get_api_settings
from collabstr_scraper.data.profile_store import get_profile_store


def parse_args():
    settings = get_api_settings()
    parser = argparse.ArgumentParser(description="Start the Collabstr scraper API server")
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Host to bind to (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to bind to (default: {settings.port})",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database path (default: PROFILE_DB_PATH or data/collabstr_profiles.db)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable Flask debug mode",
    )
    return parser.parse_args()


def main():
    args = parse_args()

    if not os.getenv("API_LOG_LEVEL"):
        os.environ["API_LOG_LEVEL"] = "DEBUG" if args.debug else "INFO"

    store = get_profile_store(create_store_engine(args.db_path))
    print(f"Starting Collabstr scraper API on http://{args.host}:{args.port}")
    print(f"Profile endpoints are served under http://{args.host}:{args.port}/api")

    app = create_app(store=store)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
