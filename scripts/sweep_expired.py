"""Delete expired authorization sessions and long-revoked tokens.

Meant to run periodically (cron/systemd timer) next to the bridge::

    python -m scripts.sweep_expired
    python -m scripts.sweep_expired --database ./data/app.db --token-retention 3600
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone

from pydantic import ValidationError

from oauth_bridge.clients import SQLiteOAuthStore
from oauth_bridge.core.config import get_settings
from oauth_bridge.core.logging import configure_logging
from oauth_bridge.dependencies import get_token_cipher_service

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Remove expired authorization sessions and revoked tokens."
    )
    parser.add_argument(
        "--database",
        default=None,
        help="SQLite database path (default: DATABASE_PATH from settings).",
    )
    parser.add_argument(
        "--session-retention",
        type=int,
        default=None,
        help="Seconds to keep sessions past expiry (default: USED_CODE_RETENTION).",
    )
    parser.add_argument(
        "--token-retention",
        type=int,
        default=None,
        help="Seconds to keep revoked tokens (default: REVOKED_TOKEN_RETENTION).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    configure_logging(settings.log_level)
    session_retention = (
        args.session_retention
        if args.session_retention is not None
        else settings.oauth.used_code_retention_seconds
    )
    token_retention = (
        args.token_retention
        if args.token_retention is not None
        else settings.oauth.revoked_token_retention_seconds
    )

    try:
        store = SQLiteOAuthStore(
            args.database or settings.database_path, cipher=get_token_cipher_service()
        )
        sessions, tokens = store.delete_expired(
            now=datetime.now(timezone.utc),
            session_retention_seconds=session_retention,
            revoked_token_retention_seconds=token_retention,
        )
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Sweep failed: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    logger.info("Swept %s sessions and %s revoked tokens", sessions, tokens)
    print(f"Deleted {sessions} sessions and {tokens} revoked tokens.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
