"""Tests for the expiry sweeping script."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from pathlib import Path

from oauth_bridge.clients.sqlite_store import SQLiteOAuthStore
from oauth_bridge.dependencies import get_token_cipher_service
from oauth_bridge.models.oauth import AuthorizationSession, SessionStatus
from scripts import sweep_expired


def test_sweep_removes_stale_sessions(tmp_path: Path, capsys) -> None:
    database = tmp_path / "sweep.db"
    store = SQLiteOAuthStore(str(database), cipher=get_token_cipher_service())
    old = datetime.now(timezone.utc) - timedelta(days=1)
    store.insert_session(
        AuthorizationSession(
            code="stale",
            client_id="mcp_client",
            redirect_uri="https://app.example.com/cb",
            code_challenge="E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM",
            status=SessionStatus.EXCHANGED,
            created_at=old,
            expires_at=old + timedelta(minutes=10),
            used=True,
        )
    )

    exit_code = sweep_expired.main(["--database", str(database)])

    assert exit_code == sweep_expired.EXIT_OK
    assert "Deleted 1 sessions and 0 revoked tokens." in capsys.readouterr().out
    assert store.find_session("stale") is None
