"""
Unit tests for the authentication module.

Tests the GoogleAuth class for OAuth2 authentication and per-party
credential management.
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest

from gcontact_relay.auth.google_auth import (
    SCOPES,
    AuthenticationError,
    GoogleAuth,
)

ALICE = "alice@example.com"
BOB = "bob@example.com"


@pytest.fixture
def auth(tmp_path):
    return GoogleAuth(parties=[ALICE, BOB], config_dir=tmp_path)


def write_token(auth, party, **extra):
    """Write a token file for a party."""
    token_path = auth._get_token_path(party)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(json.dumps({"token": "t", **extra}))
    return token_path


class TestGoogleAuthInitialization:
    """Tests for GoogleAuth initialization."""

    def test_custom_config_dir(self, tmp_path):
        auth = GoogleAuth(parties=[ALICE, BOB], config_dir=tmp_path / "custom")
        assert auth.config_dir == (tmp_path / "custom").resolve()
        assert auth.credentials_path == auth.config_dir / "credentials.json"

    def test_config_dir_from_environment_variable(self, tmp_path):
        env_dir = tmp_path / "env_config"
        with patch.dict(os.environ, {"GCONTACT_RELAY_CONFIG_DIR": str(env_dir)}):
            auth = GoogleAuth(parties=[ALICE, BOB])
            assert auth.config_dir == env_dir.resolve()

    def test_scopes_cover_contacts_and_sheets(self):
        assert "https://www.googleapis.com/auth/contacts" in SCOPES
        assert "https://www.googleapis.com/auth/spreadsheets" in SCOPES


class TestTokenPaths:
    """Tests for per-party token files."""

    def test_token_path_per_party(self, auth):
        assert auth._get_token_path(ALICE).name == "token_alice_example.com.json"
        assert auth._get_token_path(ALICE) != auth._get_token_path(BOB)

    def test_unknown_party_rejected(self, auth):
        with pytest.raises(ValueError, match="Unknown party"):
            auth._get_token_path("eve@example.com")


class TestGetCredentials:
    """Tests for loading stored credentials."""

    def test_no_token_returns_none(self, auth):
        assert auth.get_credentials(ALICE) is None
        assert not auth.is_authenticated(ALICE)

    @patch("gcontact_relay.auth.google_auth.Credentials")
    def test_valid_token(self, mock_credentials, auth):
        write_token(auth, ALICE)
        creds = MagicMock(valid=True)
        mock_credentials.from_authorized_user_file.return_value = creds

        assert auth.get_credentials(ALICE) is creds

    @patch("gcontact_relay.auth.google_auth.Request")
    @patch("gcontact_relay.auth.google_auth.Credentials")
    def test_expired_token_is_refreshed_and_saved(
        self, mock_credentials, mock_request, auth
    ):
        """Refreshing should keep the stored account email."""
        token_path = write_token(auth, ALICE, email=ALICE)
        creds = MagicMock(valid=False, expired=True, refresh_token="r")
        creds.to_json.return_value = json.dumps({"token": "new"})
        mock_credentials.from_authorized_user_file.return_value = creds

        assert auth.get_credentials(ALICE) is creds
        creds.refresh.assert_called_once()
        saved = json.loads(token_path.read_text())
        assert saved == {"token": "new", "email": ALICE}

    @patch("gcontact_relay.auth.google_auth.Credentials")
    def test_invalid_token_file(self, mock_credentials, auth):
        write_token(auth, ALICE)
        mock_credentials.from_authorized_user_file.side_effect = ValueError("bad")

        assert auth.get_credentials(ALICE) is None

    def test_require_credentials_raises_with_hint(self, auth):
        with pytest.raises(AuthenticationError, match="gcontact-relay auth --party"):
            auth.require_credentials(BOB)


class TestAuthenticate:
    """Tests for the OAuth flow."""

    def test_missing_client_secrets(self, auth):
        with pytest.raises(FileNotFoundError, match="credentials file not found"):
            auth.authenticate(ALICE)

    @patch("gcontact_relay.auth.google_auth.InstalledAppFlow")
    def test_runs_flow_and_stores_email(self, mock_flow, auth):
        auth.credentials_path.write_text("{}")
        new_creds = MagicMock()
        new_creds.to_json.return_value = json.dumps({"token": "fresh"})
        mock_flow.from_client_secrets_file.return_value.run_local_server.return_value = (
            new_creds
        )

        with patch.object(auth, "_fetch_user_email", return_value=ALICE):
            assert auth.authenticate(ALICE, force_reauth=True) is new_creds

        assert auth.get_account_email(ALICE) == ALICE
        token_path = auth._get_token_path(ALICE)
        assert token_path.stat().st_mode & 0o777 == 0o600

    @patch("gcontact_relay.auth.google_auth.InstalledAppFlow")
    def test_flow_failure_raises(self, mock_flow, auth):
        auth.credentials_path.write_text("{}")
        mock_flow.from_client_secrets_file.side_effect = Exception("denied")

        with pytest.raises(AuthenticationError, match="denied"):
            auth.authenticate(ALICE, force_reauth=True)


class TestCredentialManagement:
    """Tests for clearing credentials and reporting status."""

    def test_clear_credentials(self, auth):
        write_token(auth, ALICE)

        assert auth.clear_credentials(ALICE)
        assert not auth.clear_credentials(ALICE)

    def test_auth_status(self, auth):
        write_token(auth, BOB, email=BOB)

        status = auth.get_auth_status()

        assert status[ALICE]["token_exists"] is False
        assert status[BOB]["token_exists"] is True
        assert status[BOB]["email"] == BOB
        assert status["credentials_exist"] is False
        assert status["config_dir"] == str(auth.config_dir)
