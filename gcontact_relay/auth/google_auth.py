"""
OAuth2 authentication module for the contact relay.

Each party authorizes its own Google account once; the token is stored in
the configuration directory and refreshed silently on later runs.

Provides OAuth 2.0 authentication with support for:
- One stored token per configured party
- Automatic token refresh
- Secure credential storage in user's home directory
- Graceful handling of expired tokens
"""

import json
import logging
import urllib.request
from collections.abc import Iterable
from pathlib import Path
from urllib.error import HTTPError

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from gcontact_relay.utils import resolve_config_dir
from gcontact_relay.utils.paths import token_file_name

# OAuth2 scopes: contacts for the directory, spreadsheets for the sheet buffer
SCOPES = [
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",  # Required by Google when requesting userinfo.email
]

# OAuth client secrets file name inside the config directory
CREDENTIALS_FILE = "credentials.json"

# Default auth timeout for network requests (in seconds)
DEFAULT_AUTH_TIMEOUT = 10

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


class GoogleAuth:
    """
    OAuth2 authentication manager for the two relay parties.

    Attributes:
        parties: Identifiers of the configured parties
        config_dir: Directory for storing credentials and tokens
        credentials_path: Path to OAuth client credentials file

    Usage:
        auth = GoogleAuth(parties=config.parties)

        # Authorize one party (opens a browser)
        creds = auth.authenticate('alice@example.com')

        # Get credentials if already authenticated
        creds = auth.get_credentials('alice@example.com')
    """

    def __init__(
        self,
        parties: Iterable[str],
        config_dir: Path | None = None,
        auth_timeout: int = DEFAULT_AUTH_TIMEOUT,
    ):
        """
        Initialize the authentication manager.

        Args:
            parties: Identifiers of the configured parties
            config_dir: Directory for storing credentials and tokens.
                       Defaults to ~/.gcontact-relay/ or $GCONTACT_RELAY_CONFIG_DIR
            auth_timeout: Timeout in seconds for network requests (default: 10)
        """
        self.parties = tuple(parties)
        self.config_dir = resolve_config_dir(config_dir)
        self.credentials_path = self.config_dir / CREDENTIALS_FILE
        self.auth_timeout = auth_timeout

    def _get_token_path(self, party: str) -> Path:
        """Get the token file path for a party."""
        self._validate_party(party)
        return self.config_dir / token_file_name(party)

    def _validate_party(self, party: str) -> None:
        """
        Validate a party identifier.

        Raises:
            ValueError: If party is not one of the configured parties
        """
        if party not in self.parties:
            raise ValueError(
                f"Unknown party '{party}'. Must be one of: {', '.join(self.parties)}"
            )

    def _ensure_config_dir(self) -> None:
        """Create the configuration directory with mode 700 if it doesn't exist."""
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, mode=0o700)
            logger.debug(f"Created config directory: {self.config_dir}")

    def _load_credentials(self, party: str) -> Credentials | None:
        """
        Load credentials from token file if it exists.

        Returns:
            Credentials object if token file exists and is valid, None otherwise
        """
        token_path = self._get_token_path(party)

        if not token_path.exists():
            logger.debug(f"No token file found for {party}")
            return None

        try:
            creds: Credentials = Credentials.from_authorized_user_file(
                str(token_path), SCOPES
            )
            logger.debug(f"Loaded credentials for {party}")
            return creds
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid token file for {party}: {e}")
            return None

    def _save_credentials(
        self, party: str, creds: Credentials, email: str | None = None
    ) -> None:
        """Save credentials (and the account email, if known) to the token file."""
        self._ensure_config_dir()
        token_path = self._get_token_path(party)

        token_data = json.loads(creds.to_json())
        if email:
            token_data["email"] = email
        elif token_path.exists():
            # Keep the email recorded at authorization time
            try:
                previous = json.loads(token_path.read_text())
                if previous.get("email"):
                    token_data["email"] = previous["email"]
            except (json.JSONDecodeError, OSError):
                pass

        # Write with secure permissions
        token_path.write_text(json.dumps(token_data))
        token_path.chmod(0o600)
        logger.debug(f"Saved credentials for {party}")

    def _refresh_credentials(self, creds: Credentials) -> bool:
        """
        Attempt to refresh expired credentials.

        Returns:
            True if refresh succeeded, False otherwise
        """
        if not creds.refresh_token:
            logger.debug("No refresh token available")
            return False

        try:
            creds.refresh(Request())
            logger.debug("Successfully refreshed credentials")
            return True
        except RefreshError as e:
            logger.warning(f"Failed to refresh credentials: {e}")
            return False

    def _fetch_user_email(self, creds: Credentials) -> str | None:
        """Fetch the authenticated user's email address from Google."""
        try:
            req = urllib.request.Request(USERINFO_URL)
            req.add_header("Authorization", f"Bearer {creds.token}")

            with urllib.request.urlopen(req, timeout=self.auth_timeout) as response:  # nosec B310
                data: dict[str, str] = json.loads(response.read().decode("utf-8"))
                return data.get("email")
        except HTTPError as e:
            logger.debug(f"Failed to fetch user email: {e}")
            return None
        except Exception as e:
            logger.debug(f"Failed to fetch user email: {e}")
            return None

    def get_credentials(self, party: str) -> Credentials | None:
        """
        Get valid credentials for a party if available.

        Attempts to load and refresh credentials without user interaction.

        Returns:
            Valid Credentials object, or None if not available

        Raises:
            ValueError: If party is not configured
        """
        creds = self._load_credentials(party)

        if creds is None:
            return None

        if creds.valid:
            return creds

        # Try to refresh if expired
        if creds.expired and creds.refresh_token and self._refresh_credentials(creds):
            self._save_credentials(party, creds)
            return creds

        return None

    def require_credentials(self, party: str) -> Credentials:
        """
        Get valid credentials for a party or raise.

        Raises:
            AuthenticationError: If the party has not authorized (or the
                token can no longer be refreshed)
        """
        creds = self.get_credentials(party)
        if creds is None:
            raise AuthenticationError(
                f"{party} is not authenticated. "
                f"Run 'gcontact-relay auth --party {party}' first."
            )
        return creds

    def authenticate(self, party: str, force_reauth: bool = False) -> Credentials:
        """
        Authorize a party's Google account.

        If valid credentials exist and force_reauth is False, returns existing
        credentials. Otherwise, initiates OAuth flow to obtain new credentials.

        Args:
            party: Party identifier
            force_reauth: If True, ignore existing credentials and re-authenticate

        Returns:
            Valid Credentials object

        Raises:
            ValueError: If party is not configured
            AuthenticationError: If authentication fails
            FileNotFoundError: If credentials.json is not found
        """
        self._validate_party(party)

        if not force_reauth:
            creds = self.get_credentials(party)
            if creds is not None:
                logger.info(f"Using existing credentials for {party}")
                return creds

        if not self.credentials_path.exists():
            raise FileNotFoundError(
                f"OAuth credentials file not found: {self.credentials_path}\n"
                "Please download your OAuth client credentials from "
                "Google Cloud Console and save them to this location."
            )

        logger.info(f"Starting OAuth flow for {party}")

        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                str(self.credentials_path), SCOPES
            )
            new_creds: Credentials = flow.run_local_server(port=0)
            email = self._fetch_user_email(new_creds)
            self._save_credentials(party, new_creds, email=email)
        except Exception as e:
            logger.error(f"Authentication failed for {party}: {e}")
            raise AuthenticationError(f"Failed to authenticate {party}: {e}") from e

        if email and "@" in party and email.lower() != party.lower():
            logger.warning(
                f"Authorized account {email} differs from party identifier {party}"
            )
        logger.info(f"Successfully authenticated {party}")
        return new_creds

    def is_authenticated(self, party: str) -> bool:
        """True if valid credentials exist for the party."""
        return self.get_credentials(party) is not None

    def clear_credentials(self, party: str) -> bool:
        """
        Remove stored credentials for a party.

        Returns:
            True if credentials were removed, False if they didn't exist
        """
        token_path = self._get_token_path(party)

        if token_path.exists():
            token_path.unlink()
            logger.info(f"Cleared credentials for {party}")
            return True

        return False

    def get_account_email(self, party: str) -> str | None:
        """Email address stored with a party's token, if any."""
        token_path = self._get_token_path(party)
        if not token_path.exists():
            return None
        try:
            token_data: dict[str, str] = json.loads(token_path.read_text())
        except (json.JSONDecodeError, OSError):
            return None
        return token_data.get("email")

    def get_auth_status(self) -> dict[str, object]:
        """
        Get authentication status for every party.

        Returns:
            Dictionary with one entry per party:
            {
                'alice@example.com': {
                    'authenticated': bool,
                    'token_path': str,
                    'token_exists': bool,
                    'email': str | None,
                },
                ...,
                'credentials_path': str,
                'credentials_exist': bool,
                'config_dir': str,
            }
        """
        status: dict[str, object] = {}

        for party in self.parties:
            token_path = self._get_token_path(party)
            status[party] = {
                "authenticated": self.is_authenticated(party),
                "token_path": str(token_path),
                "token_exists": token_path.exists(),
                "email": self.get_account_email(party),
            }

        status["credentials_path"] = str(self.credentials_path)
        status["credentials_exist"] = self.credentials_path.exists()
        status["config_dir"] = str(self.config_dir)

        return status
