"""OAuth2 token lifecycle for the Salesforce REST API."""

import logging
import time
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Callable

import requests
from pydantic import BaseModel, ValidationError

from ...core.models import OAuthToken, TokenResponse
from ...exceptions import AuthenticationFailure, TransientFailure
from ...services.store import StateStore

logger = logging.getLogger(__name__)


class SalesforceCredentials(BaseModel):
    """Connected-app and user credentials."""
    client_id: str = ""
    client_secret: str = ""
    username: str = ""
    password: str = ""
    security_token: str = ""
    refresh_token: str = ""

    @classmethod
    def from_mapping(cls, values: Dict[str, str]) -> "SalesforceCredentials":
        """Build from SALESFORCE_* keyed values (environment or Secret Manager)."""
        return cls(
            client_id=values.get("SALESFORCE_CLIENT_ID", ""),
            client_secret=values.get("SALESFORCE_CLIENT_SECRET", ""),
            username=values.get("SALESFORCE_USERNAME", ""),
            password=values.get("SALESFORCE_PASSWORD", ""),
            security_token=values.get("SALESFORCE_SECURITY_TOKEN", ""),
            refresh_token=values.get("SALESFORCE_REFRESH_TOKEN", ""),
        )

    @property
    def grant_type(self) -> Optional[str]:
        """The grant used to obtain a fresh token without a cached refresh token."""
        if not self.client_id or not self.client_secret:
            return None
        if self.refresh_token:
            return "refresh_token"
        if self.username and self.password:
            return "password"
        return "client_credentials"


class TokenManager:
    """
    Obtains, caches and refreshes the access token.

    The token lives in the state store and is shared by every request in the
    process. Two requests may refresh it at the same time; the second write
    wins and both tokens are valid, so no lock is taken.

    States: unauthenticated (no cached token) -> authenticating ->
    authenticated -> expired (past expires_at, or invalidated after a 401)
    -> authenticating.
    """

    def __init__(
        self,
        session: requests.Session,
        store: StateStore,
        credentials: SalesforceCredentials,
        login_url: str = "https://login.salesforce.com",
        timeout: float = 30.0,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.store = store
        self.credentials = credentials
        self.token_url = f"{login_url.rstrip('/')}/services/oauth2/token"
        self.timeout = timeout
        self.clock = clock
        self.max_attempts = max(max_attempts, 1)
        self.backoff_factor = backoff_factor
        self.sleep = sleep

    def get_token(self) -> OAuthToken:
        """
        Get a valid access token, authenticating or refreshing as needed.

        Raises:
            AuthenticationFailure: If credentials are missing or rejected
            TransientFailure: If the token endpoint cannot be reached
        """
        cached = self.store.get_token()
        now = self.clock()
        if cached and cached.is_valid(now):
            return cached

        if cached and cached.refresh_token:
            try:
                return self._refresh(cached)
            except AuthenticationFailure as e:
                # A rejected refresh token is useless; start over from the configured grant
                logger.warning(f"Token refresh rejected, re-authenticating: {e}")
                self.store.clear_token()

        return self.authenticate()

    def authenticate(self) -> OAuthToken:
        """Obtain a new token using the configured grant."""
        grant = self.credentials.grant_type
        if grant is None:
            raise AuthenticationFailure("Salesforce credentials not configured")

        data = {
            "grant_type": grant,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        if grant == "refresh_token":
            data["refresh_token"] = self.credentials.refresh_token
        elif grant == "password":
            data["username"] = self.credentials.username
            data["password"] = self.credentials.password + self.credentials.security_token

        logger.info(f"Authenticating with Salesforce using {grant} grant")
        return self._exchange(data, previous_refresh_token=self.credentials.refresh_token or None)

    def invalidate(self) -> None:
        """Mark the cached token expired, keeping its refresh token for the next exchange."""
        cached = self.store.get_token()
        if cached is None:
            return
        cached.expires_at = self.clock() - timedelta(seconds=1)
        self.store.save_token(cached)
        logger.info("Cached access token invalidated")

    def clear(self) -> None:
        """Forget the cached token entirely, forcing full re-authentication."""
        self.store.clear_token()

    def _refresh(self, cached: OAuthToken) -> OAuthToken:
        logger.info("Refreshing Salesforce access token")
        data = {
            "grant_type": "refresh_token",
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
            "refresh_token": cached.refresh_token,
        }
        return self._exchange(data, previous_refresh_token=cached.refresh_token)

    def _post(self, data: Dict[str, Any]) -> requests.Response:
        """POST to the token endpoint, retrying network errors and 5xx with exponential backoff."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.post(
                    self.token_url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                error = TransientFailure(f"Token request failed: {e}")
            else:
                if response.status_code < 500:
                    return response
                error = TransientFailure(
                    f"Token endpoint returned HTTP {response.status_code}",
                    status_code=response.status_code,
                    error_body=response.text,
                )

            if attempt < self.max_attempts:
                delay = self.backoff_factor * (2 ** (attempt - 1))
                logger.warning(f"{error}, retrying in {delay:.1f}s (attempt {attempt}/{self.max_attempts})")
                self.sleep(delay)

        logger.error(f"{error} after {self.max_attempts} attempts")
        raise error

    def _exchange(self, data: Dict[str, Any], previous_refresh_token: Optional[str]) -> OAuthToken:
        response = self._post(data)

        try:
            body = response.json()
        except ValueError:
            body = {"error": "invalid_response", "error_description": response.text}

        if response.status_code >= 400 or "error" in body:
            description = body.get("error_description") or body.get("error") or "unknown error"
            self.store.clear_token()
            raise AuthenticationFailure(
                f"Authentication error: {description}",
                status_code=response.status_code,
                error_body=body,
            )

        try:
            token_response = TokenResponse(**body)
        except ValidationError:
            self.store.clear_token()
            raise AuthenticationFailure("Authentication failed: No access token received", error_body=body)

        token = OAuthToken.from_response(token_response, self.clock(), previous_refresh_token)
        self.store.save_token(token)
        logger.info(f"Obtained Salesforce access token, expires at {token.expires_at.isoformat()}")
        return token
