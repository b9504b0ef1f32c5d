"""Salesforce REST API client for external-id based record sync."""

import logging
import time
from datetime import datetime
from typing import List, Optional, Dict, Any, Callable
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ...core.models import UpsertResult, RemoteError, QueryResponse, ConnectionCheck, OAuthToken
from ...exceptions import (
    SalesforceAPIError, AuthenticationFailure, TransientFailure, PermanentFailure, ConfigurationError
)
from ...services.store import StateStore
from .auth import SalesforceCredentials, TokenManager

logger = logging.getLogger(__name__)

# PATCH is safe to retry: upserts are keyed by the external id
RETRY_METHODS = frozenset(["GET", "PATCH", "DELETE"])


def _error_message(response: requests.Response) -> str:
    """Extract the first error message from a Salesforce error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return RemoteError(**body[0]).message
    if isinstance(body, dict):
        return body.get("message") or body.get("error_description") or str(body)
    return str(body)


def _error_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class SalesforceClient:
    """Client for the Salesforce REST API."""

    def __init__(
        self,
        credentials: SalesforceCredentials,
        store: StateStore,
        login_url: str = "https://login.salesforce.com",
        instance_url: Optional[str] = None,
        api_version: str = "v58.0",
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the Salesforce client.

        Args:
            credentials: Connected-app and user credentials
            store: State store holding the shared token cache
            login_url: OAuth login host
            instance_url: Fallback instance URL when the token response has none
            api_version: REST API version, e.g. v58.0
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request (and per token exchange) for network errors and 5xx responses
            backoff_factor: Exponential backoff factor between attempts
            session: Pre-built session, mainly for tests
            clock: Time source for token expiry
            sleep: Used for the token exchange backoff
        """
        self.instance_url = instance_url.rstrip('/') if instance_url else None
        self.api_version = api_version
        self.timeout = timeout

        if session is None:
            # Configure session with retries
            session = requests.Session()
            retry_strategy = Retry(
                total=max_attempts - 1,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=RETRY_METHODS,
                backoff_factor=backoff_factor,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

            session.headers.update({
                'Accept': 'application/json',
                'User-Agent': 'CRM-Bridge/1.0'
            })
        self.session = session
        self.tokens = TokenManager(session, store, credentials, login_url, timeout, clock,
                                   max_attempts=max_attempts, backoff_factor=backoff_factor, sleep=sleep)

    def _base_url(self, token: OAuthToken) -> str:
        instance_url = token.instance_url or self.instance_url
        if not instance_url:
            raise ConfigurationError("Salesforce instance URL unknown")
        return f"{instance_url.rstrip('/')}/services/data/{self.api_version}"

    def _send(self, token: OAuthToken, method: str, endpoint: str,
              params: Optional[Dict[str, Any]] = None, data: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = endpoint if endpoint.startswith("http") else f"{self._base_url(token)}{endpoint}"
        headers = {'Authorization': f'Bearer {token.access_token}'}
        if data is not None:
            headers['Content-Type'] = 'application/json'

        started = time.monotonic()
        try:
            logger.debug(f"Making {method} request to {url} with params: {params}")
            response = self.session.request(
                method, url, params=params, json=data, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Salesforce API request failed: {method} {endpoint}: {e}")
            raise TransientFailure(f"Request failed: {e}")

        logger.info(f"Salesforce API {method} {endpoint} -> {response.status_code} "
                    f"({time.monotonic() - started:.2f}s)")
        return response

    def _make_request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      data: Optional[Dict[str, Any]] = None, allow_not_found: bool = False) -> requests.Response:
        """Make an authenticated request to the Salesforce API.

        A 401 invalidates the cached token; the request is retried once with a
        fresh one. Only the final outcome reaches the caller.

        Raises:
            AuthenticationFailure: If the request is still rejected after re-authenticating
            TransientFailure: On network errors or 5xx after the retry policy
            PermanentFailure: On any other error response
        """
        token = self.tokens.get_token()
        response = self._send(token, method, endpoint, params, data)

        if response.status_code == 401:
            logger.warning(f"Salesforce rejected access token for {method} {endpoint}, re-authenticating")
            self.tokens.invalidate()
            token = self.tokens.get_token()
            response = self._send(token, method, endpoint, params, data)
            if response.status_code == 401:
                self.tokens.clear()
                raise AuthenticationFailure(
                    f"Access token rejected: {_error_message(response)}",
                    status_code=401,
                    error_body=_error_body(response),
                )

        status = response.status_code
        if status == 404 and allow_not_found:
            return response
        if status >= 500 or status == 429:
            raise TransientFailure(
                f"HTTP {status}: {_error_message(response)}", status_code=status, error_body=_error_body(response)
            )
        if status >= 300:
            raise PermanentFailure(
                f"HTTP {status}: {_error_message(response)}", status_code=status, error_body=_error_body(response)
            )
        return response

    @staticmethod
    def _external_id_path(object_name: str, external_id_field: str, external_id_value: Any) -> str:
        return f"/sobjects/{object_name}/{external_id_field}/{quote(str(external_id_value), safe='')}"

    def upsert(self, object_name: str, external_id_field: str, external_id_value: Any,
               payload: Dict[str, Any]) -> UpsertResult:
        """Create or update the record addressed by an external id.

        Args:
            object_name: Remote object API name
            external_id_field: External id field on the object
            external_id_value: Local record id
            payload: Flat field -> value map

        Returns:
            UpsertResult with the remote id and whether the record was created
        """
        endpoint = self._external_id_path(object_name, external_id_field, external_id_value)
        # The addressed external id must not be repeated in the body
        body = {k: v for k, v in payload.items() if k != external_id_field}

        response = self._make_request('PATCH', endpoint, data=body)

        if response.content:
            data = response.json()
            if data.get("id"):
                return UpsertResult(
                    remote_id=data["id"],
                    created=response.status_code == 201 or bool(data.get("created")),
                )

        # 204 No Content: updated, the id has to be looked up
        existing = self.find_by_external_id(object_name, external_id_field, external_id_value)
        if existing is None:
            raise PermanentFailure(
                f"Upsert of {object_name} {external_id_value} returned no id and the record was not found",
                status_code=response.status_code,
            )
        return UpsertResult(remote_id=existing["Id"], created=False)

    def find_by_external_id(self, object_name: str, external_id_field: str,
                            external_id_value: Any, fields: Optional[List[str]] = None) -> Optional[Dict[str, Any]]:
        """Look up a record by external id. Returns None when it does not exist."""
        endpoint = self._external_id_path(object_name, external_id_field, external_id_value)
        params = {"fields": ",".join(fields or ["Id"])}
        response = self._make_request('GET', endpoint, params=params, allow_not_found=True)
        if response.status_code == 404:
            return None
        return response.json()

    def create(self, object_name: str, data: Dict[str, Any]) -> str:
        """Create a record and return its id."""
        response = self._make_request('POST', f"/sobjects/{object_name}", data=data)
        return response.json()["id"]

    def update(self, object_name: str, record_id: str, data: Dict[str, Any]) -> None:
        """Update a record by its Salesforce id."""
        self._make_request('PATCH', f"/sobjects/{object_name}/{record_id}", data=data)

    def query(self, soql: str) -> List[Dict[str, Any]]:
        """Run a SOQL query, following pagination."""
        response = QueryResponse(**self._make_request('GET', "/query", params={"q": soql}).json())
        records = list(response.records)
        while not response.done and response.nextRecordsUrl:
            token = self.tokens.get_token()
            instance_url = (token.instance_url or self.instance_url or "").rstrip('/')
            page = self._make_request('GET', f"{instance_url}{response.nextRecordsUrl}")
            response = QueryResponse(**page.json())
            records.extend(response.records)
        logger.info(f"Query returned {len(records)} records")
        return records

    def get_organization(self) -> Dict[str, Any]:
        """Fetch the organization record, used as a connectivity check."""
        records = self.query("SELECT Id, Name FROM Organization LIMIT 1")
        return records[0] if records else {}

    def test_connection(self) -> ConnectionCheck:
        """Attempt authentication and a trivial API call.

        Returns:
            ConnectionCheck telling authentication and network problems apart
        """
        try:
            self.tokens.clear()
            token = self.tokens.get_token()
            organization = self.get_organization()
        except AuthenticationFailure as e:
            return ConnectionCheck(success=False, message=f"Authentication failed: {e}",
                                   failure_kind=e.kind.value)
        except TransientFailure as e:
            return ConnectionCheck(success=False, message=f"Network error: {e}", failure_kind=e.kind.value)
        except (SalesforceAPIError, ConfigurationError) as e:
            return ConnectionCheck(success=False, message=f"API error: {e}", failure_kind="permanent")

        name = organization.get("Name", "unknown organization")
        return ConnectionCheck(
            success=True,
            message=f"Connected to {name}",
            organization_id=organization.get("Id"),
            instance_url=token.instance_url or self.instance_url,
        )


def create_client_from_env(store: StateStore, credentials: Optional[Dict[str, str]] = None,
                           **kwargs) -> SalesforceClient:
    """Create a Salesforce client using environment variables.

    Args:
        store: State store for the token cache
        credentials: SALESFORCE_* values; read from the environment when omitted
        **kwargs: Passed through to SalesforceClient

    Raises:
        ValueError: If no usable credentials are configured
    """
    from ...services.secrets import credentials_from_env
    from ...core.config import get_optional_env

    sf_credentials = SalesforceCredentials.from_mapping(credentials or credentials_from_env())
    if sf_credentials.grant_type is None:
        raise ValueError("SALESFORCE_CLIENT_ID and SALESFORCE_CLIENT_SECRET environment variables are required")

    kwargs.setdefault("instance_url", get_optional_env("SALESFORCE_INSTANCE_URL") or None)
    return SalesforceClient(credentials=sf_credentials, store=store, **kwargs)
