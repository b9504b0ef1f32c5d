"""Shared fixtures for the sync pipeline tests.

Provides:
- A settable clock
- An in-memory state store and record source
- A fake Salesforce session emulating the token, upsert, lookup and query endpoints
- A fully wired Bridge built on the above

No network and no Google Cloud dependency.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock
from urllib.parse import unquote

import pytest

from crmbridge.connectors.memory import InMemoryRecordSource
from crmbridge.core.bridge import Bridge
from crmbridge.core.config import BridgeSettings
from crmbridge.integrations.salesforce.auth import SalesforceCredentials
from crmbridge.integrations.salesforce.client import SalesforceClient
from crmbridge.models.record import Record
from crmbridge.services.store import InMemoryStateStore


# ── Constants ────────────────────────────────────────────────────────────────

START = datetime(2025, 3, 14, 9, 30, 0)
INSTANCE_URL = "https://example.my.salesforce.com"
API_PREFIX = "/services/data/v58.0"


# ── Test Doubles ─────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode()
        self.text = "" if body is None else json.dumps(body)

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSalesforce:
    """In-memory Salesforce standing in for requests.Session.

    Objects are keyed by (object name, external id value); a PATCH on an
    unknown external id creates the object (201), on a known one updates it
    (204, no body), the way the real upsert endpoint behaves.
    """

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.token_requests: List[Dict[str, Any]] = []
        self.reject_tokens = False
        self.revoked_tokens: set = set()
        # Status codes returned, in order, for the next API calls
        self.fail_next: List[int] = []
        self._ids = 0

    # Token endpoint

    def post(self, url, data=None, headers=None, timeout=None):
        self.token_requests.append(dict(data or {}))
        if self.reject_tokens:
            return FakeResponse(400, {"error": "invalid_grant", "error_description": "authentication failure"})
        return FakeResponse(200, {
            "access_token": f"token-{len(self.token_requests)}",
            "instance_url": INSTANCE_URL,
            "token_type": "Bearer",
            "expires_in": 7200,
        })

    # REST API

    def upserts(self) -> List[Tuple[str, str, Optional[Dict[str, Any]]]]:
        return [c for c in self.calls if c[0] == "PATCH"]

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append((method, url, json))

        token = (headers or {}).get("Authorization", "").replace("Bearer ", "")
        if token in self.revoked_tokens:
            return FakeResponse(401, [{"message": "Session expired or invalid", "errorCode": "INVALID_SESSION_ID"}])

        if self.fail_next:
            status = self.fail_next.pop(0)
            return FakeResponse(status, [{"message": f"Simulated HTTP {status}", "errorCode": "SIMULATED"}])

        path = url.split(API_PREFIX, 1)[1]
        parts = path.strip("/").split("/")

        if parts[0] == "sobjects" and len(parts) == 4:
            key = (parts[1], unquote(parts[3]))
            if method == "PATCH":
                if key in self.objects:
                    self.objects[key].update(json or {})
                    return FakeResponse(204)
                self._ids += 1
                remote_id = f"a0X{self._ids:012d}"
                self.objects[key] = {"Id": remote_id, **(json or {})}
                return FakeResponse(201, {"id": remote_id, "success": True, "created": True, "errors": []})
            if method == "GET":
                if key in self.objects:
                    return FakeResponse(200, {"Id": self.objects[key]["Id"]})
                return FakeResponse(404, [{"message": "The requested resource does not exist",
                                           "errorCode": "NOT_FOUND"}])

        if parts[0] == "sobjects" and len(parts) == 2 and method == "POST":
            self._ids += 1
            remote_id = f"a0X{self._ids:012d}"
            self.objects[(parts[1], remote_id)] = {"Id": remote_id, **(json or {})}
            return FakeResponse(201, {"id": remote_id, "success": True, "errors": []})

        if parts[0] == "sobjects" and len(parts) == 3 and method == "PATCH":
            for (object_name, _), obj in self.objects.items():
                if object_name == parts[1] and obj["Id"] == parts[2]:
                    obj.update(json or {})
                    return FakeResponse(204)

        if parts[0] == "query":
            return FakeResponse(200, {
                "totalSize": 1,
                "done": True,
                "records": [{"Id": "00D000000000001", "Name": "Waste Trading Ltd"}],
            })

        return FakeResponse(404, [{"message": "Unknown endpoint", "errorCode": "NOT_FOUND"}])


def make_record(record_id: str = "101", **overrides: Any) -> Record:
    """A publishable, approved waste listing with every required field."""
    fields = {
        "material_type": "Plastic",
        "quantity": 10,
        "average_weight_per_load": "5.5",
        "country_of_waste": "United Kingdom",
        "seller_id": "42",
        "approved_listing": "1",
        "listing_status": "Approved",
        "listing_sold": "0",
        "end_date": "20250430",
        "media": ["11", "12"],
    }
    fields.update(overrides.pop("fields", {}))
    data = {
        "record_id": record_id,
        "record_type": "waste_listing",
        "status": "publish",
        "title": f"Listing {record_id}",
        "content": "Baled HDPE offcuts",
        "fields": fields,
    }
    data.update(overrides)
    return Record(**data)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def source() -> InMemoryRecordSource:
    return InMemoryRecordSource([make_record("101")])


@pytest.fixture
def salesforce() -> FakeSalesforce:
    return FakeSalesforce()


@pytest.fixture
def credentials() -> SalesforceCredentials:
    return SalesforceCredentials(client_id="client-id", client_secret="client-secret")


@pytest.fixture
def client(salesforce, store, credentials, clock) -> SalesforceClient:
    return SalesforceClient(credentials, store, instance_url=INSTANCE_URL, session=salesforce, clock=clock)


@pytest.fixture
def alerter() -> MagicMock:
    mock = MagicMock()
    mock.alert.return_value = True
    return mock


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def bridge(store, source, client, alerter, clock, sleeps) -> Bridge:
    return Bridge(BridgeSettings(), store, source, client, alerter=alerter, clock=clock, sleep=sleeps.append)
