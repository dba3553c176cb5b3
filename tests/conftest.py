"""
Shared fixtures: a routed httpx.MockTransport standing in for Microsoft Graph
and SharePoint REST, plus factories for Graph group payloads.
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

RUN_START = datetime(2024, 6, 1, tzinfo=timezone.utc)


class FakeTenant:
    """Routes requests by (method, path) and records every request it sees."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, handler):
        """handler: dict/list payload, httpx.Response, or callable(request) -> either."""
        self.routes.setdefault((method, path), []).append(handler)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        handlers = self.routes.get(key)
        if not handlers:
            return httpx.Response(404, json={"error": {"code": "NotFound", "message": f"No route {key}"}})
        # Multiple handlers on a route are consumed in order; the last one sticks
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        if callable(handler):
            handler = handler(request)
        if isinstance(handler, httpx.Response):
            return handler
        return httpx.Response(200, json=handler)

    def requests_to(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def transport(self):
        return httpx.MockTransport(self.handle)


@pytest.fixture
def tenant():
    return FakeTenant()


@pytest.fixture
def authenticator():
    auth = Mock()
    auth.acquire_token = AsyncMock(return_value="test-token")
    return auth


def make_group(
    group_id,
    display_name,
    mail_nickname=None,
    visibility="Private",
    age_days=30,
    membership_rule=None,
    is_assignable_to_role=False,
    owners=None,
):
    """Create a Graph /groups item."""
    created = RUN_START - timedelta(days=age_days)
    item = {
        "id": group_id,
        "displayName": display_name,
        "mailNickname": mail_nickname or display_name,
        "createdDateTime": created.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "visibility": visibility,
        "membershipRule": membership_rule,
        "isAssignableToRole": is_assignable_to_role,
        "groupTypes": ["Unified"],
    }
    if owners is not None:
        item["owners"] = [{"id": o} for o in owners]
    return item


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))
