import asyncio
import base64

import httpx
import pytest

from agent_status.config import ZendeskCredentials
from agent_status.exceptions import (
    AuthError,
    DirectoryError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    TransientError,
)
from agent_status.gateway.zendesk_client import ZendeskDirectoryClient
from agent_status.models import CallStatus, PresenceState
from tests.fakes import RecordingSink

CREDENTIALS = ZendeskCredentials(subdomain="acme", email="ops@acme.test", api_token="secret-token")


def run_with(handler, call, credentials=CREDENTIALS, metrics=None):
    """Run `call(client)` against a client whose requests go to `handler`."""

    async def scenario():
        async with ZendeskDirectoryClient(
            lambda: credentials,
            metrics=metrics,
            transport=httpx.MockTransport(handler),
        ) as client:
            return await call(client)

    return asyncio.run(scenario())


def test_get_presence_parses_availability():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"availability": {"agent_state": "Online", "call_status": "on_call"}})

    sink = RecordingSink()
    result = run_with(handler, lambda client: client.get_presence(42), metrics=sink)

    assert result.presence is PresenceState.ONLINE
    assert result.call_status is CallStatus.ON_CALL
    assert seen[0].url == "https://acme.zendesk.com/api/v2/channels/voice/availabilities/42.json"
    expected = base64.b64encode(b"ops@acme.test/token:secret-token").decode()
    assert seen[0].headers["Authorization"] == f"Basic {expected}"
    assert sink.counter("zendesk_api_requests_total", operation="get_presence", status="success") == 1


def test_get_presence_null_call_status_is_no_call():
    def handler(request):
        return httpx.Response(200, json={"availability": {"agent_state": "away", "call_status": None}})

    result = run_with(handler, lambda client: client.get_presence(1))

    assert result.presence is PresenceState.AWAY
    assert result.call_status is CallStatus.NO_CALL


def test_get_presence_missing_availability_is_parse_error():
    def handler(request):
        return httpx.Response(200, json={"user": {}})

    with pytest.raises(ParseError):
        run_with(handler, lambda client: client.get_presence(1))


def test_invalid_json_is_parse_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>maintenance</html>")

    with pytest.raises(ParseError):
        run_with(handler, lambda client: client.get_presence(1))


@pytest.mark.parametrize(
    "status, error_type",
    [
        (401, AuthError),
        (403, AuthError),
        (404, NotFoundError),
        (500, TransientError),
        (503, TransientError),
        (418, DirectoryError),
    ],
)
def test_status_classification(status, error_type):
    def handler(request):
        return httpx.Response(status, json={"error": "nope"})

    with pytest.raises(DirectoryError) as excinfo:
        run_with(handler, lambda client: client.get_presence(1))

    assert type(excinfo.value) is error_type
    assert excinfo.value.status_code == status


def test_rate_limit_carries_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "30"})

    sink = RecordingSink()
    with pytest.raises(RateLimitedError) as excinfo:
        run_with(handler, lambda client: client.get_presence(1), metrics=sink)

    assert excinfo.value.retry_after == 30.0
    assert sink.counter("zendesk_api_requests_total", operation="get_presence", status="rate_limited") == 1


def test_rate_limit_default_retry_after():
    def handler(request):
        return httpx.Response(429)

    with pytest.raises(RateLimitedError) as excinfo:
        run_with(handler, lambda client: client.get_presence(1))

    assert excinfo.value.retry_after == 60.0


def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientError):
        run_with(handler, lambda client: client.get_presence(1))


def test_incomplete_credentials_fail_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    placeholder = ZendeskCredentials(subdomain="acme", email="ops@acme.test", api_token="your_api_token")
    with pytest.raises(AuthError):
        run_with(handler, lambda client: client.get_presence(1), credentials=placeholder)
    assert calls == []


def test_list_agents_follows_pages_and_filters_roles():
    def handler(request):
        if request.url.params.get("page") == "2":
            return httpx.Response(
                200,
                json={
                    "users": [
                        {"id": 3, "name": "Light", "role": "agent", "role_type": 1},
                        {"id": 4, "name": "Customer", "role": "end-user"},
                        {"id": 5, "name": None, "role": "admin", "active": False},
                    ],
                    "next_page": None,
                },
            )
        assert request.url.params.get_list("role[]") == ["agent", "admin"]
        return httpx.Response(
            200,
            json={
                "users": [{"id": 1, "name": "Ann", "email": "ann@acme.test", "role": "agent", "role_type": 0}],
                "next_page": "https://acme.zendesk.com/api/v2/users.json?page=2&per_page=100",
            },
        )

    agents = run_with(handler, lambda client: client.list_agents())

    assert [(agent.id, agent.name) for agent in agents] == [(1, "Ann"), (5, "Agent_5")]
    assert agents[1].active is False


def test_list_agents_bad_request_ends_pagination():
    def handler(request):
        if request.url.params.get("page") == "2":
            return httpx.Response(400, json={"error": "InvalidPagination"})
        return httpx.Response(
            200,
            json={
                "users": [{"id": 1, "name": "Ann", "role": "agent"}],
                "next_page": "https://acme.zendesk.com/api/v2/users.json?page=2",
            },
        )

    agents = run_with(handler, lambda client: client.list_agents())

    assert [agent.id for agent in agents] == [1]


def test_view_ticket_total():
    def handler(request):
        assert request.url.path == "/api/v2/views/77/count.json"
        return httpx.Response(200, json={"view_count": {"view_id": 77, "value": 12, "fresh": False}})

    assert run_with(handler, lambda client: client.get_view_ticket_total(77)) == 12


def test_view_ticket_total_null_means_zero():
    def handler(request):
        return httpx.Response(200, json={"view_count": {"value": None, "fresh": False}})

    assert run_with(handler, lambda client: client.get_view_ticket_total(77)) == 0


@pytest.mark.parametrize("body", [{}, {"view_count": {}}, {"view_count": {"value": "many"}}])
def test_view_ticket_total_malformed(body):
    def handler(request):
        return httpx.Response(200, json=body)

    with pytest.raises(ParseError):
        run_with(handler, lambda client: client.get_view_ticket_total(77))


def test_view_tickets_by_agent_counts_unassigned_as_zero():
    def handler(request):
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json={"tickets": [{"assignee_id": 1}], "next_page": None})
        assert request.url.params.get("per_page") == "100"
        return httpx.Response(
            200,
            json={
                "tickets": [{"assignee_id": 1}, {"assignee_id": 2}, {"assignee_id": None}],
                "next_page": "https://acme.zendesk.com/api/v2/views/77/tickets.json?page=2",
            },
        )

    counts = run_with(handler, lambda client: client.get_view_tickets_by_agent(77))

    assert counts == {1: 2, 2: 1, 0: 1}


def test_client_is_rebuilt_when_credentials_change():
    hosts = []
    current = {"credentials": CREDENTIALS}

    def handler(request):
        hosts.append(request.url.host)
        return httpx.Response(200, json={"availability": {"agent_state": "online"}})

    async def scenario():
        async with ZendeskDirectoryClient(
            lambda: current["credentials"], transport=httpx.MockTransport(handler)
        ) as client:
            await client.get_presence(1)
            current["credentials"] = ZendeskCredentials(
                subdomain="beta", email="ops@beta.test", api_token="other-token"
            )
            await client.get_presence(1)

    asyncio.run(scenario())

    assert hosts == ["acme.zendesk.com", "beta.zendesk.com"]


def test_concurrent_requests_share_one_rebuilt_client(monkeypatch):
    created = []

    class TrackingClient(httpx.AsyncClient):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            created.append(self)

    class YieldingTransport(httpx.MockTransport):
        async def aclose(self):
            await asyncio.sleep(0)

    def handler(request):
        return httpx.Response(200, json={"availability": {"agent_state": "online"}})

    monkeypatch.setattr(httpx, "AsyncClient", TrackingClient)
    current = {"credentials": CREDENTIALS}

    async def scenario():
        client = ZendeskDirectoryClient(lambda: current["credentials"], transport=YieldingTransport(handler))
        await client.get_presence(1)
        current["credentials"] = ZendeskCredentials(subdomain="beta", email="ops@beta.test", api_token="other-token")
        readings = await asyncio.gather(*(client.get_presence(agent_id) for agent_id in range(1, 6)))
        await client.close()
        return readings

    readings = asyncio.run(scenario())

    assert all(reading.presence is PresenceState.ONLINE for reading in readings)
    assert len(created) == 2
    assert all(http_client.is_closed for http_client in created)


def test_base_url_override():
    credentials = ZendeskCredentials(
        subdomain="acme", email="ops@acme.test", api_token="t", base_url="http://proxy.local/zendesk/api/v2/"
    )

    assert ZendeskDirectoryClient.base_url_for(credentials) == "http://proxy.local/zendesk/api/v2"
