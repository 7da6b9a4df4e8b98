"""
Zendesk directory client.

Fetches agent voice availability, the agent roster and view ticket counts
from the Zendesk REST API. Handles pagination and classifies failures into
transient, rate-limited, authentication, not-found and parse errors so the
monitor can decide how to react.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import httpx

from agent_status.config import ZendeskCredentials
from agent_status.exceptions import (
    AuthError,
    DirectoryError,
    NotFoundError,
    ParseError,
    RateLimitedError,
    TransientError,
)
from agent_status.models import UNASSIGNED_AGENT_ID, AgentRecord, CallStatus, PresenceReading, PresenceState
from agent_status.observability import MetricsSink, get_logger, guard_metrics

DEFAULT_RETRY_AFTER = 60.0
LIGHT_AGENT_ROLE_TYPE = 1

QueryParams = Union[Dict[str, Any], Sequence[Tuple[str, Any]], None]


class DirectoryClient(Protocol):
    """Operations the monitor needs from the remote directory."""

    async def get_presence(self, agent_id: int) -> PresenceReading:
        ...

    async def list_agents(self) -> List[AgentRecord]:
        ...

    async def get_view_ticket_total(self, view_id: int) -> int:
        ...

    async def get_view_tickets_by_agent(self, view_id: int) -> Dict[int, int]:
        ...


class ZendeskDirectoryClient:
    """
    Zendesk API client for presence, roster and view lookups.

    Credentials are read from a provider before every request so changes
    made to the configuration take effect without a restart; the underlying
    HTTP client is rebuilt whenever they change.
    """

    def __init__(
        self,
        credentials_provider: Callable[[], Optional[ZendeskCredentials]],
        timeout: float = 30.0,
        metrics: Optional[MetricsSink] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        agent_page_limit: int = 20,
        ticket_page_limit: int = 50,
    ):
        """
        Initialize the Zendesk client.

        Args:
            credentials_provider: Callable returning the current credentials
            timeout: Request timeout in seconds
            metrics: Optional sink for request telemetry
            transport: Optional httpx transport (used by tests)
            agent_page_limit: Maximum roster pages to follow
            ticket_page_limit: Maximum view ticket pages to follow
        """
        self.credentials_provider = credentials_provider
        self.timeout = timeout
        self.metrics = guard_metrics(metrics) if metrics is not None else None
        self.transport = transport
        self.agent_page_limit = agent_page_limit
        self.ticket_page_limit = ticket_page_limit
        self.logger = get_logger("zendesk.client")

        self._http_client: Optional[httpx.AsyncClient] = None
        self._credentials: Optional[ZendeskCredentials] = None

    @staticmethod
    def base_url_for(credentials: ZendeskCredentials) -> str:
        """Compute the API base URL for a set of credentials."""
        if credentials.base_url:
            return credentials.base_url.rstrip("/")
        return f"https://{credentials.subdomain}.zendesk.com/api/v2"

    async def _ensure_client(self) -> httpx.AsyncClient:
        credentials = self.credentials_provider()
        if credentials is None or not credentials.is_complete:
            raise AuthError("Zendesk credentials are not configured")

        if self._http_client is None or credentials != self._credentials:
            # Swap before awaiting so concurrent callers reuse the new client
            previous = self._http_client
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url_for(credentials),
                auth=httpx.BasicAuth(f"{credentials.email}/token", credentials.api_token or ""),
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": "application/json"},
                transport=self.transport,
            )
            self._credentials = credentials
            self.logger.info("Zendesk client initialized", base_url=self.base_url_for(credentials))
            if previous is not None:
                await previous.aclose()

        return self._http_client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._credentials = None

    async def __aenter__(self) -> "ZendeskDirectoryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _record(self, operation: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("zendesk_api_requests_total", {"operation": operation, "status": status})

    async def _get_json(
        self,
        operation: str,
        url: str,
        params: QueryParams = None,
        end_on_bad_request: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Issue a GET request and decode the JSON object it returns.

        Args:
            operation: Operation name for logs and metrics
            url: Path relative to the API base, or an absolute next_page URL
            params: Query parameters
            end_on_bad_request: Return None on HTTP 400 (end of pagination)

        Raises:
            DirectoryError: Classified according to the failure
        """
        client = await self._ensure_client()

        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            self._record(operation, "timeout")
            raise TransientError(f"Request timeout during {operation}") from e
        except httpx.HTTPError as e:
            self._record(operation, "transport_error")
            raise TransientError(f"Transport error during {operation}: {e}") from e

        if end_on_bad_request and response.status_code == 400:
            self._record(operation, "end_of_pages")
            return None

        self._raise_for_status(operation, response)

        try:
            data = response.json()
        except ValueError as e:
            self._record(operation, "parse_error")
            raise ParseError(f"Invalid JSON response during {operation}") from e

        if not isinstance(data, dict):
            self._record(operation, "parse_error")
            raise ParseError(f"Unexpected response shape during {operation}")

        self._record(operation, "success")
        return data

    def _raise_for_status(self, operation: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            self._record(operation, "rate_limited")
            self.logger.warning("Rate limited by Zendesk", operation=operation, retry_after=retry_after)
            raise RateLimitedError(
                f"Rate limited during {operation}. Retry after {retry_after} seconds", retry_after=retry_after
            )
        if status == 401:
            self._record(operation, "auth_failed")
            raise AuthError(f"Authentication failed during {operation}. Check API credentials", status_code=status)
        if status == 403:
            self._record(operation, "forbidden")
            raise AuthError(f"Access forbidden during {operation}. Check API permissions", status_code=status)
        if status == 404:
            self._record(operation, "not_found")
            raise NotFoundError(f"Resource not found during {operation}", status_code=status)
        if status >= 500:
            self._record(operation, "server_error")
            raise TransientError(f"Zendesk server error {status} during {operation}", status_code=status)

        self._record(operation, "http_error")
        raise DirectoryError(f"Zendesk API error {status} during {operation}", status_code=status)

    async def get_presence(self, agent_id: int) -> PresenceReading:
        """
        Get voice availability for a single agent.

        Args:
            agent_id: Zendesk user id of the agent

        Returns:
            Parsed presence and call status
        """
        data = await self._get_json("get_presence", f"/channels/voice/availabilities/{agent_id}.json")
        availability = data.get("availability")
        if not isinstance(availability, dict):
            raise ParseError(f"Availability response for agent {agent_id} is missing 'availability'")

        agent_state = availability.get("agent_state")
        call_status = availability.get("call_status")

        reading = PresenceReading(
            presence=PresenceState.parse(agent_state if isinstance(agent_state, str) else None),
            call_status=(
                CallStatus.parse(call_status)
                if call_status is None or isinstance(call_status, str)
                else CallStatus.UNKNOWN
            ),
        )
        self.logger.debug(
            "Retrieved availability",
            agent_id=agent_id,
            agent_state=agent_state,
            call_status=call_status,
        )
        return reading

    async def list_agents(self) -> List[AgentRecord]:
        """
        Get the agent and admin roster, excluding end-users and light agents.

        Returns:
            Roster records across all pages
        """
        agents: List[AgentRecord] = []
        url: Optional[str] = "/users.json"
        params: QueryParams = [("role[]", "agent"), ("role[]", "admin"), ("per_page", 100)]
        page = 1

        while url:
            data = await self._get_json("list_agents", url, params=params, end_on_bad_request=True)
            if data is None:
                self.logger.info("Reached end of agent pagination", page=page)
                break

            users = data.get("users")
            if not isinstance(users, list):
                raise ParseError("Users response is missing 'users'")

            for user in users:
                record = _parse_agent_record(user)
                if record is not None:
                    agents.append(record)

            next_page = data.get("next_page")
            if not next_page:
                break

            page += 1
            if page > self.agent_page_limit:
                self.logger.warning("Reached maximum page limit for agents", max_pages=self.agent_page_limit)
                break

            # next_page already carries the query string
            url = next_page
            params = None

        self.logger.info("Retrieved agent roster", count=len(agents), pages=page)
        return agents

    async def get_view_ticket_total(self, view_id: int) -> int:
        """
        Get the cached ticket count of a view.

        Zendesk caches view counts, so the value may lag behind real time.

        Args:
            view_id: Zendesk view id

        Returns:
            Number of tickets in the view; 0 while Zendesk is still counting
        """
        data = await self._get_json("get_view_ticket_total", f"/views/{view_id}/count.json")

        view_count = data.get("view_count")
        if not isinstance(view_count, dict):
            raise ParseError("API response missing required 'view_count' property")
        if "value" not in view_count:
            raise ParseError("API response missing required 'value' property in view_count")

        value = view_count["value"]
        if value is None:
            self.logger.warning("View ticket count is null, Zendesk may still be loading it", view_id=view_id)
            return 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParseError("API response 'value' property is not a number")

        if view_count.get("fresh") is False:
            self.logger.info("Retrieved stale view ticket count", view_id=view_id, count=int(value))
        else:
            self.logger.debug("Retrieved view ticket count", view_id=view_id, count=int(value))
        return int(value)

    async def get_view_tickets_by_agent(self, view_id: int) -> Dict[int, int]:
        """
        Count the tickets of a view per assignee.

        Unassigned tickets are counted under agent id 0.

        Args:
            view_id: Zendesk view id

        Returns:
            Mapping of assignee id to ticket count
        """
        counts: Dict[int, int] = {}
        url: Optional[str] = f"/views/{view_id}/tickets.json"
        params: QueryParams = {"per_page": 100}
        page = 1

        while url:
            data = await self._get_json("get_view_tickets_by_agent", url, params=params)

            tickets = data.get("tickets")
            if not isinstance(tickets, list):
                raise ParseError("API response missing required 'tickets' property")

            for ticket in tickets:
                assignee_id = ticket.get("assignee_id") if isinstance(ticket, dict) else None
                if isinstance(assignee_id, bool) or not isinstance(assignee_id, int):
                    assignee_id = UNASSIGNED_AGENT_ID
                counts[assignee_id] = counts.get(assignee_id, 0) + 1

            next_page = data.get("next_page")
            if not next_page:
                break

            page += 1
            if page > self.ticket_page_limit:
                self.logger.warning("Reached maximum page limit for view tickets", max_pages=self.ticket_page_limit)
                break

            url = next_page
            params = None

        self.logger.debug("Retrieved tickets per agent", view_id=view_id, pages=page, agents=len(counts))
        return counts


def _parse_retry_after(value: Optional[str]) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER


def _parse_agent_record(user: Any) -> Optional[AgentRecord]:
    if not isinstance(user, dict):
        return None

    user_id = user.get("id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return None

    role = user.get("role")
    role_type = user.get("role_type")
    if role == "end-user" or role_type == LIGHT_AGENT_ROLE_TYPE:
        return None

    return AgentRecord(
        id=user_id,
        name=user.get("name") or f"Agent_{user_id}",
        email=user.get("email"),
        role=role,
        role_type=role_type if isinstance(role_type, int) else None,
        active=bool(user.get("active", True)),
    )
