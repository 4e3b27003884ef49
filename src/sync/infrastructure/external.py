"""
Sync External Service Integrations
===================================

ServiceNow Table API client.

Stateless apart from a pooled httpx client. Every call carries a bounded
timeout and no retry loop; failed calls are retried at the next scheduled
tick. Transport failures are mapped onto the core exception taxonomy so the
coordinator can record a precise error kind.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from src.config import Settings
from src.core import (
    AuthenticationException, HostUnreachableException, RemoteSourceException,
    RemoteTimeoutException
)
from src.sync.application.services import IRemoteTicketSource
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

SERVICE_NAME = "ServiceNow"

DEFAULT_FIELDS = [
    "sys_id", "number", "short_description", "description", "category", "subcategory",
    "state", "priority", "impact", "urgency", "opened_at", "closed_at", "resolved_at",
    "caller_id", "assigned_to", "assignment_group", "company", "location", "tags",
    "sys_created_on", "sys_updated_on",
]

# Glide date-time format used in encoded queries
QUERY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_query_time(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(QUERY_TIME_FORMAT)


class ServiceNowClient(IRemoteTicketSource):
    """
    Async client for the ServiceNow Table API.

    Handles:
    - Basic auth and bounded timeouts
    - Encoded queries for modified-since and full-scan reads
    - Mapping of HTTP/transport failures to error kinds
    """

    def __init__(
        self,
        instance_url: str,
        username: str,
        password: str,
        table: str = "incident",
        timeout_seconds: float = 30.0,
        fields: Optional[List[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.instance_url = (instance_url or "").rstrip("/")
        self.username = username
        self.password = password
        self.table = table
        self.timeout_seconds = timeout_seconds
        self.fields = list(fields or DEFAULT_FIELDS)
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ServiceNowClient":
        return cls(
            instance_url=settings.servicenow_instance_url,
            username=settings.servicenow_username,
            password=settings.servicenow_password,
            table=settings.servicenow_table,
            timeout_seconds=settings.servicenow_timeout_seconds,
            **kwargs,
        )

    @property
    def table_url(self) -> str:
        return f"{self.instance_url}/api/now/table/{self.table}"

    def missing_parameters(self) -> List[str]:
        missing = []
        if not self.instance_url:
            missing.append("servicenow_instance_url")
        if not self.username:
            missing.append("servicenow_username")
        if not self.password:
            missing.append("servicenow_password")
        return missing

    def build_modified_since_query(self, since: datetime) -> str:
        ts = format_query_time(since)
        return f"sys_created_on>={ts}^ORsys_updated_on>={ts}^ORDERBYsys_updated_on"

    def build_bulk_query(self) -> str:
        return "ORDERBYsys_created_on"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                auth=(self.username, self.password),
                timeout=self.timeout_seconds,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    async def _get(self, params: Dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.get(self.table_url, params=params)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutException(
                SERVICE_NAME, f"Request timed out after {self.timeout_seconds}s", {"error": str(e)}
            )
        except httpx.ConnectError as e:
            raise HostUnreachableException(
                SERVICE_NAME, f"Cannot reach {self.instance_url}", {"error": str(e)}
            )
        except httpx.HTTPError as e:
            raise RemoteSourceException(SERVICE_NAME, f"Transport error: {e}")

        if response.status_code in (401, 403):
            raise AuthenticationException(
                SERVICE_NAME,
                f"Credentials rejected (HTTP {response.status_code})",
                {"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise RemoteSourceException(
                SERVICE_NAME,
                f"Unexpected HTTP {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]},
            )
        return response

    @staticmethod
    def _parse_result(response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteSourceException(SERVICE_NAME, f"Response is not JSON: {e}")

        if not isinstance(payload, dict) or not isinstance(payload.get("result"), list):
            raise RemoteSourceException(SERVICE_NAME, "Response has no 'result' list")
        return payload["result"]

    async def fetch_page(
        self,
        query: str,
        fields: List[str],
        limit: int,
        offset: int
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of records.

        Raises:
            AuthenticationException, HostUnreachableException,
            RemoteTimeoutException, RemoteSourceException
        """
        params = {
            "sysparm_query": query,
            "sysparm_fields": ",".join(fields),
            "sysparm_limit": limit,
            "sysparm_offset": offset,
            "sysparm_display_value": "true",
        }
        with log_latency(logger, "servicenow_fetch_page", table=self.table, offset=offset, limit=limit):
            response = await self._get(params)
            records = self._parse_result(response)

        logger.debug("Fetched ServiceNow page", extra={"records": len(records), "offset": offset})
        return records

    async def check_connectivity(self) -> None:
        """Single-record read used by the health gate."""
        response = await self._get({"sysparm_limit": 1, "sysparm_fields": "sys_id"})
        self._parse_result(response)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
