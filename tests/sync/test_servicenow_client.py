"""
Tests for the ServiceNow Table API client using httpx.MockTransport
"""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.config import ErrorKind
from src.core import (
    AuthenticationException, HostUnreachableException, RemoteSourceException,
    RemoteTimeoutException
)
from src.sync.infrastructure import DEFAULT_FIELDS, ServiceNowClient

INSTANCE = "https://dev12345.service-now.com"


def make_client(handler, **kwargs) -> ServiceNowClient:
    params = {"instance_url": INSTANCE, "username": "api", "password": "secret"}
    params.update(kwargs)
    return ServiceNowClient(transport=httpx.MockTransport(handler), **params)


class TestQueries:
    def test_modified_since_query_uses_utc(self):
        client = ServiceNowClient(INSTANCE, "api", "secret")
        since = datetime(2024, 1, 15, 10, 30, tzinfo=timezone(timedelta(hours=2)))

        query = client.build_modified_since_query(since)

        assert query == (
            "sys_created_on>=2024-01-15 08:30:00^ORsys_updated_on>=2024-01-15 08:30:00"
            "^ORDERBYsys_updated_on"
        )

    def test_bulk_query_orders_by_creation(self):
        assert ServiceNowClient(INSTANCE, "api", "secret").build_bulk_query() == "ORDERBYsys_created_on"

    def test_missing_parameters(self):
        client = ServiceNowClient("", "api", "")
        assert client.missing_parameters() == ["servicenow_instance_url", "servicenow_password"]

    def test_table_url(self):
        client = ServiceNowClient(INSTANCE + "/", "api", "secret", table="sc_task")
        assert client.table_url == f"{INSTANCE}/api/now/table/sc_task"

    def test_default_fields(self):
        client = ServiceNowClient(INSTANCE, "api", "secret")
        assert client.fields == DEFAULT_FIELDS
        assert "sys_updated_on" in client.fields


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_sends_table_api_parameters(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = f"{request.url.scheme}://{request.url.host}{request.url.path}"
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"result": [{"number": "INC1"}]})

        client = make_client(handler)
        records = await client.fetch_page("ORDERBYsys_created_on", ["number", "state"], 50, 100)
        await client.close()

        assert records == [{"number": "INC1"}]
        assert seen["url"] == f"{INSTANCE}/api/now/table/incident"
        assert seen["params"] == {
            "sysparm_query": "ORDERBYsys_created_on",
            "sysparm_fields": "number,state",
            "sysparm_limit": "50",
            "sysparm_offset": "100",
            "sysparm_display_value": "true",
        }
        assert seen["auth"].startswith("Basic ")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_rejected_credentials(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code, json={"error": {}}))

        with pytest.raises(AuthenticationException) as exc_info:
            await client.fetch_page("", ["number"], 1, 0)

        assert exc_info.value.error_kind == ErrorKind.AUTHENTICATION

    @pytest.mark.asyncio
    async def test_server_error_is_generic(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(RemoteSourceException) as exc_info:
            await client.fetch_page("", ["number"], 1, 0)

        assert exc_info.value.error_kind == ErrorKind.GENERIC
        assert exc_info.value.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_connect_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("Name or service not known", request=request)

        with pytest.raises(HostUnreachableException) as exc_info:
            await make_client(handler).fetch_page("", ["number"], 1, 0)

        assert exc_info.value.error_kind == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RemoteTimeoutException) as exc_info:
            await make_client(handler).fetch_page("", ["number"], 1, 0)

        assert exc_info.value.error_kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>login</html>"))

        with pytest.raises(RemoteSourceException):
            await client.fetch_page("", ["number"], 1, 0)

    @pytest.mark.asyncio
    async def test_missing_result_list(self):
        client = make_client(lambda request: httpx.Response(200, json={"records": []}))

        with pytest.raises(RemoteSourceException):
            await client.fetch_page("", ["number"], 1, 0)


class TestConnectivityCheck:
    @pytest.mark.asyncio
    async def test_connectivity_check_reads_one_record(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"result": []})

        await make_client(handler).check_connectivity()

        assert seen["sysparm_limit"] == "1"

    @pytest.mark.asyncio
    async def test_connectivity_check_raises_on_failure(self):
        with pytest.raises(AuthenticationException):
            await make_client(lambda request: httpx.Response(401)).check_connectivity()
