import pytest
from unittest.mock import call

from hcp_sync.services.calendar_event import JobSpec
from hcp_sync.services.hcp_client import DirectoryKind, extract_job_id
from hcp_sync.utils.errors import (
    DirectoryResolutionError, HcpApiError, JobNotFoundError, MalformedResponseError
)


@pytest.fixture
def job_spec():
    return JobSpec(
        customer_id="cus_1",
        title="Install water heater",
        start="2024-01-01T10:00:00Z",
        end="2024-01-01T11:00:00Z"
    )


def test_extract_job_id_priority_order():
    assert extract_job_id({"id": "a", "job": {"id": "b"}}) == "a"
    assert extract_job_id({"job": {"id": "b"}, "data": {"id": "c"}}) == "b"
    assert extract_job_id({"data": {"id": 42}}) == "42"
    assert extract_job_id({"job_id": "d"}) == "d"


@pytest.mark.parametrize("payload", [{}, {"job": {}}, {"data": None}, [], "created", None])
def test_extract_job_id_malformed(payload):
    with pytest.raises(MalformedResponseError):
        extract_job_id(payload)


@pytest.mark.asyncio
async def test_resolve_directory_id_uses_cache_first(hcp_client, storage):
    await storage.cache_set("customer_id:ben king", "cus_cached")

    found = await hcp_client.resolve_directory_id(DirectoryKind.CUSTOMER, "Ben King")

    assert found == "cus_cached"
    hcp_client._send.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_directory_id_pages_and_matches_case_insensitively(hcp_client, storage):
    hcp_client._send.side_effect = [
        {"customers": [{"id": "cus_9", "first_name": "Ann", "last_name": "Lee"}], "total_pages": 2},
        {"customers": [{"id": "cus_7", "first_name": "BEN", "last_name": "king"}], "total_pages": 2},
    ]

    found = await hcp_client.resolve_directory_id(DirectoryKind.CUSTOMER, "  Ben King ")

    assert found == "cus_7"
    assert hcp_client._send.await_count == 2
    assert hcp_client._send.await_args_list[1] == call(
        "GET", "/customers", params={"page": 2, "page_size": 100}, payload=None
    )
    assert await storage.cache_get("customer_id:ben king") == "cus_7"


@pytest.mark.asyncio
async def test_resolve_directory_id_matches_company_name(hcp_client):
    hcp_client._send.return_value = {"customers": [{"id": "cus_3", "company_name": "King Plumbing"}]}

    assert await hcp_client.resolve_directory_id("customer", "king plumbing") == "cus_3"


@pytest.mark.asyncio
async def test_resolve_directory_id_returns_none_when_exhausted(hcp_client, storage):
    hcp_client._send.return_value = {"customers": [{"id": "cus_9", "name": "Someone Else"}], "total_pages": 1}

    assert await hcp_client.resolve_directory_id(DirectoryKind.CUSTOMER, "Ben King") is None
    assert hcp_client._send.await_count == 1
    assert await storage.cache_get("customer_id:ben king") is None


@pytest.mark.asyncio
async def test_resolve_directory_id_stops_at_page_limit(hcp_client):
    hcp_client.max_pages = 5
    hcp_client._send.return_value = {"customers": [], "total_pages": 50}

    assert await hcp_client.resolve_directory_id(DirectoryKind.CUSTOMER, "Ben King") is None
    assert hcp_client._send.await_count == 5


@pytest.mark.asyncio
async def test_resolve_employee_by_email(hcp_client):
    hcp_client._send.return_value = {"employees": [{"id": "emp_1", "email": "Tech@Example.com"}]}

    found = await hcp_client.resolve_directory_id(DirectoryKind.EMPLOYEE, "tech@example.com")

    assert found == "emp_1"
    hcp_client._send.assert_awaited_once_with("GET", "/employees", params={"page": 1, "page_size": 100}, payload=None)


@pytest.mark.asyncio
async def test_resolve_customer_id_prefers_configured_id(hcp_client):
    hcp_client.customer_id = "cus_env"

    assert await hcp_client.resolve_customer_id() == "cus_env"
    hcp_client._send.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_customer_id_creates_missing_customer(hcp_client, storage):
    hcp_client._send.side_effect = [
        {"customers": [], "total_pages": 1},
        {"customer": {"id": "cus_new"}},
    ]

    assert await hcp_client.resolve_customer_id() == "cus_new"
    assert hcp_client._send.await_args_list[1] == call(
        "POST", "/customers", params=None, payload={"first_name": "Ben", "last_name": "King"}
    )
    assert await storage.cache_get("customer_id") == "cus_new"


@pytest.mark.asyncio
async def test_resolve_customer_id_fails_hard_when_creation_fails(hcp_client):
    hcp_client._send.side_effect = [
        {"customers": [], "total_pages": 1},
        HcpApiError(422, "invalid", "POST", "/customers"),
    ]

    with pytest.raises(DirectoryResolutionError):
        await hcp_client.resolve_customer_id()


@pytest.mark.asyncio
async def test_resolve_assignee_swallows_lookup_failure(hcp_client):
    hcp_client.assignee_email = "tech@example.com"
    hcp_client._send.side_effect = HcpApiError(401, "unauthorized", "GET", "/employees")

    assert await hcp_client.resolve_assignee_id() is None


@pytest.mark.asyncio
async def test_create_job_sets_schedule_when_not_echoed(hcp_client, job_spec):
    job_spec.assignee_id = "emp_1"
    hcp_client._send.side_effect = [{"id": "job_1"}, {}]

    job_id = await hcp_client.create_job(job_spec)

    assert job_id == "job_1"
    method, path = hcp_client._send.await_args_list[0].args
    assert (method, path) == ("POST", "/jobs")
    assert hcp_client._send.await_args_list[0].kwargs["payload"]["customer_id"] == "cus_1"
    assert hcp_client._send.await_args_list[1] == call(
        "PUT", "/jobs/job_1/schedule", params=None,
        payload={
            "start_time": "2024-01-01T10:00:00Z",
            "end_time": "2024-01-01T11:00:00Z",
            "dispatched_employees": [{"employee_id": "emp_1"}]
        }
    )


@pytest.mark.asyncio
async def test_create_job_skips_schedule_when_echoed(hcp_client, job_spec):
    hcp_client._send.return_value = {
        "job": {"id": "job_2", "schedule": {"scheduled_start": "2024-01-01T10:00:00Z"}}
    }

    assert await hcp_client.create_job(job_spec) == "job_2"
    assert hcp_client._send.await_count == 1


@pytest.mark.asyncio
async def test_create_job_survives_schedule_failure(hcp_client, job_spec):
    hcp_client._send.side_effect = [{"id": "job_3"}] + [
        HcpApiError(500, "oops", "PUT", "/jobs/job_3/schedule")
    ] * 3

    assert await hcp_client.create_job(job_spec) == "job_3"


@pytest.mark.asyncio
async def test_create_job_converts_date_only_range(hcp_client):
    spec = JobSpec(customer_id="cus_1", start="2024-01-01", end="2024-01-02")
    hcp_client._send.side_effect = [{"id": "job_4"}, {}]

    await hcp_client.create_job(spec)

    schedule_payload = hcp_client._send.await_args_list[1].kwargs["payload"]
    assert schedule_payload == {"start_time": "2024-01-01T00:00:00Z", "end_time": "2024-01-01T23:59:59Z"}


@pytest.mark.asyncio
async def test_create_job_without_id_is_malformed(hcp_client, job_spec):
    hcp_client._send.return_value = {"status": "ok"}

    with pytest.raises(MalformedResponseError):
        await hcp_client.create_job(job_spec)


@pytest.mark.asyncio
async def test_update_job_signals_not_found(hcp_client, job_spec):
    hcp_client._send.side_effect = HcpApiError(404, "not found", "PUT", "/jobs/job_1/schedule")

    with pytest.raises(JobNotFoundError):
        await hcp_client.update_job("job_1", job_spec)
    assert hcp_client._send.await_count == 1


@pytest.mark.asyncio
async def test_update_job_other_failure_is_not_not_found(hcp_client, job_spec):
    hcp_client._send.side_effect = HcpApiError(400, "bad", "PUT", "/jobs/job_1/schedule")

    with pytest.raises(HcpApiError) as exc_info:
        await hcp_client.update_job("job_1", job_spec)
    assert not isinstance(exc_info.value, JobNotFoundError)


@pytest.mark.asyncio
async def test_cancel_job_without_delete_support_is_noop(hcp_client):
    hcp_client._send.side_effect = HcpApiError(404, "no route", "DELETE", "/jobs/job_1")

    await hcp_client.cancel_job("job_1")

    hcp_client._send.assert_awaited_once_with("DELETE", "/jobs/job_1", params=None, payload=None)


@pytest.mark.asyncio
async def test_cancel_job_propagates_unexpected_failure(hcp_client):
    hcp_client._send.side_effect = HcpApiError(401, "unauthorized", "DELETE", "/jobs/job_1")

    with pytest.raises(HcpApiError):
        await hcp_client.cancel_job("job_1")
