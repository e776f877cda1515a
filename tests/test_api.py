"""
Unit tests for the HubSpot API module.

Tests the HubSpotAPI class against mocked HTTP responses.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from member_sync.api.hubspot_api import (
    BATCH_READ_SIZE,
    MAX_PAGE_SIZE,
    HubSpotAPI,
    HubSpotAPIError,
    HubSpotTimeoutError,
    NotFoundError,
    RateLimitError,
)
from member_sync.config.loader import ConfigError
from member_sync.sync.engine import ReconciliationEngine
from member_sync.sync.member import LocalProfile


def make_response(status_code=200, body=None, headers=None, raw=None):
    """Build a real requests.Response with a JSON (or raw) body."""
    response = requests.Response()
    response.status_code = status_code
    if raw is not None:
        response._content = raw
    else:
        response._content = json.dumps(body if body is not None else {}).encode()
    response.headers.update(headers or {})
    return response


def memberships_body(record_ids, after=None):
    body = {"results": [{"recordId": rid} for rid in record_ids]}
    if after:
        body["paging"] = {"next": {"after": after}}
    return body


def batch_body(*contacts):
    return {
        "status": "COMPLETE",
        "results": [
            {"id": rid, "properties": properties} for rid, properties in contacts
        ],
    }


@pytest.fixture
def api():
    """HubSpotAPI with a real session whose request() is mocked."""
    session = requests.Session()
    session.request = MagicMock()
    return HubSpotAPI(
        "pat-test",
        max_retries=3,
        initial_retry_delay=1.0,
        max_retry_delay=8.0,
        session=session,
    )


class TestHubSpotAPIInitialization:
    """Tests for HubSpotAPI initialization."""

    @pytest.mark.parametrize("key", [None, ""])
    def test_missing_key_fails_before_any_request(self, key):
        """Test that an empty credential is rejected up front."""
        session = MagicMock()
        with pytest.raises(ConfigError, match="HUBSPOT_API_KEY is not set"):
            HubSpotAPI(key, session=session)
        session.request.assert_not_called()

    def test_sets_bearer_token(self, api):
        assert api.session.headers["Authorization"] == "Bearer pat-test"
        assert api.session.headers["Content-Type"] == "application/json"

    def test_page_size_capped(self):
        api = HubSpotAPI("pat-test", page_size=1000, session=MagicMock())
        assert api.page_size == MAX_PAGE_SIZE

    def test_context_manager_closes_session(self):
        session = MagicMock()
        with HubSpotAPI("pat-test", session=session):
            pass
        session.close.assert_called_once()


class TestGetList:
    """Tests for list metadata reads."""

    def test_get_list_returns_list_object(self, api):
        api.session.request.return_value = make_response(
            body={"list": {"listId": "4959", "name": "Members"}}
        )

        result = api.get_list("4959")

        assert result == {"listId": "4959", "name": "Members"}
        args, kwargs = api.session.request.call_args
        assert args == ("GET", "https://api.hubapi.com/crm/v3/lists/4959")
        assert kwargs["params"] == {"includeFilters": "true"}
        assert kwargs["timeout"] == api.timeout

    def test_get_list_not_found(self, api):
        api.session.request.return_value = make_response(
            404, body={"message": "List 1 does not exist"}
        )

        with pytest.raises(NotFoundError, match="does not exist") as exc_info:
            api.get_list("1")
        assert exc_info.value.status_code == 404


class TestListMemberships:
    """Tests for reading pages of list members."""

    def test_page_with_cursor(self, api):
        api.session.request.side_effect = [
            make_response(body=memberships_body(["42", "7"], after="AoJ")),
            make_response(
                body=batch_body(
                    ("7", {"firstname": "Lee"}), ("42", {"firstname": "Amy"})
                )
            ),
        ]

        page = api.get_list_memberships_page("4959", limit=2)

        assert [r.record_id for r in page.records] == ["42", "7"]
        assert page.records[0].value("firstname") == "Amy"
        assert page.next_cursor == "AoJ"

        first_call, second_call = api.session.request.call_args_list
        assert first_call.kwargs["params"] == {"limit": 2}
        assert second_call.args[0] == "POST"
        assert second_call.kwargs["json"]["inputs"] == [{"id": "42"}, {"id": "7"}]
        assert "jobtitle" in second_call.kwargs["json"]["properties"]

    def test_follow_up_page_sends_cursor(self, api):
        api.session.request.side_effect = [
            make_response(body=memberships_body(["1"])),
            make_response(body=batch_body(("1", {}))),
        ]

        page = api.get_list_memberships_page("4959", after="AoJ")

        params = api.session.request.call_args_list[0].kwargs["params"]
        assert params["after"] == "AoJ"
        assert page.next_cursor is None

    def test_last_page_with_null_next(self, api):
        body = memberships_body(["1"])
        body["paging"] = {"next": None}
        api.session.request.side_effect = [
            make_response(body=body),
            make_response(body=batch_body(("1", {}))),
        ]

        assert api.get_list_memberships_page("4959").next_cursor is None

    def test_empty_page_skips_batch_read(self, api):
        api.session.request.return_value = make_response(body={"results": []})

        page = api.get_list_memberships_page("4959")

        assert page.records == ()
        assert api.session.request.call_count == 1

    def test_unreadable_contacts_stay_on_the_page(self, api):
        api.session.request.side_effect = [
            make_response(body=memberships_body(["1", "2"])),
            make_response(body=batch_body(("2", {"firstname": "Bo"}))),
        ]

        page = api.get_list_memberships_page("4959")

        assert [r.record_id for r in page.records] == ["1", "2"]
        assert dict(page.records[0].properties) == {}
        assert page.records[1].value("firstname") == "Bo"

    def test_partial_batch_read_keeps_member_active(self, api, database):
        """A 207 batch read must not turn a listed member into a deactivation."""
        database.upsert_profile(
            LocalProfile(record_id="42", first_name="Amy", email="amy@example.org")
        )
        api.session.request.side_effect = [
            make_response(body=memberships_body(["42"])),
            make_response(
                207,
                body={
                    "status": "COMPLETE",
                    "results": [],
                    "errors": [{"status": "error", "category": "OBJECT_NOT_FOUND"}],
                },
            ),
        ]

        summary = ReconciliationEngine(database).run_sync(
            ["42"], client=api, list_id="4959"
        )

        assert summary.deactivated == 0
        assert summary.updated == 1
        stored = database.get_profile("42")
        assert stored.active is True
        assert stored.first_name == "Amy"
        assert stored.email == "amy@example.org"

    def test_member_ids_page_skips_batch_read(self, api):
        api.session.request.return_value = make_response(
            body=memberships_body(["42", "7"], after="AoJ")
        )

        page = api.get_list_member_ids_page("4959", limit=2)

        assert [r.record_id for r in page.records] == ["42", "7"]
        assert page.next_cursor == "AoJ"
        assert api.session.request.call_count == 1
        assert api.session.request.call_args.kwargs["params"] == {"limit": 2}

    def test_malformed_results(self, api):
        api.session.request.return_value = make_response(body={"results": "nope"})

        with pytest.raises(HubSpotAPIError, match="malformed"):
            api.get_list_memberships_page("4959")


class TestBatchRead:
    def test_batch_read_chunks_requests(self, api):
        ids = [str(i) for i in range(BATCH_READ_SIZE + 5)]
        api.session.request.side_effect = [
            make_response(body=batch_body(*[(i, {}) for i in ids[:BATCH_READ_SIZE]])),
            make_response(body=batch_body(*[(i, {}) for i in ids[BATCH_READ_SIZE:]])),
        ]

        records = api.batch_read_contacts(ids)

        assert len(records) == BATCH_READ_SIZE + 5
        assert api.session.request.call_count == 2

    def test_batch_read_rejects_contact_without_id(self, api):
        api.session.request.return_value = make_response(
            body={"results": [{"properties": {}}]}
        )
        with pytest.raises(HubSpotAPIError, match="Malformed contact"):
            api.batch_read_contacts(["1"])


class TestCompanies:
    def test_get_contact_company_ids(self, api):
        api.session.request.return_value = make_response(
            body={"results": [{"toObjectId": 901}, {"toObjectId": 902}]}
        )

        assert api.get_contact_company_ids("42") == ["901", "902"]
        url = api.session.request.call_args.args[1]
        assert url.endswith("/crm/v4/objects/contacts/42/associations/companies")

    def test_contact_without_company_is_empty(self, api):
        api.session.request.return_value = make_response(body={"results": []})
        assert api.get_contact_company_ids("42") == []

    def test_get_company_requests_properties(self, api):
        api.session.request.return_value = make_response(
            body={"id": "901", "properties": {"name": "Acme"}}
        )

        result = api.get_company("901")

        assert result["properties"]["name"] == "Acme"
        params = api.session.request.call_args.kwargs["params"]
        assert params["properties"] == "name,domain,industry,city,state"


class TestRetryWithBackoff:
    """Tests for retry behaviour."""

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_rate_limit_honours_retry_after(self, mock_sleep, api):
        api.session.request.side_effect = [
            make_response(429, headers={"Retry-After": "2"}),
            make_response(body={"list": {"name": "Members"}}),
        ]

        assert api.get_list("4959")["name"] == "Members"
        mock_sleep.assert_called_once_with(2.0)

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_rate_limit_exhausted(self, mock_sleep, api):
        api.session.request.return_value = make_response(429)

        with pytest.raises(RateLimitError) as exc_info:
            api.get_list("4959")

        assert exc_info.value.status_code == 429
        assert api.session.request.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_server_error_retried_with_exponential_delay(self, mock_sleep, api):
        api.session.request.side_effect = [
            make_response(503),
            make_response(502),
            make_response(body={"list": {"name": "Members"}}),
        ]

        api.get_list("4959")

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_server_error_exhausted(self, mock_sleep, api):
        api.session.request.return_value = make_response(500)

        with pytest.raises(HubSpotAPIError) as exc_info:
            api.get_list("4959")
        assert exc_info.value.status_code == 500

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_client_error_not_retried(self, mock_sleep, api):
        api.session.request.return_value = make_response(
            401, body={"message": "Authentication credentials not found"}
        )

        with pytest.raises(HubSpotAPIError, match="credentials not found"):
            api.get_list("4959")

        assert api.session.request.call_count == 1
        mock_sleep.assert_not_called()

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_timeout_raises_timeout_error(self, mock_sleep, api):
        api.session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(HubSpotTimeoutError, match="timed out"):
            api.get_list("4959")
        assert api.session.request.call_count == 3

    @patch("member_sync.api.hubspot_api.time.sleep")
    def test_connection_error_recovers(self, mock_sleep, api):
        api.session.request.side_effect = [
            requests.ConnectionError("reset"),
            make_response(body={"list": {"name": "Members"}}),
        ]

        assert api.get_list("4959")["name"] == "Members"

    def test_malformed_json(self, api):
        api.session.request.return_value = make_response(raw=b"<html>")

        with pytest.raises(HubSpotAPIError, match="malformed JSON"):
            api.get_list("4959")

    def test_non_object_json(self, api):
        api.session.request.return_value = make_response(raw=b"[1, 2]")

        with pytest.raises(HubSpotAPIError, match="expected object"):
            api.get_list("4959")
