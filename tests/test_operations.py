"""
Tests for the operation entry points (sync, connection test, companies).
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from member_sync.api.hubspot_api import (
    ContactPage,
    HubSpotAPI,
    HubSpotAPIError,
    NotFoundError,
)
from member_sync.config.loader import Settings
from member_sync.operations import (
    STATUS_CLIENT_CLOSED,
    build_api,
    fetch_companies,
    open_database,
    sync_members,
    test_connection as run_connection_test,
)
from member_sync.storage.db import ProfileStoreError
from member_sync.sync.engine import SyncSummary
from member_sync.sync.member import LocalProfile
from tests.fakes import make_record


@pytest.fixture
def settings():
    return Settings(
        api_key="pat-test",
        list_id="4959",
        companies_list_id="4981",
        database_path=":memory:",
    )


@pytest.fixture
def api():
    api = MagicMock(spec=HubSpotAPI)
    api.get_list_memberships_page.return_value = ContactPage(
        records=(make_record("7", firstname="Lee", email=""),)
    )
    api.get_list_member_ids_page.return_value = ContactPage(
        records=(make_record("7"),)
    )
    return api


class TestSyncMembers:
    """Tests for the sync trigger."""

    def test_success(self, settings, api, database):
        database.upsert_profile(LocalProfile(record_id="42", first_name="Amy"))

        response = sync_members(["7", "42"], settings, api=api, database=database)

        assert response.status_code == 200
        assert response.body == {
            "success": True,
            "summary": {"updated": 1, "deactivated": 1},
        }
        assert database.get_profile("42").active is False

    def test_missing_credential_fails_before_network(self, settings, api, database):
        settings.api_key = None

        response = sync_members(["7"], settings, api=api, database=database)

        assert response.status_code == 500
        assert response.body == {
            "success": False,
            "error": "HUBSPOT_API_KEY is not set",
        }
        api.get_list_memberships_page.assert_not_called()

    @pytest.mark.parametrize("ids", [[], None, "42", ["", "  ", None], {"7": 1}])
    def test_invalid_ids_rejected(self, settings, api, database, ids):
        response = sync_members(ids, settings, api=api, database=database)

        assert response.status_code == 400
        assert response.body == {
            "success": False,
            "error": "memberIds must be a non-empty list",
        }
        api.get_list_memberships_page.assert_not_called()

    def test_cancelled_summary_counts_distinct_ids(self, settings, api, database):
        cancel = threading.Event()
        cancel.set()

        with patch(
            "member_sync.operations.SyncSummary", wraps=SyncSummary
        ) as summary_cls:
            response = sync_members(
                ["7", "7", " 7 ", "8"],
                settings,
                api=api,
                database=database,
                cancel_event=cancel,
            )

        assert response.status_code == STATUS_CLIENT_CLOSED
        summary_cls.assert_called_once_with(requested=2, cancelled=True)

    def test_missing_list_id(self, settings, api, database):
        settings.list_id = None

        response = sync_members(["7"], settings, api=api, database=database)

        assert response.status_code == 500
        assert "List ID is required" in response.body["error"]

    def test_pagination_failure(self, settings, api, database):
        api.get_list_memberships_page.side_effect = HubSpotAPIError("bad gateway", 502)

        response = sync_members(["7"], settings, api=api, database=database)

        assert response.status_code == 500
        assert response.body["success"] is False
        assert "page 1" in response.body["error"]
        assert database.get_profile("7") is None

    def test_partial_failure_reports_failed_members(self, settings, api, database):
        original = database.upsert_profile

        def upsert(profile):
            if profile.record_id == "7":
                raise ProfileStoreError("locked")
            original(profile)

        database.upsert_profile = upsert
        api.get_list_memberships_page.return_value = ContactPage(
            records=(make_record("7"), make_record("8"))
        )

        response = sync_members(["7", "8"], settings, api=api, database=database)

        assert response.status_code == 500
        assert response.body["error"] == "1 of 2 member(s) failed to sync"
        assert response.body["summary"]["updated"] == 1
        assert response.body["summary"]["failed"] == [
            {"recordId": "7", "error": "locked"}
        ]

    def test_fail_fast(self, settings, api, database):
        settings.fail_fast = True
        database.upsert_profile = MagicMock(side_effect=ProfileStoreError("locked"))

        response = sync_members(["7"], settings, api=api, database=database)

        assert response.status_code == 500
        assert "Failed to reconcile member 7" in response.body["error"]

    def test_cancelled(self, settings, api, database):
        cancel = threading.Event()
        cancel.set()

        response = sync_members(
            ["7"], settings, api=api, database=database, cancel_event=cancel
        )

        assert response.status_code == STATUS_CLIENT_CLOSED
        assert response.body["summary"]["cancelled"] is True


class TestConnectionTest:
    """Tests for the connection-test operation."""

    def test_success_stores_mapping(self, settings, api, database):
        api.get_list.return_value = {
            "name": "Active Members",
            "filters": [{"propertyName": "job_title"}, {"propertyName": "unknown_prop"}],
        }

        response = run_connection_test("4959", settings, api=api, database=database)

        assert response.status_code == 200
        assert response.body["success"] is True
        assert response.body["listId"] == 4959
        assert response.body["listName"] == "Active Members"
        assert response.body["properties"] == {"Job Title": "job_title"}
        stored = database.get_list_settings("4959")
        assert stored["field_mappings"] == {"Job Title": "job_title"}

    @pytest.mark.parametrize(
        "list_id,error",
        [
            (None, "List ID is required"),
            ("  ", "List ID is required"),
            ("abc", "List ID must be a number"),
            ("12a", "List ID must be a number"),
        ],
    )
    def test_invalid_list_id(self, settings, api, database, list_id, error):
        response = run_connection_test(list_id, settings, api=api, database=database)

        assert response.status_code == 400
        assert response.body == {"success": False, "error": error}
        api.get_list.assert_not_called()

    def test_missing_credential(self, settings, api, database):
        settings.api_key = ""

        response = run_connection_test("4959", settings, api=api, database=database)

        assert response.status_code == 500
        api.get_list.assert_not_called()

    def test_unknown_list(self, settings, api, database):
        api.get_list.side_effect = NotFoundError("not found", status_code=404)

        response = run_connection_test("1", settings, api=api, database=database)

        assert response.status_code == 404
        assert response.body["success"] is False

    def test_upstream_error(self, settings, api, database):
        api.get_list.side_effect = HubSpotAPIError("denied", status_code=403)

        response = run_connection_test("4959", settings, api=api, database=database)

        assert response.status_code == 500
        assert "denied" in response.body["error"]


class TestFetchCompanies:
    """Tests for the company lookup operation."""

    def test_success(self, settings, api):
        api.get_contact_company_ids.return_value = ["901"]
        api.get_company.return_value = {"id": "901", "properties": {"name": "Acme"}}

        response = fetch_companies(settings, api=api)

        assert response.status_code == 200
        assert response.body["success"] is True
        assert response.body["data"][0]["name"] == "Acme"
        assert response.body["data"][0]["contactIds"] == ["7"]
        assert "skipped" not in response.body

    def test_failed_companies_are_listed(self, settings, api):
        api.get_contact_company_ids.return_value = ["901"]
        api.get_company.side_effect = HubSpotAPIError("boom", 500)

        response = fetch_companies(settings, api=api)

        assert response.status_code == 200
        assert response.body["data"] == []
        assert response.body["skipped"] == ["901"]

    def test_missing_companies_list(self, settings, api):
        settings.companies_list_id = None

        response = fetch_companies(settings, api=api)

        assert response.status_code == 500
        assert "companies_list_id" in response.body["error"]

    def test_list_failure(self, settings, api):
        api.get_list_member_ids_page.side_effect = HubSpotAPIError("boom", 500)

        response = fetch_companies(settings, api=api)

        assert response.status_code == 500
        assert response.body["success"] is False


class TestFactories:
    def test_build_api_uses_settings(self, settings):
        settings.page_size = 50
        settings.timeout = 5.0

        api = build_api(settings)

        assert isinstance(api, HubSpotAPI)
        assert api.page_size == 50
        assert api.timeout == 5.0
        assert api.session.headers["Authorization"] == "Bearer pat-test"

    def test_open_database_creates_directory(self, settings, tmp_path):
        settings.database_path = str(tmp_path / "nested" / "directory.db")

        database = open_database(settings)

        assert (tmp_path / "nested" / "directory.db").exists()
        assert database.count_profiles()["total"] == 0
