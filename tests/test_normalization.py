"""Tests for string normalization utility."""

import pytest

from member_sync.utils.normalization import normalize_field_name, normalize_string


class TestNormalizeStringBasic:
    """Test basic normalization functionality."""

    def test_empty_string_returns_empty(self):
        """Empty string should return empty string."""
        assert normalize_string("") == ""

    def test_lowercase_conversion(self):
        """String should be converted to lowercase."""
        assert normalize_string("HELLO") == "hello"

    def test_unicode_normalization(self):
        """Accents are dropped in both composed and decomposed form."""
        assert normalize_string("Région") == "region"
        assert normalize_string("Région") == "region"


class TestNormalizeStringOptions:
    def test_punctuation_preserved_when_disabled(self):
        assert (
            normalize_string(
                "State/Region", strip_punctuation=False, remove_spaces=False
            )
            == "state/region"
        )

    def test_spaces_collapsed_when_kept(self):
        assert normalize_string("  Job   Title ", remove_spaces=False) == "job title"


class TestNormalizeFieldName:
    """Field labels and HubSpot property names normalize to the same key."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Job Title", "jobtitle"),
            ("job_title", "jobtitle"),
            ("jobtitle", "jobtitle"),
            ("State/Region", "stateregion"),
            ("state-region", "stateregion"),
            ("LinkedIn", "linkedin"),
            ("hs_linkedin_url", "hslinkedinurl"),
        ],
    )
    def test_normalize_field_name(self, name, expected):
        assert normalize_field_name(name) == expected
