"""
String normalization utilities for field and property name matching.

Provides consistent string normalization so that HubSpot property names
(``job_title``, ``jobtitle``) can be compared with the directory's field
labels ("Job Title").
"""

from __future__ import annotations

import re
import unicodedata


def normalize_string(
    value: str,
    remove_spaces: bool = True,
    strip_punctuation: bool = True,
) -> str:
    """
    Normalize a string for name comparison.

    Args:
        value: String to normalize
        remove_spaces: If True, remove all spaces from the result.
                      If False, multiple spaces are collapsed to single space.
        strip_punctuation: If True, remove non-alphanumeric characters.
                          If False, only normalize unicode and whitespace.

    Returns:
        Normalized lowercase string with special characters handled
    """
    if not value:
        return ""

    # Normalize unicode (decompose accents, etc.)
    normalized = unicodedata.normalize("NFKD", value)

    # Remove combining characters (accents)
    normalized = "".join(c for c in normalized if not unicodedata.combining(c))

    normalized = normalized.lower()

    if strip_punctuation:
        # Underscores, slashes and hyphens go too: "State/Region" -> "stateregion"
        normalized = re.sub(r"[^a-z0-9\s]", "", normalized)

    # Normalize whitespace
    normalized = re.sub(r"\s+", " ", normalized).strip()

    if remove_spaces:
        normalized = normalized.replace(" ", "")

    return normalized


def normalize_field_name(name: str) -> str:
    """Lowercase a field or property name and drop every non-alphanumeric."""
    return normalize_string(name, remove_spaces=True, strip_punctuation=True)
