"""
Field mapping discovery for HubSpot lists.

Works out which directory fields a list's filters refer to by comparing
normalized names. The resulting mapping is informational: it is shown to
administrators and stored with the list settings, but it never decides
which fields a sync copies (see SYNCED_FIELDS).
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from member_sync.sync.member import DERIVED_FIELDS, SYNCED_FIELDS, ProfileField
from member_sync.utils.normalization import normalize_field_name

logger = logging.getLogger(__name__)

# Directory fields a list filter may correspond to. Email Domain is local only.
CANDIDATE_FIELDS: tuple[ProfileField, ...] = SYNCED_FIELDS + tuple(
    f for f in DERIVED_FIELDS if f.attribute != "email_domain"
)

# Keys naming the filtered property in v3 ("property") and legacy/v1 filters
PROPERTY_KEYS = ("property", "propertyName")

FieldMapping = dict[str, str]


class FieldMappingError(Exception):
    """Raised when list metadata cannot be fetched for mapping discovery."""

    def __init__(self, message: str, list_id: str):
        super().__init__(message)
        self.list_id = list_id


class ListSource(Protocol):
    """Anything that can return list metadata (HubSpotAPI)."""

    def get_list(self, list_id: str) -> dict[str, Any]: ...


@dataclass
class MappingResult:
    """Field mapping discovered for one list."""

    list_id: str
    list_name: str
    mapping: FieldMapping = field(default_factory=dict)
    unmatched_properties: list[str] = field(default_factory=list)


def iter_filter_properties(node: Any) -> Iterator[str]:
    """
    Yield every property name referenced by a list's filter definitions.

    Handles v3 nested filter branches (``filterBranch`` -> ``filterBranches``
    -> ``filters``), legacy v1 ``filters`` (a list of OR groups) and flat
    lists of ``{"propertyName": ...}`` dicts.
    """
    if isinstance(node, dict):
        for key in PROPERTY_KEYS:
            value = node.get(key)
            if isinstance(value, str) and value:
                yield value
        for key, value in node.items():
            if key not in PROPERTY_KEYS and isinstance(value, (dict, list)):
                yield from iter_filter_properties(value)
    elif isinstance(node, list):
        for item in node:
            yield from iter_filter_properties(item)


def extract_filter_properties(list_data: dict[str, Any]) -> list[str]:
    """
    Collect distinct filter property names from list metadata, in order.
    """
    sources = [
        list_data.get(key)
        for key in ("filterBranch", "filters")
        if list_data.get(key) is not None
    ]

    seen: dict[str, None] = {}
    for source in sources:
        for name in iter_filter_properties(source):
            seen.setdefault(name, None)
    return list(seen)


def _candidate_keys(candidate: ProfileField) -> set[str]:
    keys = {normalize_field_name(candidate.label)}
    if candidate.external_property:
        keys.add(normalize_field_name(candidate.external_property))
    return keys


def match_properties(
    property_names: Iterable[str],
    candidates: Iterable[ProfileField] = CANDIDATE_FIELDS,
) -> tuple[FieldMapping, list[str]]:
    """
    Match external property names against directory field labels.

    Both sides are normalized (lowercase, alphanumerics only). A candidate
    matches on its label ("Job Title" -> "jobtitle") or its canonical HubSpot
    property. Each directory field maps to at most one property; the first
    match in property order wins.

    Returns:
        (mapping of field label -> property name, unmatched property names)
    """
    candidate_list = list(candidates)
    key_index: dict[str, ProfileField] = {}
    for candidate in candidate_list:
        for key in _candidate_keys(candidate):
            key_index.setdefault(key, candidate)

    mapping: FieldMapping = {}
    unmatched: list[str] = []

    for name in property_names:
        candidate = key_index.get(normalize_field_name(name))
        if candidate is None:
            unmatched.append(name)
            continue
        if candidate.label in mapping:
            logger.debug(
                f"Ignoring {name!r}: {candidate.label!r} already mapped "
                f"to {mapping[candidate.label]!r}"
            )
            continue
        mapping[candidate.label] = name

    return mapping, unmatched


class FieldMappingResolver:
    """
    Discovers the field mapping of a HubSpot list.

    Usage:
        resolver = FieldMappingResolver(api)
        result = resolver.resolve("4959")
        result.mapping  # {"Job Title": "job_title", ...}
    """

    def __init__(
        self,
        client: ListSource,
        candidates: Optional[Iterable[ProfileField]] = None,
    ):
        self.client = client
        self.candidates = tuple(candidates) if candidates else CANDIDATE_FIELDS

    def resolve(self, list_id: str) -> MappingResult:
        """
        Fetch a list's metadata and derive its field mapping.

        Unmatched filters are dropped; fields without a matching filter are
        absent from the mapping. Neither is an error.

        Raises:
            FieldMappingError: If the list metadata cannot be fetched
        """
        list_id = str(list_id)
        try:
            list_data = self.client.get_list(list_id)
        except Exception as e:
            raise FieldMappingError(
                f"Failed to fetch list {list_id}: {e}", list_id=list_id
            ) from e

        list_name = str(list_data.get("name") or "")
        properties = extract_filter_properties(list_data)
        mapping, unmatched = match_properties(properties, self.candidates)

        logger.info(
            f"List {list_id} ({list_name or 'unnamed'}): "
            f"{len(properties)} filter properties, {len(mapping)} mapped"
        )
        if unmatched:
            logger.debug(f"Unmatched filter properties: {', '.join(unmatched)}")

        return MappingResult(
            list_id=list_id,
            list_name=list_name,
            mapping=mapping,
            unmatched_properties=unmatched,
        )
