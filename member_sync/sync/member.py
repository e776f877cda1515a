"""
Member data model for HubSpot directory synchronization.

Provides:
- The fixed set of profile fields kept in sync with HubSpot
- ExternalContactRecord, an immutable snapshot of one HubSpot contact
- LocalProfile, the directory's stored copy of a member
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, NamedTuple, Optional


class ProfileField(NamedTuple):
    """A directory profile field and the HubSpot property feeding it."""

    attribute: str  # LocalProfile attribute / database column
    label: str  # Display label used by the directory
    external_property: Optional[str]  # HubSpot property, None if derived


# Fields copied from HubSpot on every sync, in display order
SYNCED_FIELDS: tuple[ProfileField, ...] = (
    ProfileField("first_name", "First Name", "firstname"),
    ProfileField("last_name", "Last Name", "lastname"),
    ProfileField("email", "Email", "email"),
    ProfileField("company_name", "Company Name", "company"),
    ProfileField("job_title", "Job Title", "jobtitle"),
    ProfileField("phone_number", "Phone Number", "phone"),
    ProfileField("industry", "Industry", "industry"),
    ProfileField("state_region", "State/Region", "state"),
    ProfileField("city", "City", "city"),
    ProfileField("bio", "Bio", "bio"),
    ProfileField("linkedin", "LinkedIn", "linkedin"),
    ProfileField("headshot", "Headshot", "headshot"),
    ProfileField("membership", "Membership", "membership"),
)

# Fields computed locally rather than read from HubSpot
DERIVED_FIELDS: tuple[ProfileField, ...] = (
    ProfileField("full_name", "Full Name", None),
    ProfileField("email_domain", "Email Domain", None),
)

# HubSpot properties requested for each list member
CONTACT_PROPERTIES: tuple[str, ...] = tuple(
    f.external_property for f in SYNCED_FIELDS if f.external_property
)


def email_domain_of(email: Optional[str]) -> Optional[str]:
    """
    Extract the lowercased domain part of an email address.

    Returns:
        The domain, or None when the address has no usable domain
    """
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


@dataclass(frozen=True)
class ExternalContactRecord:
    """
    Immutable snapshot of one HubSpot contact at fetch time.

    Attributes:
        record_id: HubSpot's contact id (stable, assigned by HubSpot)
        properties: Read-only mapping of property name to value (or None)

    Usage:
        record = ExternalContactRecord.from_api_response(
            {"id": "42", "properties": {"firstname": "Amy"}}
        )
        record.value("firstname")  # "Amy"
        record.value("lastname")  # ""
    """

    record_id: str
    properties: Mapping[str, Optional[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        # Freeze the mapping so a snapshot cannot change under the engine
        if not isinstance(self.properties, MappingProxyType):
            object.__setattr__(
                self, "properties", MappingProxyType(dict(self.properties))
            )

    @classmethod
    def from_api_response(cls, result: dict[str, Any]) -> "ExternalContactRecord":
        """
        Create a record from a HubSpot CRM object.

        Example API object::

            {
                "id": "42",
                "properties": {"firstname": "Amy", "email": "amy@example.org"},
                "createdAt": "...",
                "updatedAt": "..."
            }

        Raises:
            ValueError: If the object has no id
        """
        record_id = result.get("id")
        if record_id in (None, ""):
            raise ValueError("HubSpot object has no id")

        raw_properties = result.get("properties") or {}
        properties = {
            name: (None if value is None else str(value))
            for name, value in raw_properties.items()
        }
        return cls(record_id=str(record_id), properties=properties)

    def value(self, name: str) -> str:
        """Return a property value with surrounding whitespace removed."""
        raw = self.properties.get(name)
        return raw.strip() if raw else ""


@dataclass
class LocalProfile:
    """
    The directory's stored copy of a member.

    Owned by the profile store; the reconciliation engine reads and writes
    instances through the store and never keeps them between runs.
    """

    record_id: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    company_name: str = ""
    job_title: str = ""
    phone_number: str = ""
    industry: str = ""
    state_region: str = ""
    city: str = ""
    bio: str = ""
    linkedin: str = ""
    headshot: str = ""
    membership: str = ""
    email_domain: Optional[str] = None
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Columns the store maintains itself
    STORE_MANAGED = ("created_at", "updated_at")

    @classmethod
    def column_names(cls) -> list[str]:
        """Columns written on upsert, record_id first."""
        return [f.name for f in fields(cls) if f.name not in cls.STORE_MANAGED]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LocalProfile":
        """Build a profile from a database row, treating NULL text as empty."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in row.keys():
                continue
            value = row[f.name]
            if f.name == "active":
                value = bool(value) if value is not None else False
            elif f.name == "record_id":
                value = str(value)
            elif value is None and f.name not in ("email_domain",) + cls.STORE_MANAGED:
                value = ""
            values[f.name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict keyed by attribute name."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[f.name] = value
        return data

    def to_display_dict(self) -> dict[str, Any]:
        """Serialize using the directory's field labels ("First Name", ...)."""
        data: dict[str, Any] = {"record_id": self.record_id}
        for profile_field in SYNCED_FIELDS + DERIVED_FIELDS:
            data[profile_field.label] = getattr(self, profile_field.attribute)
        data["active"] = self.active
        return data
