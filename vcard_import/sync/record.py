"""
Contact record model for vCard imports.

Provides a Record representation shared by parsed vCard data and the local
address book, with methods for:
- Reading single-value and multi-value fields by name
- Generating match keys for pairing downloaded and local records
- Building display names for logs and the CLI
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional, Union


class RecordKind(str, Enum):
    """Discriminates person records from organization records."""

    PERSON = "person"
    ORGANIZATION = "organization"


class SingleValueField(str, Enum):
    """Single-value fields of a record. Values are Record attribute names."""

    PREFIX_NAME = "prefix_name"
    FIRST_NAME = "first_name"
    NICK_NAME = "nick_name"
    MIDDLE_NAME = "middle_name"
    LAST_NAME = "last_name"
    SUFFIX_NAME = "suffix_name"
    ORGANIZATION = "organization"
    JOB_TITLE = "job_title"
    DEPARTMENT = "department"


class MultiValueField(str, Enum):
    """Multi-value fields of a record. Values are Record attribute names."""

    PHONES = "phones"
    EMAILS = "emails"
    URLS = "urls"
    ADDRESSES = "addresses"
    INSTANT_MESSAGES = "instant_messages"
    SOCIAL_PROFILES = "social_profiles"


# Fields holding a dict value (street/city/..., service/username/...)
DICT_VALUE_FIELDS = frozenset(
    {
        MultiValueField.ADDRESSES,
        MultiValueField.INSTANT_MESSAGES,
        MultiValueField.SOCIAL_PROFILES,
    }
)


class LabeledValue(NamedTuple):
    """One entry of a multi-value field, e.g. ("Work", "555-0100")."""

    label: str
    value: Any


# (kind, first, last) for persons, (kind, name) for organizations
MatchKey = Union[tuple[RecordKind, str, str], tuple[RecordKind, str]]


def _trimmed(value: Optional[str]) -> str:
    return value.strip() if value else ""


@dataclass
class Record:
    """
    A contact record, either a person or an organization.

    Attributes:
        kind: PERSON or ORGANIZATION
        prefix_name, first_name, nick_name, middle_name, last_name,
        suffix_name: Name parts of a person
        organization: Company of a person, or the name of an organization
        job_title: Job title
        department: Department within the organization
        phones, emails, urls: Labeled string values
        addresses, instant_messages, social_profiles: Labeled dict values
        image: Photo as JPEG bytes
        note: Free text, carried along but never compared
        record_id: Row id in the local address book, None for parsed records

    Usage:
        record = Record.person("Arnold", "Alpha", emails=[LabeledValue("Work", "a@example.com")])
        key = record.match_key()
        record.single_value(SingleValueField.JOB_TITLE)
    """

    kind: RecordKind = RecordKind.PERSON

    prefix_name: Optional[str] = None
    first_name: Optional[str] = None
    nick_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    suffix_name: Optional[str] = None
    organization: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None

    phones: list[LabeledValue] = field(default_factory=list)
    emails: list[LabeledValue] = field(default_factory=list)
    urls: list[LabeledValue] = field(default_factory=list)
    addresses: list[LabeledValue] = field(default_factory=list)
    instant_messages: list[LabeledValue] = field(default_factory=list)
    social_profiles: list[LabeledValue] = field(default_factory=list)

    image: Optional[bytes] = None
    note: Optional[str] = None

    record_id: Optional[int] = None

    @classmethod
    def person(cls, first_name: str, last_name: str, **fields: Any) -> "Record":
        return cls(
            kind=RecordKind.PERSON, first_name=first_name, last_name=last_name, **fields
        )

    @classmethod
    def organization_named(cls, name: str, **fields: Any) -> "Record":
        return cls(kind=RecordKind.ORGANIZATION, organization=name, **fields)

    @property
    def is_organization(self) -> bool:
        return self.kind is RecordKind.ORGANIZATION

    @property
    def name(self) -> str:
        """Display name: the organization name, or the joined name parts."""
        if self.is_organization:
            return _trimmed(self.organization)
        parts = [
            _trimmed(part)
            for part in (
                self.prefix_name,
                self.first_name,
                self.middle_name,
                self.last_name,
                self.suffix_name,
            )
        ]
        return " ".join(part for part in parts if part)

    def single_value(self, value_field: SingleValueField) -> Optional[str]:
        return getattr(self, value_field.value)

    def set_single_value(self, value_field: SingleValueField, value: Optional[str]) -> None:
        setattr(self, value_field.value, value)

    def multi_values(self, value_field: MultiValueField) -> list[LabeledValue]:
        return getattr(self, value_field.value)

    def match_key(self) -> Optional[MatchKey]:
        """
        Generate the key pairing this record with its counterpart.

        Persons are keyed by trimmed first and last name, both required.
        Organizations are keyed by trimmed name. The kind is part of the key,
        so a person never matches an organization.

        Returns:
            The key, or None for records that cannot be matched
        """
        if self.is_organization:
            name = _trimmed(self.organization)
            if not name:
                return None
            return (RecordKind.ORGANIZATION, name)

        first = _trimmed(self.first_name)
        last = _trimmed(self.last_name)
        if not first or not last:
            return None
        return (RecordKind.PERSON, first, last)

    def __repr__(self) -> str:
        return f"Record(kind={self.kind.value}, name={self.name!r}, id={self.record_id})"
