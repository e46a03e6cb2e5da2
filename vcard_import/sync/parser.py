"""
vCard parsing for imports.

Turns the body of a downloaded vCard file into Record instances:
- N -> prefix/first/middle/last/suffix name
- NICKNAME, TITLE -> nick name, job title
- ORG -> organization and department
- TEL, EMAIL, URL -> labeled strings
- ADR, IMPP, X-SOCIALPROFILE -> labeled dicts
- PHOTO -> JPEG image
- NOTE -> note (carried along, never compared)

A card is an organization when it says KIND:org (vCard 4.0) or
X-ABShowAs:COMPANY (Apple address books).
"""

import base64
import binascii
import logging
from typing import Any, Optional

import vobject

from vcard_import.errors import ParseError
from vcard_import.sync.photo import PhotoError, decode_photo_value, process_photo
from vcard_import.sync.record import LabeledValue, Record, RecordKind

logger = logging.getLogger(__name__)

NO_CONTACT_DATA_MESSAGE = "no contact data found from vCard file"
INVALID_VCARD_MESSAGE = "invalid vCard file"

DEFAULT_LABEL = "Other"

# TYPE values describing the kind of value rather than its purpose
IGNORED_TYPES = frozenset({"pref", "internet", "voice", "x400", "encoding", "value"})

LABEL_ALIASES = {"cell": "Mobile", "fax": "Fax", "homepage": "Home Page"}


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("vCard file is not UTF-8, falling back to Latin-1")
        return data.decode("latin-1")


def _lines(card: Any, name: str) -> list:
    return card.contents.get(name, [])


def _first_value(card: Any, name: str) -> Optional[Any]:
    lines = _lines(card, name)
    return lines[0].value if lines else None


def _text(value: Any) -> Optional[str]:
    """Flatten a structured vCard value part into a trimmed string."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = " ".join(str(part).strip() for part in value if str(part).strip())
    text = str(value).strip()
    return text or None


def _label(line: Any) -> str:
    types = []
    for key, values in line.params.items():
        if key.upper() == "TYPE":
            types.extend(values)
    # vCard 2.1 writes bare types, e.g. TEL;WORK;VOICE:
    types.extend(getattr(line, "singletonparams", []))
    for value in types:
        for part in str(value).split(","):
            lowered = part.strip().lower()
            if not lowered or lowered in IGNORED_TYPES:
                continue
            return LABEL_ALIASES.get(lowered, lowered.title())
    return DEFAULT_LABEL


def _labeled_strings(card: Any, name: str) -> list[LabeledValue]:
    values = []
    for line in _lines(card, name):
        text = _text(line.value)
        if text:
            values.append(LabeledValue(_label(line), text))
    return values


def _addresses(card: Any) -> list[LabeledValue]:
    values = []
    for line in _lines(card, "adr"):
        address = line.value
        parts = {
            "street": _text(getattr(address, "street", None)),
            "city": _text(getattr(address, "city", None)),
            "state": _text(getattr(address, "region", None)),
            "zip": _text(getattr(address, "code", None)),
            "country": _text(getattr(address, "country", None)),
        }
        value = {key: text for key, text in parts.items() if text}
        if value:
            values.append(LabeledValue(_label(line), value))
    return values


def _instant_messages(card: Any) -> list[LabeledValue]:
    values = []
    for line in _lines(card, "impp"):
        text = _text(line.value)
        if not text:
            continue
        service, _, username = text.partition(":")
        if not username:
            service, username = DEFAULT_LABEL, text
        service = service.strip().title()
        values.append(
            LabeledValue(service, {"service": service, "username": username.strip()})
        )
    return values


def _social_profiles(card: Any) -> list[LabeledValue]:
    values = []
    for line in _lines(card, "x-socialprofile"):
        url = _text(line.value)
        if not url:
            continue
        service = _label(line)
        value = {"service": service, "url": url}
        usernames = line.params.get("X-USER")
        if usernames:
            value["username"] = str(usernames[0])
        values.append(LabeledValue(service, value))
    return values


def _image(card: Any) -> Optional[bytes]:
    lines = _lines(card, "photo")
    if not lines:
        return None
    line = lines[0]
    value = line.value
    try:
        encodings = [str(v).lower() for v in line.params.get("ENCODING", [])]
        if isinstance(value, str) and ("b" in encodings or "base64" in encodings):
            data = base64.b64decode(value)
        else:
            data = decode_photo_value(value)
        return process_photo(data)
    except (PhotoError, binascii.Error, ValueError) as e:
        logger.warning(f"Dropping unusable photo: {e}")
        return None


def _is_organization(card: Any) -> bool:
    kind = _text(_first_value(card, "kind"))
    if kind and kind.lower() == "org":
        return True
    show_as = _text(_first_value(card, "x-abshowas"))
    return bool(show_as and show_as.upper() == "COMPANY")


def card_to_record(card: Any) -> Record:
    """Convert one vobject vCard component into a Record."""
    record = Record(
        kind=RecordKind.ORGANIZATION if _is_organization(card) else RecordKind.PERSON
    )

    name = _first_value(card, "n")
    if name is not None:
        record.prefix_name = _text(getattr(name, "prefix", None))
        record.first_name = _text(getattr(name, "given", None))
        record.middle_name = _text(getattr(name, "additional", None))
        record.last_name = _text(getattr(name, "family", None))
        record.suffix_name = _text(getattr(name, "suffix", None))

    record.nick_name = _text(_first_value(card, "nickname"))
    record.job_title = _text(_first_value(card, "title"))

    org = _first_value(card, "org")
    if org is not None:
        units = org if isinstance(org, (list, tuple)) else [org]
        units = [str(unit).strip() for unit in units if str(unit).strip()]
        if units:
            record.organization = units[0]
        if len(units) > 1:
            record.department = " ".join(units[1:])

    if record.is_organization and not record.organization:
        # Organizations without ORG are named by FN
        record.organization = _text(_first_value(card, "fn"))

    record.phones = _labeled_strings(card, "tel")
    record.emails = _labeled_strings(card, "email")
    record.urls = _labeled_strings(card, "url")
    record.addresses = _addresses(card)
    record.instant_messages = _instant_messages(card)
    record.social_profiles = _social_profiles(card)
    record.image = _image(card)
    record.note = _text(_first_value(card, "note"))
    return record


def parse_records(data: bytes) -> list[Record]:
    """
    Parse the body of a vCard file.

    Args:
        data: Raw bytes of the vCard file

    Returns:
        Non-empty list of records, in file order

    Raises:
        ParseError: If the file is not a valid vCard file or holds no cards
    """
    if not data or not data.strip():
        raise ParseError(NO_CONTACT_DATA_MESSAGE)

    try:
        cards = [
            component
            for component in vobject.readComponents(_decode(data))
            if component.name.upper() == "VCARD"
        ]
    except (vobject.base.VObjectError, ValueError, AttributeError, TypeError) as e:
        logger.debug(f"vCard parse failure: {e}")
        raise ParseError(INVALID_VCARD_MESSAGE) from e

    if not cards:
        raise ParseError(NO_CONTACT_DATA_MESSAGE)

    try:
        records = [card_to_record(card) for card in cards]
    except (vobject.base.VObjectError, ValueError, AttributeError, TypeError) as e:
        logger.debug(f"vCard conversion failure: {e}")
        raise ParseError(INVALID_VCARD_MESSAGE) from e

    logger.debug(f"Parsed {len(records)} records")
    return records


def parse_file(path) -> list[Record]:
    """Parse a vCard file on disk."""
    with open(path, "rb") as f:
        return parse_records(f.read())
