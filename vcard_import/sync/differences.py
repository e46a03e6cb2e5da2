"""
Record matching and differencing for vCard imports.

Pairs downloaded records with local records by match key and computes what to
change in the local address book:
- Additions: downloaded records with no local counterpart
- Change sets: new values for matched local records

The policy is additive only. A single value is filled in only where the local
record has none, a photo only where the local record has no photo, and a
multi-value entry only where its value (whatever its label) is not already
present. Nothing is ever overwritten or removed.

Keys shared by more than one record on either side are ambiguous and skipped,
so an import never guesses which local record was meant.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from vcard_import.sync.record import (
    LabeledValue,
    MatchKey,
    MultiValueField,
    Record,
    SingleValueField,
)

logger = logging.getLogger(__name__)

# Single-value fields that can be filled in on a matched record. The first and
# last name of a person form its match key and never differ.
TRACKED_SINGLE_VALUE_FIELDS = (
    SingleValueField.PREFIX_NAME,
    SingleValueField.NICK_NAME,
    SingleValueField.MIDDLE_NAME,
    SingleValueField.SUFFIX_NAME,
    SingleValueField.ORGANIZATION,
    SingleValueField.JOB_TITLE,
    SingleValueField.DEPARTMENT,
)

TRACKED_MULTI_VALUE_FIELDS = tuple(MultiValueField)

# Index old records, index new records, compute the diff
TOTAL_RESOLVE_PHASES = 3


class ResolveProgress(NamedTuple):
    """Progress of RecordDifferences.resolve()."""

    total_phases_completed: int
    total_phases_to_complete: int


@dataclass
class RecordChangeSet:
    """
    Changes to apply to one matched local record.

    Attributes:
        record: The local record to change
        single_value_changes: Values for fields that are empty locally
        multi_value_changes: Entries to append, per field
        image_change: Photo for a local record without one
    """

    record: Record
    single_value_changes: dict[SingleValueField, str] = field(default_factory=dict)
    multi_value_changes: dict[MultiValueField, list[LabeledValue]] = field(
        default_factory=dict
    )
    image_change: Optional[bytes] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.single_value_changes
            and not self.multi_value_changes
            and self.image_change is None
        )

    @classmethod
    def resolve(cls, old_record: Record, new_record: Record) -> "RecordChangeSet":
        """Compute the additive changes new_record brings to old_record."""
        change_set = cls(record=old_record)

        for value_field in TRACKED_SINGLE_VALUE_FIELDS:
            new_value = new_record.single_value(value_field)
            if _is_empty(new_value):
                continue
            if _is_empty(old_record.single_value(value_field)):
                change_set.single_value_changes[value_field] = new_value

        for value_field in TRACKED_MULTI_VALUE_FIELDS:
            additions = _multi_value_additions(
                old_record.multi_values(value_field),
                new_record.multi_values(value_field),
            )
            if additions:
                change_set.multi_value_changes[value_field] = additions

        if new_record.image and not old_record.image:
            change_set.image_change = new_record.image

        return change_set

    def describe(self) -> str:
        parts = [f.value for f in self.single_value_changes]
        parts.extend(
            f"{f.value}+{len(values)}" for f, values in self.multi_value_changes.items()
        )
        if self.image_change is not None:
            parts.append("image")
        return f"{self.record.name}: {', '.join(parts)}"


def _is_empty(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _multi_value_additions(
    old_values: Iterable[LabeledValue], new_values: Iterable[LabeledValue]
) -> list[LabeledValue]:
    # Identity is the value alone; labels are ignored
    seen = [value for _, value in old_values]
    additions = []
    for label, value in new_values:
        if value in seen:
            continue
        seen.append(value)
        additions.append(LabeledValue(label, value))
    return additions


def _index_by_match_key(records: Iterable[Record]) -> dict[MatchKey, list[Record]]:
    index: dict[MatchKey, list[Record]] = {}
    for record in records:
        key = record.match_key()
        if key is None:
            continue
        index.setdefault(key, []).append(record)
    return index


def _pluralize(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


@dataclass
class RecordDifferences:
    """
    Additions and changes that bring a local address book up to date.

    Usage:
        diff = RecordDifferences.resolve(address_book.load_records(), parsed)
        print(diff.description)  # "2 additions, 1 change"
    """

    additions: list[Record] = field(default_factory=list)
    changes: list[RecordChangeSet] = field(default_factory=list)

    @classmethod
    def resolve(
        cls,
        old_records: Iterable[Record],
        new_records: Iterable[Record],
        on_progress: Optional[Callable[[ResolveProgress], None]] = None,
    ) -> "RecordDifferences":
        """
        Match new records against old records and compute the differences.

        Args:
            old_records: Records of the local address book
            new_records: Records of the downloaded vCard file
            on_progress: Called after each resolve phase

        Returns:
            RecordDifferences in the order of new_records
        """

        def report(phase: int) -> None:
            if on_progress is not None:
                on_progress(ResolveProgress(phase, TOTAL_RESOLVE_PHASES))

        old_index = _index_by_match_key(old_records)
        report(1)

        new_index = _index_by_match_key(new_records)
        report(2)

        diff = cls()
        skipped = 0
        for key, new_matches in new_index.items():
            if len(new_matches) > 1:
                logger.debug(f"Skipping {len(new_matches)} downloaded records sharing key {key}")
                skipped += 1
                continue

            new_record = new_matches[0]
            old_matches = old_index.get(key)
            if not old_matches:
                diff.additions.append(new_record)
            elif len(old_matches) > 1:
                logger.debug(f"Skipping {len(old_matches)} local records sharing key {key}")
                skipped += 1
            else:
                change_set = RecordChangeSet.resolve(old_matches[0], new_record)
                if not change_set.is_empty:
                    diff.changes.append(change_set)
        report(3)

        logger.debug(
            f"Resolved {diff.description} "
            f"({skipped} ambiguous keys skipped)"
        )
        return diff

    @property
    def count_additions(self) -> int:
        return len(self.additions)

    @property
    def count_changes(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.additions and not self.changes

    @property
    def description(self) -> str:
        """Human-readable summary, e.g. "2 additions, 1 change"."""
        if self.is_empty:
            return "No changes"
        parts = []
        if self.additions:
            parts.append(_pluralize(self.count_additions, "addition", "additions"))
        if self.changes:
            parts.append(_pluralize(self.count_changes, "change", "changes"))
        return ", ".join(parts)

    def __str__(self) -> str:
        return self.description
