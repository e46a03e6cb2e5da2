"""
Applying record differences to the address book.

Additions are inserted first, then each change set fills in single values,
appends multi-value entries and sets the photo. The first failing mutation
stops the source. Mutations already made are not rolled back: the importer
saves them before reporting the failure.
"""

import logging
from collections.abc import Callable
from typing import NamedTuple, Optional

from vcard_import.errors import ApplyError
from vcard_import.storage.address_book import AddressBook, AddressBookError
from vcard_import.sync.differences import RecordDifferences

logger = logging.getLogger(__name__)


class ApplyProgress(NamedTuple):
    """Progress of apply_differences()."""

    total_added: int
    total_changed: int
    total_to_apply: int


def apply_differences(
    address_book: AddressBook,
    diff: RecordDifferences,
    on_progress: Optional[Callable[[ApplyProgress], None]] = None,
) -> None:
    """
    Apply additions and change sets to the address book without saving.

    Args:
        address_book: Address book to change
        diff: Differences to apply
        on_progress: Called after the additions and after each change set

    Raises:
        ApplyError: If a mutation fails; names the failing field and record
    """
    total_to_apply = diff.count_additions + diff.count_changes
    added = 0
    changed = 0

    def report() -> None:
        if on_progress is not None:
            on_progress(ApplyProgress(added, changed, total_to_apply))

    if diff.additions:
        try:
            address_book.add_records(diff.additions)
        except AddressBookError as e:
            raise ApplyError(f"Failed to add records: {e}") from e
        added = diff.count_additions
        report()

    for change_set in diff.changes:
        record = change_set.record
        try:
            for value_field, value in change_set.single_value_changes.items():
                address_book.set_single_value(value_field, value, record)
            for value_field, values in change_set.multi_value_changes.items():
                address_book.add_multi_values(value_field, values, record)
            if change_set.image_change is not None:
                address_book.set_image(change_set.image_change, record)
        except AddressBookError as e:
            raise ApplyError(f"Failed to change record {record.name}: {e}") from e
        logger.debug(f"Changed {change_set.describe()}")
        changed += 1
        report()

    logger.debug(f"Applied {added} additions and {changed} changes")
