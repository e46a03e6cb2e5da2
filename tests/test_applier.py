"""
Tests for applying record differences to the address book.
"""

from unittest.mock import MagicMock

import pytest

from vcard_import.errors import ApplyError
from vcard_import.storage.address_book import AddressBook, AddressBookError
from vcard_import.sync.applier import ApplyProgress, apply_differences
from vcard_import.sync.differences import RecordChangeSet, RecordDifferences
from vcard_import.sync.record import LabeledValue, MultiValueField, Record, SingleValueField


@pytest.fixture
def address_book():
    book = AddressBook.open(":memory:")
    yield book
    book.close()


class TestApplyDifferences:
    """Tests for apply_differences()."""

    def test_additions_and_changes_are_applied(self, address_book):
        """Test a full apply against a real address book."""
        address_book.add_records([Record.person("Arnold", "Alpha")])
        address_book.save()
        old_records = address_book.load_records()
        new_records = [
            Record.person(
                "Arnold",
                "Alpha",
                job_title="Manager",
                emails=[LabeledValue("Work", "arnold@example.com")],
                image=b"jpeg",
            ),
            Record.organization_named("School"),
        ]
        diff = RecordDifferences.resolve(old_records, new_records)

        apply_differences(address_book, diff)

        records = address_book.load_records()
        assert len(records) == 2
        assert records[0].job_title == "Manager"
        assert records[0].emails == [("Work", "arnold@example.com")]
        assert records[0].image == b"jpeg"
        assert records[1].organization == "School"
        assert address_book.has_unsaved_changes

    def test_empty_differences_change_nothing(self, address_book):
        """Test that an empty diff leaves no pending transaction."""
        progress = []

        apply_differences(address_book, RecordDifferences(), progress.append)

        assert progress == []
        assert not address_book.has_unsaved_changes

    def test_progress_is_reported_after_additions_and_each_change(self, address_book):
        """Test the sequence of progress reports."""
        address_book.add_records(
            [Record.person("Arnold", "Alpha"), Record.person("Bertil", "Bravo")]
        )
        stored = address_book.load_records()
        diff = RecordDifferences(
            additions=[Record.organization_named("School")],
            changes=[
                RecordChangeSet(stored[0], {SingleValueField.JOB_TITLE: "Manager"}),
                RecordChangeSet(stored[1], {SingleValueField.JOB_TITLE: "Clerk"}),
            ],
        )
        progress = []

        apply_differences(address_book, diff, progress.append)

        assert progress == [
            ApplyProgress(1, 0, 3),
            ApplyProgress(1, 1, 3),
            ApplyProgress(1, 2, 3),
        ]

    def test_failing_addition_raises_apply_error(self):
        """Test that a store failure during additions is wrapped."""
        address_book = MagicMock()
        address_book.add_records.side_effect = AddressBookError("disk full")
        diff = RecordDifferences(additions=[Record.person("Arnold", "Alpha")])

        with pytest.raises(ApplyError, match="Failed to add records: disk full"):
            apply_differences(address_book, diff)

    def test_failing_change_stops_and_keeps_earlier_changes(self, address_book):
        """Test that earlier mutations stay pending after a failure."""
        address_book.add_records([Record.person("Arnold", "Alpha")])
        stored = address_book.load_records()[0]
        unstored = Record.person("Bertil", "Bravo")
        diff = RecordDifferences(
            changes=[
                RecordChangeSet(stored, {SingleValueField.JOB_TITLE: "Manager"}),
                RecordChangeSet(
                    unstored,
                    multi_value_changes={
                        MultiValueField.PHONES: [LabeledValue("Work", "555")]
                    },
                ),
            ]
        )
        progress = []

        with pytest.raises(ApplyError, match="Failed to change record Bertil Bravo"):
            apply_differences(address_book, diff, progress.append)

        assert stored.job_title == "Manager"
        assert progress == [ApplyProgress(0, 1, 2)]
