"""
Tests for the record differences module.

Tests matching of downloaded records against local records and the additive
change sets computed for matched pairs.
"""

from vcard_import.sync.differences import (
    TOTAL_RESOLVE_PHASES,
    RecordChangeSet,
    RecordDifferences,
    ResolveProgress,
)
from vcard_import.sync.record import (
    LabeledValue,
    MultiValueField,
    Record,
    SingleValueField,
)


def make_address(street, zip_code, city, state):
    return {"street": street, "zip": zip_code, "city": city, "state": state}


def resolve(old_records, new_records):
    return RecordDifferences.resolve(old_records, new_records)


class TestAdditions:
    """Tests for records without a local counterpart."""

    def test_new_record_is_added(self):
        """Test that a record with no local match becomes an addition."""
        new_record = Record.person("Arnold", "Alpha")

        diff = resolve([], [new_record])

        assert diff.additions == [new_record]
        assert diff.changes == []

    def test_persons_are_matched_by_first_and_last_name_only(self):
        """Test that records with the same name parts split differently do not match."""
        old_records = [
            Record(first_name="Arnold Alpha"),
            Record(last_name="Arnold Alpha"),
            Record(last_name="Alpha", organization="Arnold"),
            Record(last_name="Alpha", department="Arnold"),
            Record(middle_name="Arnold", last_name="Alpha"),
        ]

        diff = resolve(old_records, [Record.person("Arnold", "Alpha")])

        assert diff.count_additions == 1
        assert diff.count_changes == 0

    def test_organizations_are_matched_by_name(self):
        """Test that an organization with a known name is not added again."""
        old_records = [Record.organization_named("Goverment")]
        new_records = [
            Record.organization_named("Goverment"),
            Record.organization_named("School"),
        ]

        diff = resolve(old_records, new_records)

        assert [r.organization for r in diff.additions] == ["School"]
        assert diff.count_changes == 0

    def test_person_and_organization_with_same_name_are_distinct(self):
        """Test that the record kind separates otherwise equal names."""
        new_records = [
            Record.person("Goverment", "Goverment"),
            Record.organization_named("Goverment"),
        ]

        diff = resolve([Record.organization_named("Goverment Goverment")], new_records)

        assert diff.count_additions == 2
        assert diff.count_changes == 0

    def test_person_with_only_one_name_part_is_skipped(self):
        """Test that persons missing first or last name are never added."""
        new_records = [
            Record.person("Goverment", ""),
            Record.person("", "Alpha"),
            Record.person("Arnold", None),
        ]

        diff = resolve([], new_records)

        assert diff.is_empty

    def test_records_with_empty_names_are_skipped(self):
        """Test that keyless new records are neither added nor matched."""
        new_records = [Record.person("", ""), Record.organization_named("")]

        diff = resolve([], new_records)

        assert diff.count_additions == 0
        assert diff.count_changes == 0

    def test_names_are_trimmed_for_matching(self):
        """Test that surrounding whitespace does not prevent a match."""
        old_record = Record.person(" Arnold", "Alpha ")
        new_record = Record.person("Arnold ", " Alpha", job_title="Manager")

        diff = resolve([old_record], [new_record])

        assert diff.count_additions == 0
        assert diff.changes[0].record is old_record

    def test_whitespace_only_names_are_empty(self):
        """Test that names consisting of whitespace produce no key."""
        diff = resolve([], [Record.person("  ", "Alpha"), Record.organization_named(" ")])

        assert diff.is_empty

    def test_additions_keep_order_of_new_records(self):
        """Test that additions appear in the order of the downloaded records."""
        new_records = [
            Record.person("Cecil", "Charlie"),
            Record.organization_named("School"),
            Record.person("Arnold", "Alpha"),
        ]

        diff = resolve([], new_records)

        assert diff.additions == new_records


class TestAmbiguousKeys:
    """Tests for match keys shared by several records."""

    def test_duplicate_new_records_are_not_added(self):
        """Test that several new records with the same key are skipped."""
        new_records = [
            Record.person("Arnold", "Alpha", job_title="former"),
            Record.person("Arnold", "Alpha", job_title="middle"),
            Record.person("Arnold", "Alpha", job_title="latter"),
            Record.organization_named("Goverment"),
            Record.organization_named("Goverment"),
            Record.organization_named("Goverment"),
        ]

        diff = resolve([], new_records)

        assert diff.is_empty

    def test_old_records_with_empty_names_are_not_changed(self):
        """Test that keyless local records are never matched."""
        old_records = [Record.person("", ""), Record.organization_named("")]
        new_records = [
            Record.person("", "", job_title="worker"),
            Record.organization_named(
                "", emails=[LabeledValue("Work", "info@gov.gov")]
            ),
        ]

        diff = resolve(old_records, new_records)

        assert diff.is_empty

    def test_duplicate_old_records_are_not_changed(self):
        """Test that an ambiguous local key yields neither change nor addition."""
        old_records = [
            Record.person("Arnold", "Alpha"),
            Record.person("Arnold", "Alpha"),
            Record.person("Arnold", "Alpha"),
            Record.organization_named("Goverment"),
            Record.organization_named("Goverment"),
            Record.organization_named("Goverment"),
        ]
        new_records = [
            Record.person("Arnold", "Alpha", job_title="worker"),
            Record.organization_named(
                "Goverment", emails=[LabeledValue("Work", "info@gov.gov")]
            ),
        ]

        diff = resolve(old_records, new_records)

        assert diff.count_additions == 0
        assert diff.count_changes == 0

    def test_duplicate_new_records_do_not_change_unique_old_record(self):
        """Test that new-side ambiguity skips the key even if unique locally."""
        old_records = [
            Record.person("Arnold", "Alpha"),
            Record.organization_named("Goverment"),
        ]
        new_records = [
            Record.person("Arnold", "Alpha", job_title="former"),
            Record.person("Arnold", "Alpha", job_title="middle"),
            Record.person("Arnold", "Alpha", job_title="latter"),
            Record.organization_named(
                "Goverment", emails=[LabeledValue("Work", "former@gov.gov")]
            ),
            Record.organization_named(
                "Goverment", emails=[LabeledValue("Work", "middle@gov.gov")]
            ),
            Record.organization_named(
                "Goverment", emails=[LabeledValue("Work", "latter@gov.gov")]
            ),
        ]

        diff = resolve(old_records, new_records)

        assert diff.is_empty

    def test_ambiguous_key_does_not_affect_other_keys(self):
        """Test that unique keys are still processed next to ambiguous ones."""
        new_records = [
            Record.person("Arnold", "Alpha"),
            Record.person("Arnold", "Alpha"),
            Record.person("Bertil", "Bravo"),
        ]

        diff = resolve([], new_records)

        assert [r.first_name for r in diff.additions] == ["Bertil"]


class TestSingleValueChanges:
    """Tests for the single-value field policy."""

    def test_person_with_all_fields_fills_empty_local_record(self):
        """Test that every tracked field of a bare local record is proposed."""
        old_record = Record.person("Arnold", "Alpha")
        home_address = make_address("Suite 1173", "95814", "Sacramento", "CA")
        instant_message = {"service": "Skype", "username": "bigarnie"}
        social_profile = {
            "service": "Twitter",
            "url": "https://twitter.com/arnie",
            "username": "arnie",
        }
        new_record = Record.person(
            "Arnold",
            "Alpha",
            prefix_name="Mr.",
            nick_name="Arnie",
            middle_name="Big",
            suffix_name="Senior",
            organization="State Council",
            job_title="Manager",
            department="Headquarters",
            phones=[LabeledValue("Main", "5551001002")],
            emails=[LabeledValue("Home", "arnold.alpha@example.com")],
            urls=[LabeledValue("Work", "https://exampleinc.com/")],
            addresses=[LabeledValue("Home", home_address)],
            instant_messages=[LabeledValue("Skype", instant_message)],
            social_profiles=[LabeledValue("Twitter", social_profile)],
            image=b"\xff\xd8jpeg",
        )

        diff = resolve([old_record], [new_record])

        assert diff.count_additions == 0
        assert diff.count_changes == 1
        change_set = diff.changes[0]
        assert change_set.record is old_record
        assert change_set.single_value_changes == {
            SingleValueField.PREFIX_NAME: "Mr.",
            SingleValueField.NICK_NAME: "Arnie",
            SingleValueField.MIDDLE_NAME: "Big",
            SingleValueField.SUFFIX_NAME: "Senior",
            SingleValueField.ORGANIZATION: "State Council",
            SingleValueField.JOB_TITLE: "Manager",
            SingleValueField.DEPARTMENT: "Headquarters",
        }
        assert change_set.multi_value_changes == {
            MultiValueField.PHONES: [("Main", "5551001002")],
            MultiValueField.EMAILS: [("Home", "arnold.alpha@example.com")],
            MultiValueField.URLS: [("Work", "https://exampleinc.com/")],
            MultiValueField.ADDRESSES: [("Home", home_address)],
            MultiValueField.INSTANT_MESSAGES: [("Skype", instant_message)],
            MultiValueField.SOCIAL_PROFILES: [("Twitter", social_profile)],
        }
        assert change_set.image_change == b"\xff\xd8jpeg"

    def test_existing_single_value_is_not_overwritten(self):
        """Test that a non-empty local value is kept."""
        old_record = Record.person("Arnold", "Alpha", job_title="Manager")
        new_record = Record.person("Arnold", "Alpha", job_title="Governor")

        diff = resolve([old_record], [new_record])

        assert diff.is_empty

    def test_blank_local_value_counts_as_empty(self):
        """Test that a whitespace-only local value may be filled in."""
        old_record = Record.person("Arnold", "Alpha", job_title=" ")
        new_record = Record.person("Arnold", "Alpha", job_title="Governor")

        diff = resolve([old_record], [new_record])

        assert diff.changes[0].single_value_changes == {
            SingleValueField.JOB_TITLE: "Governor"
        }

    def test_untracked_field_is_ignored(self):
        """Test that a note alone produces no change."""
        old_record = Record.person("Arnold", "Alpha")
        new_record = Record.person("Arnold", "Alpha", note="a note")

        diff = resolve([old_record], [new_record])

        assert diff.is_empty

    def test_empty_new_value_is_ignored(self):
        """Test that an empty downloaded value never produces a change."""
        old_record = Record.person("Arnold", "Alpha")
        new_record = Record.person("Arnold", "Alpha", job_title="")

        diff = resolve([old_record], [new_record])

        assert diff.is_empty


class TestMultiValueChanges:
    """Tests for the multi-value field policy."""

    def test_organization_gets_new_email(self):
        """Test that a matched organization receives a new email."""
        old_record = Record.organization_named("Goverment")
        new_record = Record.organization_named(
            "Goverment", emails=[LabeledValue("Work", "info@gov.gov")]
        )

        diff = resolve([old_record], [new_record])

        assert diff.count_additions == 0
        assert diff.count_changes == 1
        change_set = diff.changes[0]
        assert change_set.single_value_changes == {}
        assert change_set.multi_value_changes == {
            MultiValueField.EMAILS: [("Work", "info@gov.gov")]
        }

    def test_same_phone_with_other_label_is_not_added(self):
        """Test that labels are ignored when comparing values."""
        old_record = Record.person(
            "Arnold", "Alpha", phones=[LabeledValue("Mobile", "5551001001")]
        )
        new_record = Record.person(
            "Arnold", "Alpha", phones=[LabeledValue("Main", "5551001001")]
        )

        diff = resolve([old_record], [new_record])

        assert diff.is_empty

    def test_new_phone_is_added_with_its_label(self):
        """Test that a genuinely new value is proposed with the new label."""
        old_record = Record.person(
            "Arnold", "Alpha", phones=[LabeledValue("Mobile", "5551001001")]
        )
        new_record = Record.person(
            "Arnold", "Alpha", phones=[LabeledValue("Main", "5551001002")]
        )

        diff = resolve([old_record], [new_record])

        assert diff.count_changes == 1
        changes = diff.changes[0].multi_value_changes
        assert list(changes) == [MultiValueField.PHONES]
        assert changes[MultiValueField.PHONES] == [LabeledValue("Main", "5551001002")]

    def test_same_address_with_other_label_is_not_added(self):
        """Test that dict values are compared without their label."""
        address = make_address("Street 1", "00001", "City", "CA")
        old_record = Record.person(
            "Arnold", "Alpha", addresses=[LabeledValue("Home", address)]
        )
        new_record = Record.person(
            "Arnold", "Alpha", addresses=[LabeledValue("Work", dict(address))]
        )

        diff = resolve([old_record], [new_record])

        assert diff.is_empty

    def test_new_address_is_added(self):
        """Test that a different address is proposed."""
        old_address = make_address("Street 1", "00001", "City", "CA")
        new_address = make_address("Street 2", "00001", "City", "CA")
        old_record = Record.person(
            "Arnold", "Alpha", addresses=[LabeledValue("Home", old_address)]
        )
        new_record = Record.person(
            "Arnold", "Alpha", addresses=[LabeledValue("Work", new_address)]
        )

        diff = resolve([old_record], [new_record])

        assert diff.changes[0].multi_value_changes == {
            MultiValueField.ADDRESSES: [("Work", new_address)]
        }

    def test_only_missing_values_are_added(self):
        """Test that known values are filtered out of a mixed list."""
        old_record = Record.person(
            "Arnold", "Alpha", emails=[LabeledValue("Home", "a@example.com")]
        )
        new_record = Record.person(
            "Arnold",
            "Alpha",
            emails=[
                LabeledValue("Work", "a@example.com"),
                LabeledValue("Work", "b@example.com"),
            ],
        )

        diff = resolve([old_record], [new_record])

        assert diff.changes[0].multi_value_changes == {
            MultiValueField.EMAILS: [("Work", "b@example.com")]
        }


class TestImageChanges:
    """Tests for the image policy."""

    def test_existing_image_is_not_replaced(self):
        """Test that a local photo is kept."""
        old_record = Record.person("Arnold", "Alpha", image=b"old")
        new_record = Record.person("Arnold", "Alpha", image=b"new")

        diff = resolve([old_record], [new_record])

        assert diff.is_empty

    def test_image_is_added_to_record_without_one(self):
        """Test that a photo is proposed for a local record without one."""
        old_record = Record.person("Arnold", "Alpha")
        new_record = Record.person("Arnold", "Alpha", image=b"new")

        change_set = RecordChangeSet.resolve(old_record, new_record)

        assert change_set.image_change == b"new"
        assert not change_set.is_empty


class TestResolveProgress:
    """Tests for progress reporting while resolving."""

    def test_reports_each_phase(self):
        """Test that progress is reported after all three phases."""
        reports = []

        RecordDifferences.resolve(
            [Record.person("Arnold", "Alpha")],
            [Record.person("Bertil", "Bravo")],
            on_progress=reports.append,
        )

        assert reports == [
            ResolveProgress(1, TOTAL_RESOLVE_PHASES),
            ResolveProgress(2, TOTAL_RESOLVE_PHASES),
            ResolveProgress(3, TOTAL_RESOLVE_PHASES),
        ]


class TestDescription:
    """Tests for the human-readable summary."""

    def test_empty_diff(self):
        """Test the summary of an empty diff."""
        assert RecordDifferences().description == "No changes"

    def test_plural_and_singular(self):
        """Test that counts are pluralized correctly."""
        diff = RecordDifferences(
            additions=[Record.person("A", "A"), Record.person("B", "B")],
            changes=[RecordChangeSet(record=Record.person("C", "C"), image_change=b"x")],
        )

        assert diff.description == "2 additions, 1 change"
        assert str(diff) == diff.description

    def test_changes_only(self):
        """Test the summary when nothing is added."""
        diff = RecordDifferences(
            changes=[
                RecordChangeSet(record=Record.person("C", "C"), image_change=b"x"),
                RecordChangeSet(record=Record.person("D", "D"), image_change=b"y"),
            ]
        )

        assert diff.description == "2 changes"


class TestRepeatedResolve:
    """Tests for resolving the same records more than once."""

    def test_same_inputs_give_equal_differences(self):
        """Test that resolve() neither depends on nor changes earlier calls."""
        old_records = [
            Record.person("Arnold", "Alpha", phones=[LabeledValue("Work", "5551001002")]),
            Record.organization_named("Goverment"),
        ]
        new_records = [
            Record.person(
                "Arnold",
                "Alpha",
                job_title="Manager",
                phones=[LabeledValue("Mobile", "5551001003")],
            ),
            Record.organization_named(
                "Goverment", emails=[LabeledValue("Work", "info@gov.gov")]
            ),
            Record.person("Bertil", "Bravo"),
        ]

        first = resolve(old_records, new_records)
        second = resolve(old_records, new_records)

        assert first == second
        assert first.count_additions == 1
        assert first.count_changes == 2
        assert old_records[0].phones == [("Work", "5551001002")]
        assert old_records[0].job_title is None
