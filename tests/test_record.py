"""
Unit tests for the Record model.

Tests match keys, display names and field access by name.
"""

from vcard_import.sync.record import (
    LabeledValue,
    MultiValueField,
    Record,
    RecordKind,
    SingleValueField,
)


class TestMatchKey:
    """Tests for Record.match_key()."""

    def test_person_key_uses_trimmed_first_and_last_name(self):
        """Test the key of a person."""
        record = Record.person("  Arnold ", " Alpha")

        assert record.match_key() == (RecordKind.PERSON, "Arnold", "Alpha")

    def test_person_without_last_name_has_no_key(self):
        """Test that both name parts are required."""
        assert Record.person("Arnold", "").match_key() is None
        assert Record.person(None, "Alpha").match_key() is None

    def test_organization_key_uses_name(self):
        """Test the key of an organization."""
        record = Record.organization_named(" Goverment ")

        assert record.match_key() == (RecordKind.ORGANIZATION, "Goverment")

    def test_organization_without_name_has_no_key(self):
        """Test that an unnamed organization has no key."""
        assert Record.organization_named("").match_key() is None
        assert Record(kind=RecordKind.ORGANIZATION).match_key() is None

    def test_person_organization_field_is_not_part_of_key(self):
        """Test that a person's company does not affect the key."""
        plain = Record.person("Arnold", "Alpha")
        employed = Record.person("Arnold", "Alpha", organization="State Council")

        assert plain.match_key() == employed.match_key()

    def test_kinds_never_share_a_key(self):
        """Test that keys differ between kinds."""
        person = Record.person("Goverment", "Office")
        organization = Record.organization_named("Goverment Office")

        assert person.match_key() != organization.match_key()


class TestFieldAccess:
    """Tests for reading and writing fields by enum."""

    def test_single_value_roundtrip(self):
        """Test single_value() and set_single_value()."""
        record = Record.person("Arnold", "Alpha")

        record.set_single_value(SingleValueField.JOB_TITLE, "Manager")

        assert record.job_title == "Manager"
        assert record.single_value(SingleValueField.JOB_TITLE) == "Manager"

    def test_multi_values_returns_live_list(self):
        """Test that multi_values() returns the record's own list."""
        record = Record.person("Arnold", "Alpha")

        record.multi_values(MultiValueField.PHONES).append(LabeledValue("Main", "555"))

        assert record.phones == [("Main", "555")]

    def test_every_field_enum_names_an_attribute(self):
        """Test that the field enums match the dataclass attributes."""
        record = Record()
        for value_field in SingleValueField:
            assert hasattr(record, value_field.value)
        for value_field in MultiValueField:
            assert record.multi_values(value_field) == []

    def test_defaults_are_not_shared(self):
        """Test that list defaults are independent per record."""
        first = Record()
        second = Record()

        first.emails.append(LabeledValue("Home", "a@example.com"))

        assert second.emails == []


class TestDisplayName:
    """Tests for Record.name."""

    def test_person_name_joins_parts(self):
        """Test the display name of a person."""
        record = Record.person("Arnold", "Alpha", prefix_name="Mr.", middle_name="Big")

        assert record.name == "Mr. Arnold Big Alpha"

    def test_organization_name(self):
        """Test the display name of an organization."""
        assert Record.organization_named(" School ").name == "School"

    def test_repr_contains_name(self):
        """Test the repr."""
        assert "Arnold Alpha" in repr(Record.person("Arnold", "Alpha"))
