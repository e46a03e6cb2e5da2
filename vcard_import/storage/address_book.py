"""
SQLite address book for imported contacts.

Provides the local contact store that vCard imports are merged into. All
records are loaded into memory when the address book is opened, and every
mutation updates both the database and the loaded records, so that a later
import in the same run sees the records added by an earlier one.

Mutations are collected in one transaction until save() commits them or
revert() discards them.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Union

from vcard_import.errors import StoreUnavailableError
from vcard_import.sync.record import (
    LabeledValue,
    MultiValueField,
    Record,
    RecordKind,
    SingleValueField,
)

logger = logging.getLogger(__name__)

# SQL Schema for records and their multi-value entries
SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY,
    kind TEXT NOT NULL DEFAULT 'person',
    prefix_name TEXT,
    first_name TEXT,
    nick_name TEXT,
    middle_name TEXT,
    last_name TEXT,
    suffix_name TEXT,
    organization TEXT,
    job_title TEXT,
    department TEXT,
    image BLOB,
    note TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS multi_values (
    id INTEGER PRIMARY KEY,
    record_id INTEGER NOT NULL REFERENCES records(id) ON DELETE CASCADE,
    field TEXT NOT NULL,
    label TEXT NOT NULL,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_multi_values_record ON multi_values(record_id);
"""

SINGLE_VALUE_COLUMNS = tuple(f.value for f in SingleValueField)


class AddressBookError(Exception):
    """Raised when reading or changing the address book fails."""

    pass


class AddressBook:
    """
    Local contact store backed by SQLite.

    Usage:
        address_book = AddressBook.open("~/.vcard-import/address_book.db")
        records = address_book.load_records()
        address_book.add_records([Record.person("Arnold", "Alpha")])
        if address_book.has_unsaved_changes:
            address_book.save()
        address_book.close()

        # Or use in-memory for testing:
        address_book = AddressBook.open(":memory:")
    """

    def __init__(self, connection: sqlite3.Connection, path: str):
        """
        Initialize over an open connection. Use AddressBook.open() instead.

        Args:
            connection: Connection with the schema in place
            path: Database path, for logging
        """
        self._connection = connection
        self.path = path
        self._records: list[Record] = self._read_records()

    @classmethod
    def open(cls, path: Union[str, Path]) -> "AddressBook":
        """
        Open, and create if needed, the address book at path.

        Raises:
            StoreUnavailableError: If the database cannot be opened
        """
        db_path = str(path)
        try:
            if db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                db_path = str(Path(db_path).expanduser())
            # Opened by the importer's worker thread, closed by the caller
            connection = sqlite3.connect(db_path, check_same_thread=False)
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            connection.executescript(SCHEMA)
            connection.commit()
            address_book = cls(connection, db_path)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open address book {db_path}: {e}") from e

        logger.debug(f"Opened address book {db_path} with {len(address_book._records)} records")
        return address_book

    # =========================================================================
    # Reading
    # =========================================================================

    def _read_records(self) -> list[Record]:
        cursor = self._connection.execute("SELECT * FROM records ORDER BY id")
        records = {row["id"]: self._row_to_record(row) for row in cursor.fetchall()}

        cursor = self._connection.execute(
            "SELECT record_id, field, label, value FROM multi_values ORDER BY id"
        )
        for row in cursor.fetchall():
            record = records.get(row["record_id"])
            if record is None:
                continue
            entry = LabeledValue(row["label"], json.loads(row["value"]))
            record.multi_values(MultiValueField(row["field"])).append(entry)

        return list(records.values())

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        record = Record(
            kind=RecordKind(row["kind"]),
            image=row["image"],
            note=row["note"],
            record_id=row["id"],
        )
        for column in SINGLE_VALUE_COLUMNS:
            setattr(record, column, row[column])
        return record

    def load_records(self) -> list[Record]:
        """
        Return all records, including those added since opening.

        The returned records are the address book's own; pass them back to
        the mutation methods to change them.
        """
        return list(self._records)

    def count_records(self) -> int:
        return len(self._records)

    @property
    def has_unsaved_changes(self) -> bool:
        return self._connection.in_transaction

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_records(self, records: list[Record]) -> None:
        """
        Insert new records.

        Raises:
            AddressBookError: If an insert fails
        """
        columns = ", ".join(("kind",) + SINGLE_VALUE_COLUMNS + ("image", "note"))
        placeholders = ", ".join("?" for _ in range(len(SINGLE_VALUE_COLUMNS) + 3))
        for record in records:
            values = (
                [record.kind.value]
                + [getattr(record, column) for column in SINGLE_VALUE_COLUMNS]
                + [record.image, record.note]
            )
            try:
                with self._savepoint():
                    cursor = self._connection.execute(
                        f"INSERT INTO records ({columns}) VALUES ({placeholders})", values
                    )
                    stored = replace(record, record_id=cursor.lastrowid)
                    for value_field in MultiValueField:
                        entries = list(record.multi_values(value_field))
                        setattr(stored, value_field.value, [])
                        self._insert_multi_values(value_field, entries, stored)
            except sqlite3.Error as e:
                raise AddressBookError(f"Failed to add record {record.name}: {e}") from e
            self._records.append(stored)
        logger.debug(f"Added {len(records)} records")

    @contextmanager
    def _savepoint(self) -> Iterator[None]:
        """Undo the statements of the block if it raises, keeping earlier ones."""
        # A savepoint released outside a transaction would commit
        if not self._connection.in_transaction:
            self._connection.execute("BEGIN")
        self._connection.execute("SAVEPOINT add_record")
        try:
            yield
        except Exception:
            self._connection.execute("ROLLBACK TO SAVEPOINT add_record")
            self._connection.execute("RELEASE SAVEPOINT add_record")
            raise
        self._connection.execute("RELEASE SAVEPOINT add_record")

    def set_single_value(
        self, value_field: SingleValueField, value: Optional[str], record: Record
    ) -> None:
        """
        Set a single-value field of a stored record.

        Raises:
            AddressBookError: If the record is not stored or the update fails
        """
        record_id = self._require_id(record)
        try:
            self._connection.execute(
                f"UPDATE records SET {value_field.value} = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (value, record_id),
            )
        except sqlite3.Error as e:
            raise AddressBookError(
                f"Failed to set {value_field.value} of {record.name}: {e}"
            ) from e
        record.set_single_value(value_field, value)

    def add_multi_values(
        self,
        value_field: MultiValueField,
        values: list[LabeledValue],
        record: Record,
    ) -> None:
        """
        Append entries to a multi-value field of a stored record.

        Raises:
            AddressBookError: If the record is not stored or an insert fails
        """
        self._require_id(record)
        try:
            self._insert_multi_values(value_field, values, record)
            self._touch(record)
        except sqlite3.Error as e:
            raise AddressBookError(
                f"Failed to add {value_field.value} to {record.name}: {e}"
            ) from e

    def set_image(self, data: bytes, record: Record) -> None:
        """
        Set the photo of a stored record.

        Raises:
            AddressBookError: If the record is not stored or the update fails
        """
        record_id = self._require_id(record)
        try:
            self._connection.execute(
                "UPDATE records SET image = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ?",
                (data, record_id),
            )
        except sqlite3.Error as e:
            raise AddressBookError(f"Failed to set image of {record.name}: {e}") from e
        record.image = data

    def _insert_multi_values(
        self, value_field: MultiValueField, values: list[LabeledValue], record: Record
    ) -> None:
        for label, value in values:
            self._connection.execute(
                "INSERT INTO multi_values (record_id, field, label, value) "
                "VALUES (?, ?, ?, ?)",
                (record.record_id, value_field.value, label, json.dumps(value)),
            )
            record.multi_values(value_field).append(LabeledValue(label, value))

    def _touch(self, record: Record) -> None:
        self._connection.execute(
            "UPDATE records SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (record.record_id,),
        )

    @staticmethod
    def _require_id(record: Record) -> int:
        if record.record_id is None:
            raise AddressBookError(f"Record {record.name} is not in the address book")
        return record.record_id

    # =========================================================================
    # Transactions
    # =========================================================================

    def save(self) -> None:
        """
        Commit pending changes.

        Raises:
            AddressBookError: If the commit fails
        """
        try:
            self._connection.commit()
        except sqlite3.Error as e:
            raise AddressBookError(f"Failed to save address book: {e}") from e
        logger.debug(f"Saved address book {self.path}")

    def revert(self) -> None:
        """Discard pending changes and reload the records."""
        try:
            self._connection.rollback()
            self._records = self._read_records()
        except sqlite3.Error as e:
            raise AddressBookError(f"Failed to revert address book: {e}") from e
        logger.debug(f"Reverted address book {self.path}")

    def close(self) -> None:
        """Close the database. Unsaved changes are discarded."""
        if self.has_unsaved_changes:
            logger.warning(f"Closing address book {self.path} with unsaved changes")
        self._connection.close()

    def __enter__(self) -> "AddressBook":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
