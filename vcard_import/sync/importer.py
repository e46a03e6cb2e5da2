"""
Import engine merging vCard sources into the local address book.

A run works through these steps on a background worker of its own:
1. Open the address book. If that fails, report it and stop
2. Start probing and downloading all sources at once
3. For each source, in order, wait for its download and then:
   - Unchanged: report it and move on
   - Failed: report the error for that source and move on
   - Changed: resolve differences, apply them and save. A failed apply
     still saves the changes made before the failure
4. Report the completion of the run

Byte and phase progress is delivered on the progress queue, while source and
run completion are delivered on the queue chosen by the caller.
"""

import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from concurrent.futures import Future as ConcurrentFuture
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from vcard_import.config.sources import VCardSource
from vcard_import.errors import ApplyError, SaveError
from vcard_import.net.connection import URLConnection
from vcard_import.net.http import VCARD_HTTP_HEADERS, ProgressBytes
from vcard_import.net.stamp import Freshness, ModifiedHeaderStamp, check_freshness
from vcard_import.storage.address_book import AddressBook, AddressBookError
from vcard_import.sync.applier import ApplyProgress, apply_differences
from vcard_import.sync.differences import RecordDifferences, ResolveProgress
from vcard_import.sync.parser import parse_file
from vcard_import.sync.record import Record
from vcard_import.utils import queue_execution
from vcard_import.utils.future import Future
from vcard_import.utils.logging import source_logger
from vcard_import.utils.queue_execution import Queue, async_dispatch

logger = logging.getLogger(__name__)

OnSourceDownload = Callable[[VCardSource, ProgressBytes], None]
OnSourceComplete = Callable[
    [
        VCardSource,
        Optional[RecordDifferences],
        Optional[ModifiedHeaderStamp],
        Optional[BaseException],
    ],
    None,
]
OnComplete = Callable[[Optional[BaseException]], None]
OnSourceResolveRecords = Callable[[VCardSource, ResolveProgress], None]
OnSourceApplyRecords = Callable[[VCardSource, ApplyProgress], None]


@dataclass
class ImportCallbacks:
    """
    Callbacks of an import run.

    Attributes:
        on_source_download: Byte progress of a source download
        on_source_complete: Outcome of one source as (source, diff, stamp,
            error). An unchanged source reports all three as None; a failed
            one reports only the error
        on_complete: End of the run, with an error only if the address book
            could not be opened or the run failed unexpectedly
        on_source_resolve_records: Progress of resolving differences
        on_source_apply_records: Progress of applying differences
    """

    on_source_download: OnSourceDownload
    on_source_complete: OnSourceComplete
    on_complete: OnComplete
    on_source_resolve_records: Optional[OnSourceResolveRecords] = None
    on_source_apply_records: Optional[OnSourceApplyRecords] = None


@dataclass
class SourceImportResult:
    """What the probe and download of a source produced."""

    freshness: Freshness
    records: list[Record] = field(default_factory=list)
    stamp: Optional[ModifiedHeaderStamp] = None

    @classmethod
    def unchanged(cls) -> "SourceImportResult":
        return cls(Freshness.UNCHANGED)

    @classmethod
    def changed(
        cls, records: list[Record], stamp: Optional[ModifiedHeaderStamp]
    ) -> "SourceImportResult":
        return cls(Freshness.CHANGED, records, stamp)


class VCardImporter:
    """
    Imports vCard sources into the local address book.

    Usage:
        importer = VCardImporter(
            callbacks=ImportCallbacks(
                on_source_download=show_download,
                on_source_complete=record_result,
                on_complete=finish,
            ),
            connection=URLConnection(),
            open_address_book=lambda: AddressBook.open(path),
            callback_queue=queue_execution.main_queue(),
        )
        importer.import_from(store.filter_enabled())

    Runs of one importer never overlap; a second import_from() call waits for
    the first run to finish.
    """

    def __init__(
        self,
        callbacks: ImportCallbacks,
        connection: URLConnection,
        open_address_book: Callable[[], AddressBook],
        callback_queue: Queue,
        progress_queue: Optional[Queue] = None,
    ):
        """
        Initialize the importer.

        Args:
            callbacks: Callbacks of import runs
            connection: Connection probing and downloading sources
            open_address_book: Opens the address book for a run; raises
                StoreUnavailableError on failure
            callback_queue: Queue receiving source and run completion
            progress_queue: Queue receiving progress callbacks, the shared
                main queue by default
        """
        self.callbacks = callbacks
        self.connection = connection
        self.open_address_book = open_address_book
        self.callback_queue = callback_queue
        self.progress_queue = progress_queue or queue_execution.main_queue()
        self._execution_queue = queue_execution.make_serial_queue("VCardImporter")

    def import_from(self, sources: Iterable[VCardSource]) -> ConcurrentFuture:
        """
        Start importing sources in the background.

        Returns:
            Future of the background run, done once on_complete is dispatched
        """
        return self._execution_queue.submit(self._run, list(sources))

    def shutdown(self, wait: bool = True) -> None:
        self._execution_queue.shutdown(wait=wait)

    # =========================================================================
    # Background run
    # =========================================================================

    def _run(self, sources: list[VCardSource]) -> None:
        try:
            address_book = self.open_address_book()
        except Exception as e:
            logger.error(f"Cannot import vCard sources: {e}")
            self._dispatch(self.callbacks.on_complete, e)
            return

        try:
            self._import_sources(address_book, sources)
        except Exception as e:
            logger.exception("Import run failed unexpectedly")
            self._dispatch(self.callbacks.on_complete, e)
        else:
            self._dispatch(self.callbacks.on_complete, None)
        finally:
            address_book.close()

    def _import_sources(self, address_book: AddressBook, sources: list[VCardSource]) -> None:
        source_imports = [
            (source, self._check_and_download_source(source)) for source in sources
        ]

        for source, source_import in source_imports:
            log = source_logger(logger, source.name)
            try:
                result = source_import.get()
            except Exception as e:
                log.error(str(e))
                self._fail_source(source, e)
                continue

            if result.freshness is Freshness.UNCHANGED:
                self._dispatch(
                    self.callbacks.on_source_complete, source, None, None, None
                )
                continue

            try:
                diff = self._import_records(address_book, source, result.records)
            except (ApplyError, SaveError) as e:
                log.error(str(e))
                self._fail_source(source, e)
                continue
            except Exception as e:
                log.exception("Import failed unexpectedly")
                self._fail_source(source, e)
                continue

            log.info(diff.description)
            self._dispatch(
                self.callbacks.on_source_complete, source, diff, result.stamp, None
            )

    def _fail_source(self, source: VCardSource, error: BaseException) -> None:
        self._dispatch(self.callbacks.on_source_complete, source, None, None, error)

    def _import_records(
        self, address_book: AddressBook, source: VCardSource, records: list[Record]
    ) -> RecordDifferences:
        on_resolve = self.callbacks.on_source_resolve_records
        on_apply = self.callbacks.on_source_apply_records

        diff = RecordDifferences.resolve(
            address_book.load_records(),
            records,
            on_progress=(
                (lambda progress: self._progress(on_resolve, source, progress))
                if on_resolve
                else None
            ),
        )

        try:
            apply_differences(
                address_book,
                diff,
                on_progress=(
                    (lambda progress: self._progress(on_apply, source, progress))
                    if on_apply
                    else None
                ),
            )
        except Exception:
            self._save_partial(address_book, source)
            raise

        self._save(address_book)
        return diff

    def _save(self, address_book: AddressBook) -> None:
        if not address_book.has_unsaved_changes:
            return
        try:
            address_book.save()
        except AddressBookError as e:
            raise SaveError(str(e)) from e

    def _save_partial(self, address_book: AddressBook, source: VCardSource) -> None:
        # Mutations made before a failed apply are kept
        try:
            self._save(address_book)
        except SaveError as e:
            source_logger(logger, source.name).error(
                f"Failed to save changes applied before the failure: {e}"
            )

    # =========================================================================
    # Probe and download
    # =========================================================================

    def _check_and_download_source(self, source: VCardSource) -> Future[SourceImportResult]:
        log = source_logger(logger, source.name)
        log.info("checking if remote has changed...")

        def on_probe(response) -> Future[SourceImportResult]:
            freshness, stamp = check_freshness(source.last_stamp, response.headers)
            if freshness is Freshness.UNCHANGED:
                log.info(f"remote is unchanged since last import ({stamp})")
                return Future.succeeded(SourceImportResult.unchanged())

            log.info(f"remote has changed ({stamp or 'no cache validators'}), downloading...")
            return self._download_source(source).map(
                lambda records: SourceImportResult.changed(records, stamp)
            )

        try:
            probe = self.connection.head(source.connection, headers=VCARD_HTTP_HEADERS)
        except Exception as e:
            return Future.failed(e)
        return probe.flat_map(on_probe)

    def _download_source(self, source: VCardSource) -> Future[list[Record]]:
        fd, name = tempfile.mkstemp(prefix="vcard-import-", suffix=".vcf")
        os.close(fd)
        path = Path(name)

        def on_progress(progress: ProgressBytes) -> None:
            self._progress(self.callbacks.on_source_download, source, progress)

        try:
            download = self.connection.download(
                source.connection,
                path,
                headers=VCARD_HTTP_HEADERS,
                on_progress=on_progress,
            )
        except Exception:
            _remove_file(path)
            raise

        future = download.map(parse_file)
        future.on_complete(lambda _: _remove_file(path))
        return future

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _dispatch(self, callback: Callable, *args) -> None:
        async_dispatch(self.callback_queue, callback, *args)

    def _progress(self, callback: Callable, *args) -> None:
        async_dispatch(self.progress_queue, callback, *args)


def _remove_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove temporary file {path}: {e}")
