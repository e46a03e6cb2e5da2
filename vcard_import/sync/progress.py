"""
Overall progress of an import run.

Each source moves through the phases download, resolve records and apply
records before completing. ImportProgress weighs the phases, gives every
source an equal share and combines them into one ratio for a progress bar.
"""

from enum import Enum
from typing import Iterable

from vcard_import.net.http import ProgressBytes
from vcard_import.sync.applier import ApplyProgress
from vcard_import.sync.differences import ResolveProgress

# Ratio shown for a download of unknown size
UNKNOWN_DOWNLOAD_RATIO = 1 / 3


class Phase(str, Enum):
    """Phases of importing one source, in order."""

    DOWNLOAD = "download"
    RESOLVE_RECORDS = "resolve_records"
    APPLY_RECORDS = "apply_records"
    COMPLETE = "complete"


# (start, weight) of each phase within a source's progress
PHASE_SPANS = {
    Phase.DOWNLOAD: (0.0, 0.5),
    Phase.RESOLVE_RECORDS: (0.5, 0.2),
    Phase.APPLY_RECORDS: (0.7, 0.3),
    Phase.COMPLETE: (1.0, 0.0),
}


def _clamp(ratio: float) -> float:
    return min(max(ratio, 0.0), 1.0)


def download_ratio(progress: ProgressBytes) -> float:
    if progress.total_bytes_expected > 0:
        return _clamp(progress.total_bytes / progress.total_bytes_expected)
    return UNKNOWN_DOWNLOAD_RATIO


def resolve_ratio(progress: ResolveProgress) -> float:
    if progress.total_phases_to_complete <= 0:
        return 1.0
    return _clamp(progress.total_phases_completed / progress.total_phases_to_complete)


def apply_ratio(progress: ApplyProgress) -> float:
    if progress.total_to_apply <= 0:
        return 1.0
    return _clamp((progress.total_added + progress.total_changed) / progress.total_to_apply)


def describe_progress(phase: Phase, name: str) -> str:
    """User-facing text for a source in the given phase."""
    if phase is Phase.DOWNLOAD:
        return f"Downloading {name}..."
    if phase is Phase.RESOLVE_RECORDS:
        return f"Resolving records of {name}..."
    if phase is Phase.APPLY_RECORDS:
        return f"Applying records of {name}..."
    return f"Completed {name}"


class ImportProgress:
    """
    Combines per-source phase progress into one overall ratio.

    Usage:
        progress = ImportProgress([s.id for s in sources])
        overall = progress.in_progress(Phase.DOWNLOAD, 0.5, source.id)  # 0.125 of 2 sources
    """

    def __init__(self, source_ids: Iterable[str]):
        self._source_progress = {source_id: 0.0 for source_id in source_ids}

    def in_progress(self, phase: Phase, ratio: float, source_id: str) -> float:
        """
        Record the progress of one source.

        A source never moves backwards; a lower value than the one already
        recorded is ignored.

        Returns:
            Overall progress in [0, 1]
        """
        start, weight = PHASE_SPANS[phase]
        value = start + weight * _clamp(ratio)
        if source_id in self._source_progress:
            self._source_progress[source_id] = max(
                self._source_progress[source_id], value
            )
        return self.overall

    @property
    def overall(self) -> float:
        if not self._source_progress:
            return 1.0
        return sum(self._source_progress.values()) / len(self._source_progress)
