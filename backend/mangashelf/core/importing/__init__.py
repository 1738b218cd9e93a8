"""Volume import and normalization engine."""

from mangashelf.core.importing.assignment import assign_volume_numbers
from mangashelf.core.importing.duplicates import resolve_duplicates
from mangashelf.core.importing.errors import (
    AmbiguousVolumeNumber,
    ExtractionError,
    ImportEngineError,
    NoImageFilesInVolume,
    NoVolumeFoldersDetected,
)
from mangashelf.core.importing.extractor import ExtractionResult, extract_if_needed
from mangashelf.core.importing.folders import find_volume_folders
from mangashelf.core.importing.importer import import_volume
from mangashelf.core.importing.orchestrator import ImportOrchestrator
from mangashelf.core.importing.page_sort import sort_image_files
from mangashelf.core.importing.tree import DirectoryNode, snapshot_tree
from mangashelf.core.importing.volume_numbers import (
    extract_volume_number,
    extract_volume_number_with_ancestors,
)

__all__ = [
    "AmbiguousVolumeNumber",
    "DirectoryNode",
    "ExtractionError",
    "ExtractionResult",
    "ImportEngineError",
    "ImportOrchestrator",
    "NoImageFilesInVolume",
    "NoVolumeFoldersDetected",
    "assign_volume_numbers",
    "extract_if_needed",
    "extract_volume_number",
    "extract_volume_number_with_ancestors",
    "find_volume_folders",
    "import_volume",
    "resolve_duplicates",
    "snapshot_tree",
    "sort_image_files",
]
