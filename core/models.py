# core/models.py
"""Plain enums and dataclasses shared by the scanner, store, scheduler and service."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class KnownLabel(str, Enum):
    """Label values the core knows about.

    Labels are stored as open strings; only REJECTED changes export behaviour.
    """
    ADOPTED = "adopted"
    REJECTED = "rejected"


class ExportMode(str, Enum):
    COPY = "copy"
    MOVE = "move"


@dataclass(frozen=True)
class ImageInfo:
    """One scanned file. Produced fresh by every scan, never persisted."""
    filename: str
    path: str           # forward slashes
    size: int
    modified_at: str    # "%Y/%m/%d %H:%M", or "-" when unreadable
    is_raw: bool = False


@dataclass
class Session:
    id: str
    folder_path: str
    last_opened: Optional[float] = None
    last_selected_index: int = 0
    total_files: int = 0
    created_at: Optional[float] = None


@dataclass
class Label:
    session_id: str
    filename: str
    label: str
    updated_at: float


@dataclass
class ThumbnailCacheEntry:
    session_id: str
    filename: str
    cache_path: str
    preview_path: Optional[str] = None
    original_modified: Optional[float] = None
    created_at: Optional[float] = None


@dataclass
class ThumbnailResult:
    filename: str
    thumbnail_path: str = ""
    preview_path: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

    @classmethod
    def failed(cls, filename: str, error: str) -> "ThumbnailResult":
        return cls(filename=filename, success=False, error=error)


@dataclass(frozen=True)
class GenerationProgress:
    completed: int
    total: int


@dataclass
class ExportResult:
    total: int = 0
    copied: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class ExifInfo:
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length: Optional[str] = None
    aperture: Optional[str] = None
    shutter_speed: Optional[str] = None
    iso: Optional[str] = None
    exposure_compensation: Optional[str] = None
    date_taken: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[int] = None


@dataclass
class StorageInfo:
    cache_size_bytes: int
    cache_size_display: str
    label_count: int
    session_count: int


@dataclass
class SystemInfo:
    cpu_count: int
    current_threads: int
    recommended_threads: int


@dataclass
class OpenFolderResult:
    """What the caller gets back immediately from an open-folder request.

    ``batch`` is the live handle of the background thumbnail generation; it
    is not part of the serialised payload.
    """
    session: Session
    images: List[ImageInfo]
    labels: List[Label]
    last_selected_index: int
    cache_dir: str
    batch: Optional[object] = field(default=None, repr=False, compare=False)
