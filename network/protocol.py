import dataclasses
import json
import typing
from typing import Any, List, Dict, Optional


# ==============================================================================
#  Base Message class
# ==============================================================================

@dataclasses.dataclass
class Message:
    """Base for all protocol models. Provides dict/JSON round-trip."""

    @classmethod
    def model_validate(cls, data: dict):
        """Construct from dict, recursively hydrating nested Message fields.

        Unknown keys are ignored; a non-dict payload raises TypeError.
        """
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} expects an object, got {type(data).__name__}")
        hints = typing.get_type_hints(cls)
        kwargs = {}
        for f in dataclasses.fields(cls):
            if f.name not in data:
                continue
            val = data[f.name]
            hint = hints.get(f.name)
            origin = getattr(hint, '__origin__', None)
            if origin is list and val:
                inner = getattr(hint, '__args__', (None,))[0]
                if inner and isinstance(inner, type) and issubclass(inner, Message):
                    val = [inner.model_validate(v) if isinstance(v, dict) else v for v in val]
            elif isinstance(hint, type) and issubclass(hint, Message) and isinstance(val, dict):
                val = hint.model_validate(val)
            kwargs[f.name] = val
        return cls(**kwargs)

    @classmethod
    def from_model(cls, obj):
        """Build from a core dataclass with matching field names."""
        return cls.model_validate(dataclasses.asdict(obj))

    def model_dump(self) -> dict:
        return dataclasses.asdict(self)

    def model_dump_json(self) -> str:
        return json.dumps(self.model_dump())


# ==============================================================================
#  Base Models & Common Structures
# ==============================================================================

@dataclasses.dataclass
class Request(Message):
    """Base model for all client-to-server requests."""
    command: str = ""
    session_id: Optional[str] = None

@dataclasses.dataclass
class Response(Message):
    """Base model for all server-to-client responses."""
    status: str = "success"
    message: Optional[str] = None

@dataclasses.dataclass
class ErrorResponse(Response):
    """The single human-readable error every failed command returns."""
    status: str = "error"
    message: str = ""

@dataclasses.dataclass
class Notification(Message):
    """Base model for all server-to-client notifications."""
    type: str = ""
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)  # why: typed at construction (XxxData.model_dump()); loose dict is the serialization seam
    session_id: Optional[str] = None

@dataclasses.dataclass
class ImageEntryModel(Message):
    filename: str = ""
    path: str = ""
    size: int = 0
    modified_at: str = "-"
    is_raw: bool = False

@dataclasses.dataclass
class SessionModel(Message):
    id: str = ""
    folder_path: str = ""
    last_opened: Optional[float] = None
    last_selected_index: int = 0
    total_files: int = 0
    created_at: Optional[float] = None

@dataclasses.dataclass
class LabelModel(Message):
    session_id: str = ""
    filename: str = ""
    label: str = ""
    updated_at: float = 0.0

@dataclasses.dataclass
class ThumbnailResultModel(Message):
    filename: str = ""
    thumbnail_path: str = ""
    preview_path: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

# ==============================================================================
#  Request/Response Models
# ==============================================================================

# --- Open Folder ---
@dataclasses.dataclass
class OpenFolderRequest(Request):
    command: str = "open_folder"
    folder_path: str = ""

@dataclasses.dataclass
class OpenFolderResponse(Response):
    session_id: str = ""
    images: List[ImageEntryModel] = dataclasses.field(default_factory=list)
    labels: List[LabelModel] = dataclasses.field(default_factory=list)
    last_selected_index: int = 0
    cache_dir: str = ""

# --- Get Session ---
@dataclasses.dataclass
class GetSessionRequest(Request):
    command: str = "get_session"

@dataclasses.dataclass
class GetSessionResponse(Response):
    session: Optional[SessionModel] = None

# --- Labels ---
@dataclasses.dataclass
class SetLabelRequest(Request):
    command: str = "set_label"
    filename: str = ""
    label: Optional[str] = None

@dataclasses.dataclass
class GetLabelRequest(Request):
    command: str = "get_label"
    filename: str = ""

@dataclasses.dataclass
class GetLabelResponse(Response):
    filename: str = ""
    label: Optional[str] = None

@dataclasses.dataclass
class GetLabelsRequest(Request):
    command: str = "get_labels"

@dataclasses.dataclass
class GetLabelsResponse(Response):
    labels: List[LabelModel] = dataclasses.field(default_factory=list)

@dataclasses.dataclass
class GetRejectedFilenamesRequest(Request):
    command: str = "get_rejected_filenames"

@dataclasses.dataclass
class GetRejectedFilenamesResponse(Response):
    filenames: List[str] = dataclasses.field(default_factory=list)

# --- Save Selection ---
@dataclasses.dataclass
class SaveSelectionRequest(Request):
    command: str = "save_selection"
    index: int = 0

# --- Export ---
@dataclasses.dataclass
class ExportRequest(Request):
    command: str = "export"
    source_folder: str = ""
    destination_folder: str = ""
    mode: str = "copy"

@dataclasses.dataclass
class ExportResponse(Response):
    total: int = 0
    copied: int = 0
    skipped: int = 0
    failed: int = 0

# --- Derived assets ---
@dataclasses.dataclass
class GetThumbnailPathRequest(Request):
    command: str = "get_thumbnail_path"
    filename: str = ""

@dataclasses.dataclass
class GetPreviewPathRequest(Request):
    command: str = "get_preview_path"
    filename: str = ""

@dataclasses.dataclass
class PathResponse(Response):
    path: str = ""

# --- EXIF ---
@dataclasses.dataclass
class GetExifRequest(Request):
    command: str = "get_exif"
    image_path: str = ""

@dataclasses.dataclass
class GetExifResponse(Response):
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

# --- Maintenance ---
@dataclasses.dataclass
class ClearCacheRequest(Request):
    command: str = "clear_cache"

@dataclasses.dataclass
class ClearAllCacheRequest(Request):
    command: str = "clear_all_cache"

@dataclasses.dataclass
class ForgetSessionRequest(Request):
    command: str = "forget_session"

@dataclasses.dataclass
class BytesFreedResponse(Response):
    bytes_freed: int = 0

@dataclasses.dataclass
class ClearAllLabelsRequest(Request):
    command: str = "clear_all_labels"

@dataclasses.dataclass
class ClearAllLabelsResponse(Response):
    count: int = 0

@dataclasses.dataclass
class GetStorageInfoRequest(Request):
    command: str = "get_storage_info"

@dataclasses.dataclass
class GetStorageInfoResponse(Response):
    cache_size_bytes: int = 0
    cache_size_display: str = "0 B"
    label_count: int = 0
    session_count: int = 0

@dataclasses.dataclass
class GetSystemInfoRequest(Request):
    command: str = "get_system_info"

@dataclasses.dataclass
class GetSystemInfoResponse(Response):
    cpu_count: int = 0
    current_threads: int = 0
    recommended_threads: int = 0

@dataclasses.dataclass
class SetThreadCountRequest(Request):
    command: str = "set_thread_count"
    thread_count: Optional[int] = None

# ==============================================================================
#  Notifications (server to client, unsolicited)
# ==============================================================================

@dataclasses.dataclass
class ThumbnailProgressData(Message):
    completed: int = 0
    total: int = 0

@dataclasses.dataclass
class ThumbnailsCompleteData(Message):
    results: List[ThumbnailResultModel] = dataclasses.field(default_factory=list)
