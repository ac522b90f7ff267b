import os
import logging
import threading
from typing import Optional, Union, List

from config.config_manager import default_threads, get_cpu_count
from core.directory_scanner import DirectoryScanner, normalize_path
from core.errors import (
    InvalidPathError, NoActiveSessionError, NotFoundError, SessionNotFoundError, ThumbnailGenerationError,
)
from core.exif import extract_exif
from core.file_ops import export_files, format_bytes, get_dir_size, remove_tree
from core.models import (
    ExifInfo, ExportMode, ExportResult, KnownLabel, OpenFolderResult, StorageInfo, SystemInfo,
)
from core.session_database import SessionDatabase, generate_session_id
from core.thumbnail_manager import CompleteCallback, ProgressCallback, ThumbnailManager
from plugins.base_plugin import PluginRegistry

logger = logging.getLogger(__name__)

DATABASE_FILENAME = "glimpse.db"


class GlimpseService:
    """
    The operations a front-end calls: open a folder, label files, remember
    the position, export, and look up derived assets.

    Operations taking an optional ``session_id`` fall back to the most
    recently opened folder and raise NoActiveSessionError when there is none.
    """

    def __init__(self, config_manager, db: Optional[SessionDatabase] = None,
                 registry: Optional[PluginRegistry] = None):
        self.config_manager = config_manager
        self.data_dir = config_manager.data_dir
        os.makedirs(self.data_dir, exist_ok=True)
        self.db = db or SessionDatabase(os.path.join(self.data_dir, DATABASE_FILENAME))
        self.thumbnail_manager = ThumbnailManager(config_manager, self.db, registry)
        self.scanner = DirectoryScanner(config_manager)
        self._current_session_id: Optional[str] = None
        self._session_lock = threading.Lock()

    @property
    def current_session_id(self) -> Optional[str]:
        with self._session_lock:
            return self._current_session_id

    def _resolve_session(self, session_id: Optional[str] = None) -> str:
        if session_id:
            return session_id
        current = self.current_session_id
        if current is None:
            raise NoActiveSessionError()
        return current

    def open_folder(self, folder_path: str,
                    on_progress: Optional[ProgressCallback] = None,
                    on_complete: Optional[CompleteCallback] = None) -> OpenFolderResult:
        """
        Scan *folder_path*, record the session and start thumbnail generation.

        Returns as soon as the batch is queued; ``result.batch`` tracks it.
        Scan failures raise OSError and nothing is recorded.
        """
        folder_path = os.path.abspath(folder_path)
        images = self.scanner.scan(folder_path)

        session = self.db.get_or_create_session(folder_path, total_files=len(images))
        with self._session_lock:
            self._current_session_id = session.id

        labels = self.db.get_labels(session.id)
        cache_dir = self.thumbnail_manager.ensure_cache_dirs(session.id)
        batch = self.thumbnail_manager.generate_batch(
            session.id, images, on_progress=on_progress, on_complete=on_complete,
        )
        logger.info(f"Opened {folder_path}: {len(images)} images, {len(labels)} labels, "
                    f"resume at {session.last_selected_index}")
        return OpenFolderResult(
            session=session,
            images=images,
            labels=labels,
            last_selected_index=session.last_selected_index,
            cache_dir=normalize_path(cache_dir),
            batch=batch,
        )

    def get_session(self, session_id: Optional[str] = None):
        session_id = self._resolve_session(session_id)
        session = self.db.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def set_label(self, filename: str, label: Union[str, KnownLabel, None],
                  session_id: Optional[str] = None) -> None:
        self.db.set_label(self._resolve_session(session_id), filename, label)

    def get_label(self, filename: str, session_id: Optional[str] = None) -> Optional[str]:
        return self.db.get_label(self._resolve_session(session_id), filename)

    def get_labels(self, session_id: Optional[str] = None):
        return self.db.get_labels(self._resolve_session(session_id))

    def get_rejected_filenames(self, session_id: Optional[str] = None) -> List[str]:
        return sorted(self.db.get_rejected_filenames(self._resolve_session(session_id)))

    def save_selection(self, index: int, session_id: Optional[str] = None) -> None:
        session_id = self._resolve_session(session_id)
        if not self.db.update_last_selected_index(session_id, index):
            raise SessionNotFoundError(session_id)

    def export(self, source_folder: str, dest_folder: str,
               mode: Union[ExportMode, str] = ExportMode.COPY) -> ExportResult:
        """Export the files of *source_folder* not labelled rejected in its session."""
        source_folder = os.path.abspath(source_folder)
        rejected = self.db.get_rejected_filenames(generate_session_id(source_folder))
        return export_files(source_folder, dest_folder, mode, rejected, self.config_manager)

    def get_thumbnail_path(self, filename: str, session_id: Optional[str] = None) -> str:
        session_id = self._resolve_session(session_id)
        path = self.thumbnail_manager.get_cached_thumbnail(session_id, filename)
        if path is None:
            raise NotFoundError(f"Thumbnail not found for {filename}")
        return path

    def get_preview_path(self, filename: str, session_id: Optional[str] = None) -> str:
        """Cached RAW preview of *filename*, rebuilt from the source when it has gone missing."""
        session_id = self._resolve_session(session_id)
        path = self.thumbnail_manager.preview_path_for(session_id, filename)
        if os.path.exists(path):
            return normalize_path(path)
        session = self.db.get_session(session_id)
        source_path = os.path.join(session.folder_path, filename) if session else None
        if source_path is None or not os.path.isfile(source_path):
            raise NotFoundError(f"Preview not found for {filename}")
        try:
            return self.thumbnail_manager.rebuild_preview(session_id, source_path)
        except (InvalidPathError, ThumbnailGenerationError):
            raise NotFoundError(f"Preview not found for {filename}") from None

    def get_exif(self, image_path: str) -> ExifInfo:
        return extract_exif(image_path)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_cache(self, session_id: Optional[str] = None) -> int:
        """Empty the session's cache directories and rows; returns bytes freed."""
        session_id = self._resolve_session(session_id)
        freed = remove_tree(self.thumbnail_manager.get_session_cache_root(session_id))
        self.thumbnail_manager.ensure_cache_dirs(session_id)
        self.db.clear_thumbnail_cache(session_id)
        return freed

    def forget_session(self, session_id: Optional[str] = None) -> int:
        """Drop a session entirely: cache tree, cache rows, labels and the session row."""
        session_id = self._resolve_session(session_id)
        freed = remove_tree(self.thumbnail_manager.get_session_cache_root(session_id))
        self.db.clear_session(session_id)
        with self._session_lock:
            if self._current_session_id == session_id:
                self._current_session_id = None
        return freed

    def clear_all_cache(self) -> int:
        """Remove every session's cache and the session rows; labels are kept."""
        freed = remove_tree(self.thumbnail_manager.cache_root)
        os.makedirs(self.thumbnail_manager.cache_root, exist_ok=True)
        self.db.clear_all_sessions()
        return freed

    def clear_all_labels(self) -> int:
        return self.db.clear_all_labels()

    def get_storage_info(self) -> StorageInfo:
        size = get_dir_size(self.thumbnail_manager.cache_root)
        return StorageInfo(
            cache_size_bytes=size,
            cache_size_display=format_bytes(size),
            label_count=self.db.get_label_count(),
            session_count=self.db.get_session_count(),
        )

    def get_system_info(self) -> SystemInfo:
        cpu_count = get_cpu_count()
        return SystemInfo(
            cpu_count=cpu_count,
            current_threads=self.config_manager.thumbnail_thread_count(cpu_count),
            recommended_threads=default_threads(cpu_count),
        )

    def set_thread_count(self, thread_count: Optional[int]) -> None:
        """Persist a worker count for future batches; None restores the automatic default."""
        if thread_count is not None and int(thread_count) < 1:
            raise ValueError(f"thread count must be at least 1, got {thread_count}")
        self.config_manager.set("thumbnail_threads", int(thread_count) if thread_count is not None else None)
        logger.info(f"Thumbnail thread count set to {thread_count if thread_count is not None else 'auto'}")

    def shutdown(self):
        self.thumbnail_manager.shutdown()
        self.db.close()
