import os
import logging
import fnmatch
from datetime import datetime
from typing import List

from core.models import ImageInfo

logger = logging.getLogger(__name__)

RAW_EXTENSIONS = frozenset({
    ".nef",   # Nikon
    ".arw",   # Sony
    ".cr2",   # Canon
    ".cr3",   # Canon
    ".raf",   # Fujifilm
    ".orf",   # Olympus / OM System
    ".rw2",   # Panasonic
    ".pef",   # Pentax
    ".dng",   # Adobe / universal
    ".srw",   # Samsung
})

STANDARD_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})

MODIFIED_AT_FORMAT = "%Y/%m/%d %H:%M"
MODIFIED_AT_PLACEHOLDER = "-"


def normalize_path(path: str) -> str:
    """Forward-slash form of *path* for display and cross-platform payloads."""
    return str(path).replace("\\", "/")


def is_raw_extension(ext: str) -> bool:
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext.lower() in RAW_EXTENSIONS


def is_raw_file(file_path: str) -> bool:
    return is_raw_extension(os.path.splitext(file_path)[1])


def _format_mtime(mtime: float) -> str:
    return datetime.fromtimestamp(mtime).strftime(MODIFIED_AT_FORMAT)


class DirectoryScanner:
    """Lists supported image files directly inside one directory."""

    def __init__(self, config_manager=None):
        self.config_manager = config_manager
        self.ignore_patterns = config_manager.get("ignore_patterns", []) if config_manager else []

    def is_supported_file(self, file_path: str) -> bool:
        """Check the ignore patterns and the extension of *file_path*."""
        filename = os.path.basename(file_path)
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(filename, pattern):
                logger.debug(f"Skipping file {file_path}: matches ignore pattern '{pattern}'")
                return False

        _, ext = os.path.splitext(filename)
        ext = ext.lower()
        return ext in STANDARD_EXTENSIONS or ext in RAW_EXTENSIONS

    def scan(self, directory_path: str) -> List[ImageInfo]:
        """
        Non-recursive scan returning one ImageInfo per supported regular file,
        sorted ascending by filename.

        A missing or unreadable directory raises OSError. A file whose
        metadata cannot be read is kept with a placeholder timestamp.
        """
        images: List[ImageInfo] = []
        with os.scandir(directory_path) as entries:
            for entry in entries:
                try:
                    if not entry.is_file():
                        continue
                except OSError as e:
                    logger.debug(f"Cannot stat {entry.path}, skipping: {e}")
                    continue
                if not self.is_supported_file(entry.name):
                    continue
                images.append(self._build_info(entry))

        images.sort(key=lambda info: info.filename)
        logger.info(f"Scanned {directory_path}: {len(images)} supported files")
        return images

    @staticmethod
    def _build_info(entry: os.DirEntry) -> ImageInfo:
        size = 0
        modified_at = MODIFIED_AT_PLACEHOLDER
        try:
            st = entry.stat()
            size = st.st_size
            modified_at = _format_mtime(st.st_mtime)
        except (OSError, ValueError, OverflowError) as e:
            logger.warning(f"Could not read metadata for {entry.path}: {e}")
        return ImageInfo(
            filename=entry.name,
            path=normalize_path(entry.path),
            size=size,
            modified_at=modified_at,
            is_raw=is_raw_file(entry.name),
        )


def scan_folder(directory_path: str, config_manager=None) -> List[ImageInfo]:
    """Convenience wrapper around DirectoryScanner.scan."""
    return DirectoryScanner(config_manager).scan(directory_path)
