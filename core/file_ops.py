# core/file_ops.py
"""File operations on source folders and the cache tree (export, sizing, removal).

``export_files`` scans the source with the same rules as folder opening, so
the set of files exported is exactly the set the user saw and labelled.
"""
import logging
import os
import shutil
from typing import Iterable, Union

from core.directory_scanner import DirectoryScanner
from core.models import ExportMode, ExportResult

logger = logging.getLogger(__name__)


def export_files(source_folder: str, dest_folder: str, mode: Union[ExportMode, str],
                 rejected: Iterable[str], config_manager=None) -> ExportResult:
    """Copy or move every scanned file of *source_folder* not named in *rejected*.

    Scan and destination-creation failures raise OSError. Per-file failures
    are counted in ``failed`` and logged; existing destination files are
    overwritten.
    """
    mode = ExportMode(mode)
    rejected = set(rejected)
    images = DirectoryScanner(config_manager).scan(source_folder)

    os.makedirs(dest_folder, exist_ok=True)

    result = ExportResult(total=len(images))
    for image in images:
        if image.filename in rejected:
            result.skipped += 1
            continue

        src = os.path.join(source_folder, image.filename)
        dst = os.path.join(dest_folder, image.filename)
        try:
            if mode is ExportMode.MOVE:
                shutil.move(src, dst)
            else:
                shutil.copy2(src, dst)
            result.copied += 1
        except (OSError, shutil.Error) as e:
            logger.warning(f"Failed to {mode.value} {src} -> {dst}: {e}")
            result.failed += 1

    logger.info(f"Export ({mode.value}) {source_folder} -> {dest_folder}: "
                f"{result.copied} exported, {result.skipped} skipped, "
                f"{result.failed} failed out of {result.total}")
    return result


def get_dir_size(path: str) -> int:
    """Total size in bytes of the regular files under *path*; 0 when missing."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                # Vanished between listing and stat.
                continue
    return total


def format_bytes(num_bytes: int) -> str:
    """Human-readable size: B below 1 KB, else KB/MB/GB with two decimals."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if num_bytes >= gb:
        return f"{num_bytes / gb:.2f} GB"
    if num_bytes >= mb:
        return f"{num_bytes / mb:.2f} MB"
    if num_bytes >= kb:
        return f"{num_bytes / kb:.2f} KB"
    return f"{num_bytes} B"


def remove_tree(path: str) -> int:
    """Delete *path* recursively; returns the bytes it held. Missing paths free 0."""
    if not os.path.exists(path):
        return 0
    size = get_dir_size(path)
    shutil.rmtree(path)
    logger.info(f"Removed {path} ({format_bytes(size)})")
    return size
