# core/thumbnail_generator.py
"""Derived-asset generation: decode a source, resize it, encode JPEG into the cache.

Two asset sizes exist. Every image gets a small thumbnail for grid browsing;
RAW sources also get a large preview so the detail view never re-runs the
RAW pipeline. Outputs are written to a temporary sibling and renamed into
place, so an existence check never observes a half-written file.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from core.errors import GlimpseError, ImageProcessingError, InvalidPathError, ThumbnailGenerationError
from plugins.base_plugin import BasePlugin, PluginRegistry

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = 300
PREVIEW_SIZE = 2000
THUMBNAIL_QUALITY = 85
PREVIEW_QUALITY = 90


def thumbnail_filename(filename: str) -> str:
    return f"{os.path.splitext(filename)[0]}.jpg"


def preview_filename(filename: str) -> str:
    return f"{os.path.splitext(filename)[0]}_preview.jpg"


def resize_to_fit(img: Image.Image, size: int) -> Image.Image:
    """Aspect-preserving downscale so neither side exceeds *size*."""
    resized = img.copy()
    resized.thumbnail((size, size), Image.Resampling.LANCZOS)
    return resized


def save_jpeg_atomic(img: Image.Image, output_path: str, quality: int) -> None:
    """Encode *img* as JPEG at *output_path*, creating parent directories.

    Encoding failures raise ImageProcessingError; filesystem failures raise
    OSError. Nothing is left at *output_path* unless the encode succeeded.
    """
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp_path = f"{output_path}.{uuid.uuid4().hex}.tmp"
    try:
        try:
            img.save(tmp_path, "JPEG", quality=quality)
        except (ValueError, KeyError) as e:
            raise ImageProcessingError(f"JPEG encode failed for {os.path.basename(output_path)}: {e}") from e
        os.replace(tmp_path, output_path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {tmp_path}: {e}")


@dataclass
class GeneratedAssets:
    thumbnail_path: str
    preview_path: Optional[str] = None
    thumbnail_written: bool = False
    preview_written: bool = False
    preview_error: Optional[str] = None


class ThumbnailGenerator:
    """Produces thumbnails and previews using the decoder plugins of *registry*."""

    def __init__(self, registry: PluginRegistry, thumbnail_size: int = THUMBNAIL_SIZE,
                 preview_size: int = PREVIEW_SIZE):
        self.registry = registry
        self.thumbnail_size = thumbnail_size
        self.preview_size = preview_size

    def _plugin_for(self, image_path: str) -> BasePlugin:
        plugin = self.registry.get_plugin_for_path(image_path)
        if plugin is None:
            raise ThumbnailGenerationError(f"No decoder available for {os.path.basename(image_path)}")
        return plugin

    def write_thumbnail(self, img: Image.Image, output_path: str) -> None:
        save_jpeg_atomic(resize_to_fit(img, self.thumbnail_size), output_path, THUMBNAIL_QUALITY)
        logger.debug(f"Generated thumbnail: {output_path}")

    def write_preview(self, img: Image.Image, output_path: str) -> None:
        save_jpeg_atomic(resize_to_fit(img, self.preview_size), output_path, PREVIEW_QUALITY)
        logger.debug(f"Generated preview: {output_path}")

    def generate_preview(self, image_path: str, output_path: str) -> bool:
        """Write the large preview of a RAW source unless it already exists.

        Used to rebuild a single preview on demand. Returns True when a file
        was written; non-RAW sources raise InvalidPathError.
        """
        plugin = self._plugin_for(image_path)
        if not plugin.is_raw:
            raise InvalidPathError("Preview generation only needed for RAW files")
        if os.path.exists(output_path):
            return False
        self.write_preview(plugin.load_image(image_path), output_path)
        return True

    def generate_assets(self, image_path: str, thumbnail_path: str,
                        preview_path: Optional[str] = None, force: bool = False) -> GeneratedAssets:
        """
        Produce every asset *image_path* needs, decoding the source at most once.

        A missing thumbnail is fatal to the call (the exception propagates).
        A preview failure is recorded in ``preview_error`` and the thumbnail
        is still reported. ``force`` regenerates existing outputs.
        """
        plugin = self._plugin_for(image_path)
        wants_preview = plugin.is_raw and preview_path is not None
        need_thumbnail = force or not os.path.exists(thumbnail_path)
        need_preview = wants_preview and (force or not os.path.exists(preview_path))

        assets = GeneratedAssets(
            thumbnail_path=thumbnail_path,
            preview_path=preview_path if wants_preview and not need_preview else None,
        )
        if not need_thumbnail and not need_preview:
            return assets

        try:
            img = plugin.load_image(image_path)
        except (GlimpseError, OSError) as e:
            if need_thumbnail:
                raise
            # Thumbnail is cached; only the preview is lost.
            assets.preview_error = str(e)
            logger.warning(f"Failed to generate preview for {os.path.basename(image_path)}: {e}")
            return assets

        if need_thumbnail:
            self.write_thumbnail(img, thumbnail_path)
            assets.thumbnail_written = True

        if need_preview:
            try:
                self.write_preview(img, preview_path)
                assets.preview_path = preview_path
                assets.preview_written = True
            except (ImageProcessingError, OSError) as e:
                assets.preview_error = str(e)
                logger.warning(f"Failed to generate preview for {os.path.basename(image_path)}: {e}")
        return assets
