import logging
import os
from typing import List

from PIL import Image, ImageOps

from core.directory_scanner import STANDARD_EXTENSIONS
from core.errors import ImageProcessingError
from .base_plugin import BasePlugin

logger = logging.getLogger(__name__)


class PILPlugin(BasePlugin):
    """Plugin for handling standard image formats using PIL/Pillow."""

    def is_available(self) -> bool:
        return True

    def get_supported_formats(self) -> List[str]:
        """Return list of supported file extensions."""
        return sorted(STANDARD_EXTENSIONS)

    def load_image(self, image_path: str) -> Image.Image:
        try:
            with Image.open(image_path) as img:
                img = ImageOps.exif_transpose(img)
                img = self._ensure_rgb(img)
                img.load()
                logger.debug(f"Decoded {image_path} ({img.width}x{img.height})")
                return img
        except (FileNotFoundError, PermissionError):
            raise
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageProcessingError(f"{os.path.basename(image_path)}: {e}") from e
