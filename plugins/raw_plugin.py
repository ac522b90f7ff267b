import importlib.util
import logging
import os
from typing import List

from PIL import Image

from core.directory_scanner import RAW_EXTENSIONS
from core.errors import RawProcessingError
from .base_plugin import BasePlugin

logger = logging.getLogger(__name__)


def _get_rawpy():
    import rawpy
    return rawpy


class RawPlugin(BasePlugin):
    """Plugin for camera RAW formats, demosaiced through libraw via rawpy.

    The libraw pipeline (demosaic, white balance, colour conversion, gamma)
    is deep; callers run it on worker threads created with an enlarged stack.
    """

    is_raw = True

    def is_available(self) -> bool:
        return importlib.util.find_spec("rawpy") is not None

    def get_supported_formats(self) -> List[str]:
        return sorted(RAW_EXTENSIONS)

    def load_image(self, image_path: str) -> Image.Image:
        """Decode sensor data and develop it with a fixed default pass.

        Returns an 8-bit RGB image at the sensor's native output size.
        """
        rawpy = _get_rawpy()
        name = os.path.basename(image_path)
        try:
            with rawpy.imread(image_path) as raw:
                rgb = raw.postprocess(
                    use_camera_wb=True,
                    output_bps=8,
                    output_color=rawpy.ColorSpace.sRGB,
                )
        except rawpy.LibRawError as e:
            raise RawProcessingError(f"{name}: {e}") from e
        except (OSError, ValueError, MemoryError) as e:
            raise RawProcessingError(f"{name}: {e}") from e

        try:
            img = Image.fromarray(rgb)
        except (TypeError, ValueError) as e:
            raise RawProcessingError(f"{name}: failed to create image from raw data ({e})") from e
        logger.debug(f"Developed RAW {image_path} ({img.width}x{img.height})")
        return self._ensure_rgb(img)


class MissingRawDecoderPlugin(BasePlugin):
    """Stands in for RawPlugin when rawpy cannot be imported.

    Claims the RAW extensions so those files fail as RAW decode errors
    rather than as unsupported formats.
    """

    is_raw = True

    def is_available(self) -> bool:
        return True

    def get_supported_formats(self) -> List[str]:
        return sorted(RAW_EXTENSIONS)

    def load_image(self, image_path: str) -> Image.Image:
        raise RawProcessingError(f"{os.path.basename(image_path)}: rawpy unavailable")
