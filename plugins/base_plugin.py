import os
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Set

from PIL import Image


class PluginRegistry:
    """Maps lower-case file extensions to the decoder plugin that handles them."""

    def __init__(self):
        self.plugins: Dict[str, 'BasePlugin'] = {}
        self.format_map: Dict[str, 'BasePlugin'] = {}

    def register_plugin(self, plugin: 'BasePlugin') -> bool:
        """Register a plugin and its supported formats.

        Plugins whose dependencies are missing are skipped; returns whether
        the plugin was registered.
        """
        plugin_name = plugin.__class__.__name__
        if not plugin.is_available():
            logging.warning(f"Plugin {plugin_name} not available - missing dependencies")
            return False
        if plugin_name in self.plugins:
            logging.debug(f"Plugin {plugin_name} already registered")
            return True

        self.plugins[plugin_name] = plugin

        formats = plugin.get_supported_formats()
        for ext in formats:
            if ext in self.format_map:
                logging.warning(f"Format {ext} already registered by {self.format_map[ext].__class__.__name__}, overriding with {plugin_name}")
            self.format_map[ext] = plugin
            logging.debug(f"Registered format {ext} with plugin {plugin_name}")

        logging.info(f"Plugin {plugin_name} registered with formats: {', '.join(formats)}")
        return True

    def get_plugin_for_format(self, file_extension: str) -> Optional['BasePlugin']:
        """Get the plugin that handles a specific file format."""
        # Ensure the extension starts with a dot and is lowercase
        if not file_extension.startswith('.'):
            file_extension = '.' + file_extension
        return self.format_map.get(file_extension.lower())

    def get_plugin_for_path(self, file_path: str) -> Optional['BasePlugin']:
        _, ext = os.path.splitext(file_path)
        return self.get_plugin_for_format(ext) if ext else None

    def get_supported_formats(self) -> Set[str]:
        """Get all supported file formats across all plugins."""
        return set(self.format_map.keys())


def create_default_registry() -> PluginRegistry:
    """Registry with the standard-format and RAW decoders."""
    from .pil_plugin import PILPlugin
    from .raw_plugin import MissingRawDecoderPlugin, RawPlugin

    registry = PluginRegistry()
    registry.register_plugin(PILPlugin())
    if not registry.register_plugin(RawPlugin()):
        registry.register_plugin(MissingRawDecoderPlugin())
    return registry


class BasePlugin(ABC):
    """Base class for all image decoder plugins.

    A plugin turns a source file into an RGB ``PIL.Image`` raster. Resizing,
    encoding and caching belong to the thumbnail generator.
    """

    #: True for camera RAW decoders; RAW sources also get a preview asset.
    is_raw = False

    @abstractmethod
    def is_available(self) -> bool:
        """Check if all required dependencies for this plugin are available."""
        pass

    @abstractmethod
    def get_supported_formats(self) -> List[str]:
        """Return list of supported file extensions (with dots, lowercase)."""
        pass

    @abstractmethod
    def load_image(self, image_path: str) -> Image.Image:
        """
        Decode *image_path* into a fully loaded RGB image.
        Raises a GlimpseError subclass on decode failure and OSError when the
        file cannot be read at all.
        """
        pass

    @staticmethod
    def _ensure_rgb(img: Image.Image) -> Image.Image:
        if img.mode != 'RGB':
            img = img.convert('RGB')
        return img
