"""
Shared pytest fixtures for Glimpse tests.
"""
import os
import sys
from typing import List

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from PIL import Image

from config.config_manager import default_threads, get_cpu_count, _deep_merge, DEFAULT_CONFIG
from core.errors import RawProcessingError
from core.session_database import SessionDatabase
from plugins.base_plugin import BasePlugin, PluginRegistry
from plugins.pil_plugin import PILPlugin


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict and never touches disk.

    Only implements the interface used by the scanner, ThumbnailManager and
    GlimpseService.
    """

    def __init__(self, overrides: dict | None = None):
        self.config: dict = _deep_merge(DEFAULT_CONFIG, {
            "thumbnail_threads": 2,
            "data_dir": None,    # must be overridden per fixture
        })
        if overrides:
            self.config = _deep_merge(self.config, overrides)

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self.config
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default

    def set(self, key: str, value):
        keys = key.split(".")
        node = self.config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value

    @property
    def logging_level(self):
        return self.get("logging_level", "INFO")

    @property
    def data_dir(self) -> str:
        return os.path.expanduser(self.get("data_dir"))

    def thumbnail_thread_count(self, cpu_count=None) -> int:
        override = self.get("thumbnail_threads")
        if override:
            return int(override)
        return default_threads(cpu_count if cpu_count is not None else get_cpu_count())


class FakeRawPlugin(BasePlugin):
    """RAW decoder double: ``.nef`` files holding JPEG bytes decode, anything else fails.

    Lets the RAW branch (previews, RawProcessingError capture) run without
    camera files or libraw.
    """

    is_raw = True

    def __init__(self):
        self.load_calls: List[str] = []

    def is_available(self) -> bool:
        return True

    def get_supported_formats(self) -> List[str]:
        return [".nef", ".dng"]

    def load_image(self, image_path: str) -> Image.Image:
        self.load_calls.append(image_path)
        try:
            with Image.open(image_path) as img:
                img.load()
                return self._ensure_rgb(img)
        except OSError as e:
            raise RawProcessingError(f"{os.path.basename(image_path)}: {e}") from e


def write_jpeg(path, size=(800, 600), color=(120, 80, 40)):
    Image.new("RGB", size, color=color).save(str(path), "JPEG")
    return str(path)


def write_corrupt(path, payload: bytes = b"\x00NOT AN IMAGE" * 64):
    with open(path, "wb") as f:
        f.write(payload)
    return str(path)


@pytest.fixture()
def registry():
    reg = PluginRegistry()
    reg.register_plugin(PILPlugin())
    reg.register_plugin(FakeRawPlugin())
    return reg


@pytest.fixture()
def tmp_env(tmp_path):
    """Clean, isolated test environment with a fresh database.

    Yields a dict with:
      tmp_path   - pathlib.Path temp directory (unique per test)
      data_dir   - pathlib.Path application data directory
      db_path    - str path to the SQLite database
      db         - SessionDatabase instance
      config     - MockConfigManager configured for this environment
    """
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    db_path = str(data_dir / "glimpse.db")

    db = SessionDatabase(db_path)
    config = MockConfigManager({"data_dir": str(data_dir)})

    yield {
        "tmp_path": tmp_path,
        "data_dir": data_dir,
        "db_path": db_path,
        "db": db,
        "config": config,
    }

    db.close()


@pytest.fixture()
def sample_images(tmp_env):
    """Creates 20 small JPEG images inside tmp_env and returns their paths."""
    img_dir = tmp_env["tmp_path"] / "images"
    img_dir.mkdir()
    paths: list[str] = []
    for i in range(20):
        path = img_dir / f"image_{i:04d}.jpg"
        color = (i * 12 % 255, i * 7 % 255, i * 3 % 255)
        write_jpeg(path, color=color)
        paths.append(str(path))
    return paths
