"""Tests for the decoder plugins and the extension registry."""
import numpy as np
import pytest
from unittest.mock import MagicMock, patch

from core.errors import ImageProcessingError, RawProcessingError
from plugins.base_plugin import PluginRegistry, create_default_registry
from plugins.pil_plugin import PILPlugin
from plugins.raw_plugin import MissingRawDecoderPlugin, RawPlugin
from tests.conftest import FakeRawPlugin, write_corrupt, write_jpeg


class _UnavailablePlugin(FakeRawPlugin):
    def is_available(self):
        return False


class TestPluginRegistry:
    def test_lookup_is_case_insensitive(self):
        registry = PluginRegistry()
        registry.register_plugin(PILPlugin())
        assert isinstance(registry.get_plugin_for_format("JPG"), PILPlugin)
        assert isinstance(registry.get_plugin_for_path("/x/IMG_1.JPEG"), PILPlugin)
        assert registry.get_plugin_for_path("/x/noext") is None

    def test_unavailable_plugin_skipped(self):
        registry = PluginRegistry()
        assert registry.register_plugin(_UnavailablePlugin()) is False
        assert registry.get_supported_formats() == set()

    def test_formats_union(self, registry):
        formats = registry.get_supported_formats()
        assert {".jpg", ".png", ".nef", ".dng"} <= formats


class TestPILPlugin:
    def test_decodes_to_rgb(self, tmp_path):
        img = PILPlugin().load_image(write_jpeg(tmp_path / "a.jpg", size=(64, 48)))
        assert img.mode == "RGB"
        assert img.size == (64, 48)

    def test_corrupt_file(self, tmp_path):
        with pytest.raises(ImageProcessingError) as exc:
            PILPlugin().load_image(write_corrupt(tmp_path / "bad.jpg"))
        assert "bad.jpg" in str(exc.value)

    def test_missing_file_propagates(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PILPlugin().load_image(str(tmp_path / "nope.jpg"))


def _fake_rawpy():
    rawpy = MagicMock()
    rawpy.LibRawError = type("LibRawError", (Exception,), {})
    return rawpy


class TestRawPlugin:
    def test_develops_sensor_data(self):
        rawpy = _fake_rawpy()
        raw = rawpy.imread.return_value.__enter__.return_value
        raw.postprocess.return_value = np.zeros((40, 60, 3), dtype=np.uint8)

        with patch("plugins.raw_plugin._get_rawpy", return_value=rawpy):
            img = RawPlugin().load_image("/shoot/a.nef")

        assert img.size == (60, 40)
        assert img.mode == "RGB"
        assert raw.postprocess.call_args.kwargs["output_bps"] == 8

    def test_libraw_error_wrapped(self):
        rawpy = _fake_rawpy()
        rawpy.imread.side_effect = rawpy.LibRawError("unsupported file format")

        with patch("plugins.raw_plugin._get_rawpy", return_value=rawpy):
            with pytest.raises(RawProcessingError) as exc:
                RawPlugin().load_image("/shoot/a.nef")
        assert "a.nef" in str(exc.value)


class TestDefaultRegistry:
    def test_raw_formats_claimed_without_rawpy(self):
        with patch.object(RawPlugin, "is_available", return_value=False):
            registry = create_default_registry()

        plugin = registry.get_plugin_for_format(".nef")
        assert isinstance(plugin, MissingRawDecoderPlugin)
        assert plugin.is_raw
        with pytest.raises(RawProcessingError) as exc:
            plugin.load_image("/shoot/a.nef")
        assert str(exc.value) == "RAW processing error: a.nef: rawpy unavailable"

    def test_rawpy_plugin_used_when_available(self):
        with patch.object(RawPlugin, "is_available", return_value=True):
            registry = create_default_registry()
        assert isinstance(registry.get_plugin_for_format(".dng"), RawPlugin)
