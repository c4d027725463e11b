"""
Exporter unit tests
"""

import pytest
from PIL import Image

from appshots import export as export_module
from appshots.errors import EncodingFailure, NoImages, WriteFailure
from appshots.export import (
    ALL_SIZES,
    DEFAULT_SIZES,
    IPAD_13,
    IPHONE_6_7,
    IPHONE_6_9,
    ExportConfig,
    Exporter,
    ExportFormat,
    compress_to_fit,
    resize_to_device,
    resolve_sizes,
    sanitize_file_name,
)
from appshots.models import DeviceFamily
from appshots.render import ComposedImage


def composed(index: int, size=(129, 280), color=(30, 60, 90)) -> ComposedImage:
    return ComposedImage(index, DeviceFamily.PHONE, Image.new("RGB", size, color))


class TestCatalog:
    def test_sizes(self):
        dims = {s.id: (s.width, s.height) for s in ALL_SIZES}
        assert dims == {
            "iphone_6.9": (1320, 2868),
            "iphone_6.7": (1290, 2796),
            "iphone_6.5": (1242, 2688),
            "iphone_5.5": (1242, 2208),
            "ipad_13": (2048, 2732),
        }

    def test_defaults(self):
        assert DEFAULT_SIZES == (IPHONE_6_9, IPHONE_6_7)

    def test_resolve_sizes(self):
        assert resolve_sizes(["ipad_13"]) == (IPAD_13,)
        with pytest.raises(ValueError):
            resolve_sizes(["pixel_8"])

    def test_config_for_family(self):
        config = ExportConfig(sizes=(IPHONE_6_7, IPAD_13))
        assert config.for_family(DeviceFamily.TABLET).sizes == (IPAD_13,)
        assert config.for_family(DeviceFamily.PHONE).sizes == (IPHONE_6_7,)

    def test_quality_out_of_range(self):
        with pytest.raises(ValueError):
            ExportConfig(jpeg_quality=1.5)


class TestFileNames:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("My App!!", "my_app"),
            ("Café  Pro 2", "caf_pro_2"),
            ("to-do_list", "to-do_list"),
            ("!!!", "app"),
        ],
    )
    def test_sanitize(self, raw, expected):
        assert sanitize_file_name(raw) == expected

    def test_export_file_name(self, temp_dir):
        results = Exporter().export_all(
            [composed(2)], "My App!!", ExportConfig(sizes=(IPHONE_6_7,)), temp_dir
        )
        assert results[0].file_name == "my_app_iphone_6.7_2.png"
        assert results[0].file_path == temp_dir / "my_app_iphone_6.7_2.png"

    def test_jpeg_extension(self, temp_dir):
        config = ExportConfig(sizes=(IPHONE_6_7,), format=ExportFormat.JPEG)
        results = Exporter().export_all([composed(0)], "App", config, temp_dir)
        assert results[0].file_name.endswith(".jpg")
        with Image.open(results[0].file_path) as img:
            assert img.format == "JPEG"


class TestResize:
    @pytest.mark.parametrize("source", [(100, 200), (3000, 5000), (1290, 2796), (2796, 1290)])
    def test_always_exact_size(self, source):
        out = resize_to_device(Image.new("RGB", source), IPHONE_6_7)
        assert out.size == (1290, 2796)

    def test_equal_size_is_untouched(self):
        image = Image.new("RGB", (1290, 2796))
        assert resize_to_device(image, IPHONE_6_7) is image


class TestExportAll:
    def test_writes_every_image_size_pair(self, temp_dir):
        progress = []
        config = ExportConfig(sizes=(IPHONE_6_9, IPHONE_6_7))
        results = Exporter().export_all(
            [composed(0), composed(1)], "App", config, temp_dir,
            on_progress=lambda done, total: progress.append((done, total)),
        )

        assert len(results) == 4
        assert progress == [(1, 4), (2, 4), (3, 4), (4, 4)]
        for result in results:
            assert result.file_path.exists()
            assert result.file_size == result.file_path.stat().st_size
            with Image.open(result.file_path) as img:
                assert img.size == (result.device_size.width, result.device_size.height)

    def test_plain_images_use_position_as_index(self, temp_dir):
        images = [Image.new("RGB", (10, 20)), Image.new("RGB", (10, 20))]
        results = Exporter().export_all(images, "App", ExportConfig(sizes=(IPHONE_6_7,)), temp_dir)
        assert [r.screen_index for r in results] == [0, 1]

    def test_no_images(self, temp_dir):
        target = temp_dir / "out"
        with pytest.raises(NoImages):
            Exporter().export_all([], "App", ExportConfig(), target)
        assert not target.exists()

    def test_write_failure_carries_written_results(self, temp_dir):
        # A directory squatting on the second file name makes the write fail.
        (temp_dir / "app_iphone_6.7_1.png").mkdir()
        with pytest.raises(WriteFailure) as excinfo:
            Exporter().export_all(
                [composed(0), composed(1)], "App", ExportConfig(sizes=(IPHONE_6_7,)), temp_dir
            )
        assert [r.file_name for r in excinfo.value.results] == ["app_iphone_6.7_0.png"]
        assert excinfo.value.path == temp_dir / "app_iphone_6.7_1.png"

    def test_encoding_failure(self, temp_dir, monkeypatch):
        def broken(image, fmt, quality=0.9):
            raise OSError("encoder exploded")

        monkeypatch.setattr(export_module, "encode_image", broken)
        with pytest.raises(EncodingFailure) as excinfo:
            Exporter().export_all([composed(3)], "App", ExportConfig(sizes=(IPHONE_6_7,)), temp_dir)
        assert excinfo.value.file_name == "app_iphone_6.7_3.png"

    def test_export_single(self, temp_dir):
        result = Exporter().export_single(
            Image.new("RGB", (50, 50)), "App", 4, IPAD_13, ExportConfig(), temp_dir
        )
        assert result.file_name == "app_ipad_13_4.png"
        assert result.device_size is IPAD_13


class TestCompressToFit:
    def test_steps_down_to_floor(self, monkeypatch):
        qualities = []

        def oversized(image, fmt, quality=0.9):
            qualities.append(quality)
            return b"x" * 1000

        monkeypatch.setattr(export_module, "encode_image", oversized)
        data, quality = compress_to_fit(Image.new("RGB", (4, 4)), 10, 0.9)

        assert qualities == [0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1]
        assert quality == 0.1
        assert len(data) == 1000

    def test_stops_at_first_fit(self, monkeypatch):
        qualities = []

        def shrinking(image, fmt, quality=0.9):
            qualities.append(quality)
            return b"x" * int(quality * 100)

        monkeypatch.setattr(export_module, "encode_image", shrinking)
        data, quality = compress_to_fit(Image.new("RGB", (4, 4)), 60, 0.9)

        assert qualities == [0.9, 0.8, 0.7, 0.6]
        assert quality == 0.6

    def test_exporter_encodes_each_quality_once(self, temp_dir, monkeypatch):
        qualities = []

        def oversized(image, fmt, quality=0.9):
            qualities.append(quality)
            return b"x" * 1000

        monkeypatch.setattr(export_module, "encode_image", oversized)
        config = ExportConfig(sizes=(IPHONE_6_7,), format=ExportFormat.JPEG, max_file_size_mb=0.0001)
        Exporter().export_all([composed(0)], "App", config, temp_dir)

        assert qualities == [0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.3, 0.2, 0.1]

    def test_oversized_jpeg_is_still_written(self, temp_dir):
        config = ExportConfig(sizes=(IPHONE_6_7,), format=ExportFormat.JPEG, max_file_size_mb=0.0001)
        results = Exporter().export_all([composed(0)], "App", config, temp_dir)
        assert results[0].file_path.exists()
        assert results[0].file_size > config.max_bytes
