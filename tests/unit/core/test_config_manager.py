"""Unit tests for the key = value config reader/writer."""

import pytest

from camnoise.core.config_manager import ConfigManager, get_config_manager


@pytest.fixture()
def manager():
    return ConfigManager()


def test_read_parses_comments_and_quotes(tmp_path, manager):
    config_path = tmp_path / "camnoise.conf"
    config_path.write_text(
        "# capture\n"
        "capture.device = '/dev/video2'\n"
        "sampling.window_size = 50  # samples\n"
        "\n"
        "not a setting\n"
        'debias.method = "interpixel_xor"\n',
        encoding="utf-8",
    )

    config = manager.read_config(config_path)

    assert config == {
        "capture.device": "/dev/video2",
        "sampling.window_size": "50",
        "debias.method": "interpixel_xor",
    }


def test_missing_file_reads_empty(tmp_path, manager):
    assert manager.read_config(tmp_path / "absent.conf") == {}


def test_write_updates_in_place_and_appends(tmp_path, manager):
    config_path = tmp_path / "camnoise.conf"
    config_path.write_text("# header\n  sampling.window_size = 100\n", encoding="utf-8")

    assert manager.write_config(
        config_path,
        {"sampling.window_size": 25, "capture.resolution": (640, 480), "debug": True},
    )

    text = config_path.read_text(encoding="utf-8")
    assert text.startswith("# header\n  sampling.window_size = 25\n")
    assert "capture.resolution = 640x480\n" in text
    assert "debug = true\n" in text


def test_write_creates_parent_directories(tmp_path, manager):
    config_path = tmp_path / "nested" / "dir" / "camnoise.conf"

    assert manager.write_config(config_path, {"bus.min_buffer": 512})
    assert manager.read_config(config_path) == {"bus.min_buffer": "512"}


def test_typed_getters(manager):
    config = {"on": "Yes", "count": "12", "bad": "twelve", "scale": "2.5"}

    assert manager.get_bool(config, "on") is True
    assert manager.get_bool(config, "missing", True) is True
    assert manager.get_int(config, "count") == 12
    assert manager.get_int(config, "bad", 7) == 7
    assert manager.get_float(config, "scale") == 2.5
    assert manager.get_float(config, "bad", 1.5) == 1.5
    assert manager.get_str(config, "missing", "x") == "x"


def test_shared_instance():
    assert get_config_manager() is get_config_manager()


@pytest.mark.asyncio
async def test_read_async_matches_sync(tmp_path, manager):
    config_path = tmp_path / "camnoise.conf"
    config_path.write_text("exposure.cooldown_s = 1.5\ncapture.fps = 60\n", encoding="utf-8")

    assert await manager.read_config_async(config_path) == manager.read_config(config_path)


@pytest.mark.asyncio
async def test_read_async_missing_file(tmp_path, manager):
    assert await manager.read_config_async(tmp_path / "absent.conf") == {}


@pytest.mark.asyncio
async def test_write_async_round_trip(tmp_path, manager):
    config_path = tmp_path / "camnoise.conf"
    config_path.write_text("capture.fps = 30\n", encoding="utf-8")

    assert await manager.write_config_async(config_path, {"capture.fps": 60, "capture.device": 1})

    assert await manager.read_config_async(config_path) == {"capture.fps": "60", "capture.device": "1"}
