import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from castcore.models import (
    IDLE,
    PREPARING,
    STOPPED,
    Confidence,
    ControlPointDevice,
    Error,
    Idle,
    MediaSource,
    NetworkDevice,
    ProtocolLabel,
    Streaming,
    detect_mime_type,
    format_size,
)


def test_format_size():
    assert format_size(512) == "512 B"
    assert format_size(2048) == "2 KB"
    assert format_size(5 * 1024 * 1024) == "5 MB"
    assert format_size(3 * 1024 * 1024 * 1024 // 2) == "1.50 GB"


def test_detect_mime_type():
    assert detect_mime_type("clip.MKV") == "video/x-matroska"
    assert detect_mime_type("show.ts") == "video/mp2t"
    assert detect_mime_type("movie.webm") == "video/webm"
    assert detect_mime_type("mystery.bin") == "video/mp4"
    assert detect_mime_type("mystery.bin", default="application/octet-stream") == "application/octet-stream"


def test_capabilities_are_data():
    tv = ControlPointDevice(id="uuid:1", name="TV")
    box = NetworkDevice("Box", "10.0.0.2", 7000, ProtocolLabel.AIRPLAY_LIKE)

    assert tv.capabilities.supports_pause is True
    assert tv.capabilities.label is ProtocolLabel.CONTROL_POINT
    assert box.capabilities.supports_pause is False
    assert box.capabilities.label is ProtocolLabel.AIRPLAY_LIKE


def test_device_identity_and_display():
    box = NetworkDevice("Box", "10.0.0.2", 7000, ProtocolLabel.AIRPLAY_LIKE)
    assert box.key == "10.0.0.2:7000"
    assert box.display_name == "Box [AirPlay]"
    assert box.confidence is Confidence.LOW
    assert box.with_selected(False) is box
    assert box.with_selected(True).is_selected

    tv = ControlPointDevice(id="uuid:1", name="TV", handle=object())
    assert tv.key == "uuid:1"
    assert tv.manufacturer == "Unknown"
    assert tv == ControlPointDevice(id="uuid:1", name="TV", handle=object())


def test_states_compare_by_value():
    assert IDLE == Idle()
    assert IDLE != PREPARING
    assert STOPPED.name == "Stopped"
    assert Streaming("a.mp4", "TV") == Streaming("a.mp4", "TV")
    assert Error("x") != Error("y")


def test_media_source_from_file():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "clip.mkv")
        with open(path, "wb") as f:
            f.write(b"0123456789")
        source = MediaSource.from_file(path)

        assert source.name == "clip.mkv"
        assert source.size_bytes == 10
        assert source.mime_type == "video/x-matroska"
        assert source.formatted_size == "10 B"
        with source.content.open(4) as stream:
            assert stream.read() == b"456789"
