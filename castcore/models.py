"""Data model for discovered devices, media sources and session state.

Devices come in two variants. ``ControlPointDevice`` wraps a UPnP device that
exposes AVTransport; ``NetworkDevice`` is anything known only by host and port.
Both carry a ``DeviceCapabilities`` record so callers never need isinstance
checks to decide what a device can do.
"""

import abc
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, BinaryIO, Optional


class ProtocolLabel(Enum):
    """Best guess of the protocol a network device speaks."""
    AIRPLAY_LIKE = "AirPlay"
    CHROMECAST_LIKE = "Chromecast"
    VENDOR_ESHARE_LIKE = "EShare"
    GENERIC_MEDIA_RENDERER = "Media Renderer"
    UNCLASSIFIED = "Network Device"
    CONTROL_POINT = "DLNA"


class Confidence(Enum):
    """How a network device was found.

    HIGH means a protocol-specific announcement (mDNS, vendor UDP reply),
    LOW means a bare open port.
    """
    LOW = 0
    HIGH = 1


@dataclass(frozen=True)
class DeviceCapabilities:
    supports_pause: bool
    label: ProtocolLabel


CONTROL_POINT_CAPABILITIES = DeviceCapabilities(supports_pause=True, label=ProtocolLabel.CONTROL_POINT)


@dataclass(frozen=True)
class ControlPointDevice:
    """A UPnP media renderer exposing the AVTransport service."""
    id: str  # UDN
    name: str
    manufacturer: str = "Unknown"
    model: str = "Unknown Model"
    is_selected: bool = False
    # async_upnp_client UpnpDevice; opaque to everything but the UPnP caster
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> str:
        return self.id

    @property
    def capabilities(self) -> DeviceCapabilities:
        return CONTROL_POINT_CAPABILITIES

    @property
    def display_name(self) -> str:
        return f"{self.name} [{self.capabilities.label.value}]"

    def with_selected(self, selected: bool) -> "ControlPointDevice":
        if self.is_selected == selected:
            return self
        return replace(self, is_selected=selected)


@dataclass(frozen=True)
class NetworkDevice:
    """A device known by host/port with an inferred protocol label."""
    name: str
    host: str
    port: int
    label: ProtocolLabel = ProtocolLabel.UNCLASSIFIED
    confidence: Confidence = Confidence.LOW
    is_selected: bool = False

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def capabilities(self) -> DeviceCapabilities:
        return DeviceCapabilities(supports_pause=False, label=self.label)

    @property
    def display_name(self) -> str:
        return f"{self.name} [{self.label.value}]"

    def with_selected(self, selected: bool) -> "NetworkDevice":
        if self.is_selected == selected:
            return self
        return replace(self, is_selected=selected)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

class StreamingState:
    """Base class of the session states. Instances are immutable."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return self.name


class _Singleton(StreamingState):
    def __eq__(self, other):
        return type(other) is type(self)

    def __hash__(self):
        return hash(type(self))


class Idle(_Singleton):
    """No streaming activity."""


class Preparing(_Singleton):
    """Talking to the device, not yet playing."""


class Stopped(_Singleton):
    pass


@dataclass(frozen=True, repr=False)
class Streaming(StreamingState):
    video_name: str
    device_name: str

    def __repr__(self) -> str:
        return f"Streaming({self.video_name!r} -> {self.device_name!r})"


@dataclass(frozen=True, repr=False)
class Paused(StreamingState):
    video_name: str
    device_name: str

    def __repr__(self) -> str:
        return f"Paused({self.video_name!r} on {self.device_name!r})"


@dataclass(frozen=True, repr=False)
class Error(StreamingState):
    message: str

    def __repr__(self) -> str:
        return f"Error({self.message!r})"


IDLE = Idle()
PREPARING = Preparing()
STOPPED = Stopped()


class TransportState(Enum):
    """AVTransport CurrentTransportState values."""
    STOPPED = "STOPPED"
    PLAYING = "PLAYING"
    TRANSITIONING = "TRANSITIONING"
    PAUSED_PLAYBACK = "PAUSED_PLAYBACK"
    PAUSED_RECORDING = "PAUSED_RECORDING"
    RECORDING = "RECORDING"
    NO_MEDIA_PRESENT = "NO_MEDIA_PRESENT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value) -> "TransportState":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class TransportInfo:
    state: TransportState
    status: str = ""
    speed: str = "1"


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

class ContentSource(abc.ABC):
    """Position-addressable bytes of the media being served.

    Every call to open() must return an independent stream; the media server
    opens one per request and requests run concurrently.
    """

    @property
    @abc.abstractmethod
    def size(self) -> int:
        pass

    @property
    @abc.abstractmethod
    def mime_type(self) -> str:
        pass

    @abc.abstractmethod
    def open(self, offset: int = 0) -> BinaryIO:
        pass


class FileContentSource(ContentSource):
    def __init__(self, path: str, mime_type: Optional[str] = None):
        self.path = path
        self._mime_type = mime_type or detect_mime_type(path)

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    @property
    def mime_type(self) -> str:
        return self._mime_type

    def open(self, offset: int = 0) -> BinaryIO:
        f = open(self.path, "rb")
        if offset:
            f.seek(offset)
        return f


@dataclass(frozen=True)
class MediaSource:
    """The video selected for casting."""
    uri: str
    name: str
    mime_type: str
    size_bytes: int
    content: ContentSource = field(compare=False, repr=False)

    @classmethod
    def from_content(cls, content: ContentSource, name: str, uri: str = "") -> "MediaSource":
        return cls(
            uri=uri or name,
            name=name,
            mime_type=content.mime_type,
            size_bytes=content.size,
            content=content,
        )

    @classmethod
    def from_file(cls, path: str, mime_type: Optional[str] = None) -> "MediaSource":
        content = FileContentSource(path, mime_type)
        return cls.from_content(content, os.path.basename(path), uri=os.path.abspath(path))

    @property
    def formatted_size(self) -> str:
        return format_size(self.size_bytes)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size // 1024} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size // (1024 * 1024)} MB"
    return f"{size / (1024.0 * 1024.0 * 1024.0):.2f} GB"


def detect_mime_type(name: str, default: str = "video/mp4") -> str:
    """Guess a MIME type from a file name, biased towards video containers."""
    u = (name or "").lower()
    if u.endswith(".m3u8"):
        return "application/x-mpegURL"
    if u.endswith(".ts"):
        return "video/mp2t"
    if u.endswith((".mp4", ".m4v")):
        return "video/mp4"
    if u.endswith(".mkv"):
        return "video/x-matroska"
    if u.endswith(".avi"):
        return "video/x-msvideo"
    if u.endswith(".mov"):
        return "video/quicktime"
    if u.endswith(".webm"):
        return "video/webm"
    if u.endswith(".mp3"):
        return "audio/mpeg"
    if u.endswith((".aac", ".m4a")):
        return "audio/aac"
    if u.endswith(".flac"):
        return "audio/flac"
    return default
