"""AirPlay-style push-to-play: POST /play with a small text body.

Many receivers (Apple TV clones, screen-mirroring boxes, vendor firmwares) accept
this request shape even when they never announced AirPlay. Different
firmwares insist on different Content-Type headers for the same body, so each
port is tried with both.
"""

import logging
import uuid

from casters.base import CastRequest, HttpDialect, unique_ports
from castcore.models import NetworkDevice

LOG = logging.getLogger(__name__)

CONTENT_TYPES = ("text/parameters", "application/x-apple-binary-plist")

PLAY_USER_AGENT = "iTunes/12.2 (Macintosh; OS X 10.10.5)"
STOP_USER_AGENT = "MediaControl/1.0"
DEVICE_ID = "0x0000000000000001"


def play_body(media_url: str, start_position: str = "0.0") -> bytes:
    return f"Content-Location: {media_url}\nStart-Position: {start_position}\n".encode("utf-8")


class PushToPlayCaster(HttpDialect):
    name = "push-to-play"

    def applies_to(self, device: NetworkDevice) -> bool:
        return True

    def ports_for(self, device: NetworkDevice):
        return unique_ports(device.port, self.config.get("push_to_play_fallback_ports", [7000, 7100]))

    def play(self, device: NetworkDevice, request: CastRequest) -> bool:
        timeout = float(self.config.get("push_to_play_timeout", 10.0))
        body = play_body(request.media_url)
        for port in self.ports_for(device):
            url = f"http://{device.host}:{port}/play"
            for content_type in CONTENT_TYPES:
                LOG.debug("Trying push-to-play on %s:%s with %s", device.host, port, content_type)
                headers = {
                    "Content-Type": content_type,
                    "User-Agent": PLAY_USER_AGENT,
                    "X-Apple-Session-ID": str(uuid.uuid4()),
                    "X-Apple-Device-ID": DEVICE_ID,
                }
                if self._attempt(url, body, headers, timeout):
                    return True
        return False

    def stop(self, device: NetworkDevice) -> bool:
        """Send /stop to the candidate ports until one answers 2xx."""
        timeout = float(self.config.get("stop_timeout", 5.0))
        for port in self.ports_for(device):
            url = f"http://{device.host}:{port}/stop"
            if self._attempt(url, b"", {"User-Agent": STOP_USER_AGENT}, timeout):
                return True
        return False
