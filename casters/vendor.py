import json
import logging

from casters.base import CastRequest, HttpDialect
from casters.push_to_play import play_body
from castcore.models import NetworkDevice, ProtocolLabel

LOG = logging.getLogger(__name__)

VENDOR_USER_AGENT = "AirPlay/320.20"


class VendorCaster(HttpDialect):
    """EShare-style receivers: a push-to-play POST on the discovered port,
    then their own JSON /stream endpoint."""

    name = "vendor"

    def applies_to(self, device: NetworkDevice) -> bool:
        return device.label is ProtocolLabel.VENDOR_ESHARE_LIKE or "eshare" in (device.name or "").lower()

    def play(self, device: NetworkDevice, request: CastRequest) -> bool:
        timeout = float(self.config.get("vendor_timeout", 5.0))
        base = f"http://{device.host}:{device.port}"

        headers = {
            "Content-Type": "application/x-apple-binary-plist",
            "User-Agent": VENDOR_USER_AGENT,
        }
        if self._attempt(f"{base}/play", play_body(request.media_url, "0"), headers, timeout):
            return True

        body = json.dumps({"url": request.media_url, "title": request.title}).encode("utf-8")
        return self._attempt(f"{base}/stream", body, {"Content-Type": "application/json"}, timeout)
