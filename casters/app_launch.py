import json

from casters.base import CastRequest, HttpDialect
from castcore.models import NetworkDevice

APP_PLATFORM_PORTS = (8008, 8009)


class AppLaunchCaster(HttpDialect):
    """Legacy DIAL-style app launch used by Chromecast-like devices."""

    name = "app-launch"

    def applies_to(self, device: NetworkDevice) -> bool:
        return device.port in APP_PLATFORM_PORTS

    def play(self, device: NetworkDevice, request: CastRequest) -> bool:
        timeout = float(self.config.get("app_launch_timeout", 5.0))
        body = json.dumps({"v": request.media_url}).encode("utf-8")
        url = f"http://{device.host}:{device.port}/apps/YouTube"
        return self._attempt(url, body, {"Content-Type": "application/json"}, timeout)
