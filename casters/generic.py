from casters.base import CastRequest, HttpDialect
from castcore.models import NetworkDevice

CONTROL_PATHS = ("/play", "/video", "/stream", "/media", "/cast")


class GenericPathCaster(HttpDialect):
    """Last resort: the common control paths with a minimal text body."""

    name = "generic"

    def applies_to(self, device: NetworkDevice) -> bool:
        return True

    def play(self, device: NetworkDevice, request: CastRequest) -> bool:
        timeout = float(self.config.get("generic_timeout", 3.0))
        body = f"Content-Location: {request.media_url}\n".encode("utf-8")
        for path in CONTROL_PATHS:
            url = f"http://{device.host}:{device.port}{path}"
            if self._attempt(url, body, {"Content-Type": "text/parameters"}, timeout):
                return True
        return False
