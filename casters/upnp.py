import logging
from typing import Any, Dict, Optional
from xml.sax.saxutils import escape

from async_upnp_client.profiles.dlna import DmrDevice

from casters.base import CastRequest
from castcore.errors import AdapterAttemptFailure
from castcore.models import ControlPointDevice, TransportInfo, TransportState

LOG = logging.getLogger(__name__)

AV_TRANSPORT = "urn:schemas-upnp-org:service:AVTransport:1"

# DLNA.ORG_OP=01 (byte seek), DLNA.ORG_CI=0 (not transcoded)
DLNA_FEATURES = "DLNA.ORG_OP=01;DLNA.ORG_CI=0;DLNA.ORG_FLAGS=01700000000000000000000000000000"


def find_av_transport(upnp_device: Any):
    """Return the AVTransport service of a device or its embedded devices."""
    if upnp_device is None:
        return None
    for service in (getattr(upnp_device, "services", None) or {}).values():
        if "AVTransport" in str(getattr(service, "service_type", "")):
            return service
    for embedded in (getattr(upnp_device, "embedded_devices", None) or {}).values():
        found = find_av_transport(embedded)
        if found is not None:
            return found
    return None


def build_didl_metadata(media_url: str, title: str, mime_type: str) -> str:
    protocol_info = f"http-get:*:{mime_type}:{DLNA_FEATURES}"
    return (
        '<DIDL-Lite xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/">'
        '<item id="0" parentID="-1" restricted="1">'
        f"<dc:title>{escape(title)}</dc:title>"
        "<upnp:class>object.item.videoItem</upnp:class>"
        f'<res protocolInfo="{escape(protocol_info)}">{escape(media_url)}</res>'
        "</item>"
        "</DIDL-Lite>"
    )


class ControlPointCaster:
    """AVTransport actions against a control-point device.

    Each call reports success as a bool; failures are logged and never raised
    to the caller.
    """

    def __init__(self):
        self._renderers: Dict[str, DmrDevice] = {}

    def _renderer(self, device: ControlPointDevice) -> DmrDevice:
        if device.handle is None:
            raise AdapterAttemptFailure(f"No UPnP handle for {device.name}")
        dmr = self._renderers.get(device.id)
        # a rediscovered renderer comes back with a fresh handle
        if dmr is None or dmr.device is not device.handle:
            dmr = DmrDevice(device.handle, None)
            self._renderers[device.id] = dmr
        return dmr

    async def _call(self, what: str, device: ControlPointDevice, fn) -> bool:
        try:
            await fn(self._renderer(device))
            return True
        except Exception as e:
            LOG.warning("%s failed on %s: %s", what, device.name, e)
            return False

    async def set_source(self, device: ControlPointDevice, request: CastRequest) -> bool:
        didl = build_didl_metadata(request.media_url, request.title, request.mime_type)
        LOG.info("SetAVTransportURI on %s: %s", device.name, request.media_url)
        return await self._call(
            "SetAVTransportURI", device,
            lambda dmr: dmr.async_set_transport_uri(request.media_url, request.title, didl),
        )

    async def play(self, device: ControlPointDevice) -> bool:
        return await self._call("Play", device, lambda dmr: dmr.async_play())

    async def pause(self, device: ControlPointDevice) -> bool:
        return await self._call("Pause", device, lambda dmr: dmr.async_pause())

    async def stop(self, device: ControlPointDevice) -> bool:
        return await self._call("Stop", device, lambda dmr: dmr.async_stop())

    async def get_transport_info(self, device: ControlPointDevice) -> Optional[TransportInfo]:
        service = find_av_transport(device.handle)
        if service is None:
            return None
        try:
            result = await service.action("GetTransportInfo").async_call(InstanceID=0)
        except Exception as e:
            LOG.debug("GetTransportInfo failed on %s: %s", device.name, e)
            return None
        return TransportInfo(
            state=TransportState.parse(result.get("CurrentTransportState")),
            status=str(result.get("CurrentTransportStatus") or ""),
            speed=str(result.get("CurrentSpeed") or "1"),
        )
