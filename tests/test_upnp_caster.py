import asyncio
import os
import sys
import unittest
import xml.etree.ElementTree as ET
from unittest.mock import patch

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from casters.base import CastRequest
from casters.upnp import ControlPointCaster, build_didl_metadata, find_av_transport
from castcore.models import ControlPointDevice, TransportState

DIDL_NS = "{urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/}"
DC_NS = "{http://purl.org/dc/elements/1.1/}"
UPNP_NS = "{urn:schemas-upnp-org:metadata-1-0/upnp/}"


class FakeAction:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def async_call(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.result


class FakeService:
    def __init__(self, service_type, actions=None):
        self.service_type = service_type
        self.actions = actions or {}

    def action(self, name):
        return self.actions[name]


class FakeDevice:
    def __init__(self, services=(), embedded=None):
        self.services = {s.service_type: s for s in services}
        self.embedded_devices = embedded or {}


class DidlTests(unittest.TestCase):
    def test_metadata_fields(self):
        didl = build_didl_metadata("http://10.0.0.2:8080/video?a=1&b=2", "Tom & Jerry <1>", "video/mp4")
        root = ET.fromstring(didl)
        item = root.find(f"{DIDL_NS}item")

        self.assertEqual("0", item.get("id"))
        self.assertEqual("-1", item.get("parentID"))
        self.assertEqual("Tom & Jerry <1>", item.find(f"{DC_NS}title").text)
        self.assertEqual("object.item.videoItem", item.find(f"{UPNP_NS}class").text)
        res = item.find(f"{DIDL_NS}res")
        self.assertEqual("http://10.0.0.2:8080/video?a=1&b=2", res.text)
        self.assertTrue(res.get("protocolInfo").startswith("http-get:*:video/mp4:"))
        self.assertIn("DLNA.ORG_OP=01", res.get("protocolInfo"))


class FindAvTransportTests(unittest.TestCase):
    def test_direct_service(self):
        avt = FakeService("urn:schemas-upnp-org:service:AVTransport:1")
        dev = FakeDevice([FakeService("urn:schemas-upnp-org:service:RenderingControl:1"), avt])
        self.assertIs(avt, find_av_transport(dev))

    def test_embedded_service(self):
        avt = FakeService("urn:schemas-upnp-org:service:AVTransport:2")
        dev = FakeDevice([], embedded={"uuid:x": FakeDevice([avt])})
        self.assertIs(avt, find_av_transport(dev))

    def test_missing(self):
        self.assertIsNone(find_av_transport(FakeDevice([])))
        self.assertIsNone(find_av_transport(None))


class ControlPointCasterTests(unittest.TestCase):
    def test_actions_without_handle_report_failure(self):
        caster = ControlPointCaster()
        device = ControlPointDevice(id="uuid:tv", name="TV", handle=None)
        request = CastRequest("http://10.0.0.2:8080/video", "clip.mp4")

        async def scenario():
            return (
                await caster.set_source(device, request),
                await caster.play(device),
                await caster.pause(device),
                await caster.stop(device),
            )

        self.assertEqual((False, False, False, False), asyncio.run(scenario()))

    def test_transport_info(self):
        action = FakeAction(result={
            "CurrentTransportState": "PAUSED_PLAYBACK",
            "CurrentTransportStatus": "OK",
            "CurrentSpeed": "1",
        })
        avt = FakeService("urn:schemas-upnp-org:service:AVTransport:1", {"GetTransportInfo": action})
        device = ControlPointDevice(id="uuid:tv", name="TV", handle=FakeDevice([avt]))

        info = asyncio.run(ControlPointCaster().get_transport_info(device))

        self.assertIs(TransportState.PAUSED_PLAYBACK, info.state)
        self.assertEqual("OK", info.status)
        self.assertEqual([{"InstanceID": 0}], action.calls)

    def test_transport_info_failure_is_none(self):
        action = FakeAction(error=OSError("unreachable"))
        avt = FakeService("urn:schemas-upnp-org:service:AVTransport:1", {"GetTransportInfo": action})
        device = ControlPointDevice(id="uuid:tv", name="TV", handle=FakeDevice([avt]))

        self.assertIsNone(asyncio.run(ControlPointCaster().get_transport_info(device)))

    def test_renderer_rebuilt_when_handle_changes(self):
        built = []

        class RecordingDmr:
            def __init__(self, device, event_handler):
                self.device = device
                self.plays = 0
                built.append(self)

            async def async_play(self):
                self.plays += 1

        caster = ControlPointCaster()
        first = ControlPointDevice(id="uuid:tv", name="TV", handle=FakeDevice([]))
        again = ControlPointDevice(id="uuid:tv", name="TV", handle=first.handle)
        rediscovered = ControlPointDevice(id="uuid:tv", name="TV", handle=FakeDevice([]))

        async def scenario():
            return (
                await caster.play(first),
                await caster.play(again),
                await caster.play(rediscovered),
            )

        with patch("casters.upnp.DmrDevice", RecordingDmr):
            self.assertEqual((True, True, True), asyncio.run(scenario()))

        self.assertEqual(2, len(built))
        self.assertIs(first.handle, built[0].device)
        self.assertIs(rediscovered.handle, built[1].device)
        self.assertEqual([2, 1], [dmr.plays for dmr in built])

    def test_unknown_transport_state(self):
        self.assertIs(TransportState.UNKNOWN, TransportState.parse("WARPING"))
        self.assertIs(TransportState.PLAYING, TransportState.parse(" playing "))


if __name__ == '__main__':
    unittest.main()
