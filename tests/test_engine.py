import os
import sys
import tempfile
import threading
import unittest
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import requests

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from castcore.engine import CastEngine
from castcore.models import IDLE, STOPPED, Error, MediaSource, NetworkDevice, Streaming
from castcore.registry import DeviceRegistry


class StubDiscovery:
    def __init__(self, registry):
        self.registry = registry
        self.calls = []
        self.is_discovering = False

    async def start_discovery(self):
        self.calls.append("start")
        self.is_discovering = True

    async def stop_discovery(self):
        self.calls.append("stop")
        self.is_discovering = False

    async def refresh(self):
        self.calls.append("refresh")

    async def shutdown(self):
        self.calls.append("shutdown")


class RendererHandler(BaseHTTPRequestHandler):
    """Accepts push-to-play and fetches the first bytes of the announced URL."""

    def do_POST(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length).decode("utf-8") if length else ""
        self.server.posts.append((self.path, body))
        if self.path == "/play":
            url = body.split("Content-Location: ", 1)[1].split("\n", 1)[0]
            r = requests.get(url, headers={"Range": "bytes=0-3"}, timeout=5)
            self.server.fetched.append((r.status_code, r.content))
        self.send_response(200)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, *args, **kwargs):
        return


class CastEngineTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.video = os.path.join(self.tmp.name, "holiday.mp4")
        with open(self.video, "wb") as f:
            f.write(b"VIDEODATA" * 100)

        self.renderer = ThreadingHTTPServer(("127.0.0.1", 0), RendererHandler)
        self.renderer.posts = []
        self.renderer.fetched = []
        threading.Thread(target=self.renderer.serve_forever, daemon=True).start()
        self.addCleanup(self.renderer.server_close)
        self.addCleanup(self.renderer.shutdown)

        self.registry = DeviceRegistry()
        self.discovery = StubDiscovery(self.registry)
        self.engine = CastEngine(
            {"media_server_port": 0, "push_to_play_fallback_ports": [], "push_to_play_timeout": 5.0},
            registry=self.registry,
            discovery=self.discovery,
        )
        self.engine.start()
        self.addCleanup(self.engine.stop)

    def test_dispatch_requires_start(self):
        engine = CastEngine({"media_server_port": 0})
        with self.assertRaises(RuntimeError):
            engine.start_streaming()

    def test_discovery_calls_go_through_loop(self):
        self.engine.start_discovery()
        self.assertTrue(self.engine.is_discovering())
        self.engine.refresh_devices()
        self.engine.stop_discovery()
        self.assertFalse(self.engine.is_discovering())
        self.assertEqual(["start", "refresh", "stop"], self.discovery.calls)

    def test_end_to_end_cast_to_network_device(self):
        states = []
        self.engine.observe_state(states.append)
        device = NetworkDevice("Renderer", "127.0.0.1", self.renderer.server_address[1])
        self.registry.publish_network(device)
        self.assertTrue(self.engine.select_device(device))
        self.engine.set_media_source(MediaSource.from_file(self.video))

        url = self.engine.get_video_url()
        self.assertTrue(url.endswith("/video"))
        # Renderer lives on loopback; point it at the loopback media server.
        self.engine.media_server.get_video_url = lambda: f"http://127.0.0.1:{self.engine.media_server.port}/video"

        state = self.engine.start_streaming()

        self.assertEqual(Streaming("holiday.mp4", "Renderer"), state)
        self.assertEqual("/play", self.renderer.posts[0][0])
        self.assertEqual([(206, b"VIDE")], self.renderer.fetched)

        self.assertEqual(STOPPED, self.engine.stop_streaming())
        self.assertEqual("/stop", self.renderer.posts[-1][0])
        self.assertEqual(IDLE, states[0])
        self.assertEqual(STOPPED, states[-1])

    def test_start_without_device(self):
        self.engine.set_media_source(MediaSource.from_file(self.video))
        self.assertEqual(Error("No device selected"), self.engine.start_streaming())

    def test_clear_media_source(self):
        self.engine.set_media_source(MediaSource.from_file(self.video))
        self.engine.clear_media_source()
        self.assertIsNone(self.engine.get_video_url())
        self.assertIsInstance(self.engine.start_streaming(), Error)

    def test_transport_info_for_network_device_is_none(self):
        device = NetworkDevice("Renderer", "127.0.0.1", self.renderer.server_address[1])
        self.registry.publish_network(device)
        self.engine.select_device(device)
        self.assertIsNone(self.engine.get_transport_info())

    def test_stop_shuts_down_discovery(self):
        self.engine.stop()
        self.assertIn("shutdown", self.discovery.calls)


if __name__ == '__main__':
    unittest.main()
