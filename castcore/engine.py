import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

from casters.chain import NetworkCasterChain
from casters.upnp import ControlPointCaster
from castcore.config import DEFAULT_CONFIG
from castcore.discovery import DiscoveryManager
from castcore.media_server import MediaServer
from castcore.models import MediaSource, StreamingState, TransportInfo
from castcore.registry import Device, DeviceRegistry, RegistrySnapshot
from castcore.session import StreamingSession

LOG = logging.getLogger(__name__)


class CastEngine:
    """Owns discovery, the device registry, the media server and the session.

    An asyncio loop runs on a daemon thread; the public methods are blocking
    and safe to call from any other thread.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 registry: Optional[DeviceRegistry] = None,
                 media_server: Optional[MediaServer] = None,
                 discovery: Optional[DiscoveryManager] = None,
                 session: Optional[StreamingSession] = None):
        self.config = dict(DEFAULT_CONFIG)
        self.config.update(config or {})
        self.registry = registry or DeviceRegistry()
        self.media_server = media_server or MediaServer(
            port=int(self.config.get("media_server_port", 8080)),
            port_attempts=int(self.config.get("media_server_port_attempts", 2)),
        )
        self.discovery = discovery or DiscoveryManager(self.registry, self.config)
        self._network_chain = None
        if session is None:
            self._network_chain = NetworkCasterChain(self.config)
            session = StreamingSession(
                self.registry, self.media_server, ControlPointCaster(), self._network_chain,
            )
        self.session = session
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the background loop and the media server."""
        if self._running:
            return
        self._running = True
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="CastEngineLoop")
        self._thread.start()
        if not self.media_server.start():
            LOG.error("Media server could not start; casting will fail until it does")

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def stop(self) -> None:
        """Stop discovery, any cast, the media server and the loop."""
        if not self._running:
            return
        try:
            if self.session.active_device is not None:
                self.dispatch(self.session.stop_streaming())
            self.dispatch(self.discovery.shutdown())
        except Exception as e:
            LOG.warning("Error during engine shutdown: %s", e)
        self.media_server.stop()
        if self._network_chain is not None:
            self._network_chain.close()
        self._running = False
        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=2.0)

    def dispatch(self, coro):
        """Run a coroutine on the background loop and return the result synchronously."""
        if not self._running or not self._loop:
            coro.close()
            raise RuntimeError("CastEngine is not running. Call start() first.")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    # -- discovery ---------------------------------------------------------

    def start_discovery(self) -> None:
        self.dispatch(self.discovery.start_discovery())

    def stop_discovery(self) -> None:
        self.dispatch(self.discovery.stop_discovery())

    def refresh_devices(self) -> None:
        self.dispatch(self.discovery.refresh())

    def is_discovering(self) -> bool:
        return self.discovery.is_discovering

    def devices(self) -> RegistrySnapshot:
        return self.registry.snapshot()

    def observe_devices(self, listener: Callable[[RegistrySnapshot], None]) -> Callable[[], None]:
        return self.registry.subscribe(listener)

    def select_device(self, device: Device) -> bool:
        return self.registry.select(device)

    # -- media -------------------------------------------------------------

    def set_media_source(self, source: MediaSource) -> None:
        self.media_server.set_source(source)

    def clear_media_source(self) -> None:
        self.media_server.clear_source()

    def get_video_url(self) -> Optional[str]:
        return self.media_server.get_video_url()

    # -- streaming ---------------------------------------------------------

    def start_streaming(self) -> StreamingState:
        return self.dispatch(self.session.start_streaming())

    def stop_streaming(self) -> StreamingState:
        return self.dispatch(self.session.stop_streaming())

    def pause_streaming(self) -> StreamingState:
        return self.dispatch(self.session.pause_streaming())

    def resume_streaming(self) -> StreamingState:
        return self.dispatch(self.session.resume_streaming())

    @property
    def state(self) -> StreamingState:
        return self.session.state

    def observe_state(self, listener: Callable[[StreamingState], None]) -> Callable[[], None]:
        return self.session.subscribe(listener)

    def get_transport_info(self) -> Optional[TransportInfo]:
        return self.dispatch(self.session.transport_info())
