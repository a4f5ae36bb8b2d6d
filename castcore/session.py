"""Streaming session: the state machine that drives one cast at a time.

All operations are coroutines run on the engine loop. Blocking HTTP dialects
are pushed to the loop's default executor.
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional

from casters.base import CastRequest
from casters.chain import NetworkCasterChain
from casters.upnp import ControlPointCaster
from castcore.errors import StreamingError
from castcore.media_server import MediaServer
from castcore.models import (
    IDLE,
    PREPARING,
    STOPPED,
    ControlPointDevice,
    Error,
    Paused,
    Streaming,
    StreamingState,
    TransportInfo,
)
from castcore.registry import Device, DeviceRegistry

LOG = logging.getLogger(__name__)

StateListener = Callable[[StreamingState], None]


class StreamingSession:
    def __init__(self, registry: DeviceRegistry, media_server: MediaServer,
                 control_point_caster: ControlPointCaster, network_chain: NetworkCasterChain):
        self._registry = registry
        self._media_server = media_server
        self._control_point = control_point_caster
        self._network = network_chain
        self._lock = threading.RLock()
        self._state: StreamingState = IDLE
        self._listeners: List[StateListener] = []
        self._active_device: Optional[Device] = None
        # Bumped by every start and stop; a start only commits its result if
        # no newer operation happened while it was talking to the device.
        self._generation = 0

    @property
    def state(self) -> StreamingState:
        return self._state

    @property
    def active_device(self) -> Optional[Device]:
        return self._active_device

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)
            self._notify_one(listener, self._state)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    def _notify_one(self, listener: StateListener, state: StreamingState) -> None:
        try:
            listener(state)
        except Exception as e:
            LOG.error("State listener failed: %s", e)

    def _set_state(self, state: StreamingState) -> None:
        with self._lock:
            self._state = state
            LOG.info("Streaming state: %r", state)
            for listener in list(self._listeners):
                self._notify_one(listener, state)

    async def start_streaming(self) -> StreamingState:
        source = self._media_server.source
        if source is None:
            self._set_state(Error("No video selected"))
            return self._state
        device = self._registry.selected()
        if device is None:
            self._set_state(Error("No device selected"))
            return self._state

        with self._lock:
            self._generation += 1
            generation = self._generation
        self._set_state(PREPARING)

        try:
            url = self._media_server.get_video_url()
            if not url:
                raise StreamingError("Media server not ready")
            request = CastRequest(media_url=url, title=source.name, mime_type=source.mime_type)
            if isinstance(device, ControlPointDevice):
                await self._start_control_point(device, request)
            else:
                await self._start_network(device, request)
            result: StreamingState = Streaming(source.name, device.name)
        except StreamingError as e:
            result = Error(e.message)
        except Exception as e:
            LOG.exception("Unexpected streaming failure")
            result = Error(f"Streaming error: {e}")

        with self._lock:
            if generation != self._generation:
                LOG.info("Start on %s finished after a stop; keeping %r", device.name, self._state)
                return self._state
            if isinstance(result, Streaming):
                self._active_device = device
            self._set_state(result)
            return result

    async def _start_control_point(self, device: ControlPointDevice, request: CastRequest) -> None:
        if not await self._control_point.set_source(device, request):
            raise StreamingError("Failed to set media URI")
        if not await self._control_point.play(device):
            raise StreamingError("Failed to start playback")

    async def _start_network(self, device, request: CastRequest) -> None:
        loop = asyncio.get_running_loop()
        dialect = await loop.run_in_executor(None, self._network.play, device, request)
        if dialect is None:
            raise StreamingError("Device doesn't support streaming protocol")
        LOG.info("Streaming to %s via %s", device.display_name, dialect)

    async def stop_streaming(self) -> StreamingState:
        with self._lock:
            self._generation += 1
            device = self._active_device or self._registry.selected()
            self._active_device = None

        if device is not None:
            try:
                if isinstance(device, ControlPointDevice):
                    ok = await self._control_point.stop(device)
                else:
                    loop = asyncio.get_running_loop()
                    ok = await loop.run_in_executor(None, self._network.stop, device)
                if not ok:
                    LOG.info("Stop was not confirmed by %s", device.name)
            except Exception as e:
                LOG.warning("Stop failed on %s: %s", device.name, e)

        self._set_state(STOPPED)
        return self._state

    async def pause_streaming(self) -> StreamingState:
        state = self._state
        device = self._active_device
        if not isinstance(state, Streaming) or device is None:
            return state
        if not device.capabilities.supports_pause:
            LOG.debug("%s does not support pause", device.name)
            return state
        if await self._control_point.pause(device):
            self._set_state(Paused(state.video_name, state.device_name))
        return self._state

    async def resume_streaming(self) -> StreamingState:
        state = self._state
        device = self._active_device
        if not isinstance(state, Paused) or device is None:
            return state
        if not device.capabilities.supports_pause:
            return state
        if await self._control_point.play(device):
            self._set_state(Streaming(state.video_name, state.device_name))
        return self._state

    async def transport_info(self) -> Optional[TransportInfo]:
        device = self._active_device or self._registry.selected()
        if not isinstance(device, ControlPointDevice):
            return None
        return await self._control_point.get_transport_info(device)
