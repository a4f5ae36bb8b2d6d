"""Device discovery: SSDP control points, mDNS announcements and a LAN sweep.

Every source publishes into the shared DeviceRegistry and never raises past
its own boundary; a failing source is logged and the others keep running.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set

import requests
from async_upnp_client.aiohttp import AiohttpRequester
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.const import SsdpSource
from async_upnp_client.ssdp_listener import SsdpListener
from zeroconf import IPVersion, ServiceBrowser, ServiceListener, Zeroconf

from casters.upnp import find_av_transport
from castcore.errors import DiscoveryError
from castcore.models import Confidence, ControlPointDevice, NetworkDevice, ProtocolLabel
from castcore.net import get_local_ip, subnet_hosts, tcp_probe, udp_broadcast
from castcore.registry import DeviceRegistry

LOG = logging.getLogger(__name__)

RAOP_DEFAULT_PORT = 7000


# ---------------------------------------------------------------------------
# Naming and labeling helpers
# ---------------------------------------------------------------------------

def label_for_service_type(service_type: str) -> ProtocolLabel:
    t = (service_type or "").lower()
    if "eshare" in t:
        return ProtocolLabel.VENDOR_ESHARE_LIKE
    if "airplay" in t or "raop" in t:
        return ProtocolLabel.AIRPLAY_LIKE
    if "googlecast" in t:
        return ProtocolLabel.CHROMECAST_LIKE
    return ProtocolLabel.GENERIC_MEDIA_RENDERER


def clean_instance_name(name: str, service_type: str = "") -> str:
    """'AABBCCDDEEFF@Living Room._raop._tcp.local.' -> 'Living Room'."""
    instance = name or ""
    if service_type and instance.endswith("." + service_type):
        instance = instance[: -(len(service_type) + 1)]
    if "@" in instance:
        instance = instance.split("@", 1)[1]
    return instance.strip() or name


def device_for_open_port(host: str, port: int) -> NetworkDevice:
    if port in (7000, 7100):
        return NetworkDevice(f"AirPlay Device ({host})", host, port, ProtocolLabel.AIRPLAY_LIKE)
    if port in (8008, 8009):
        return NetworkDevice(f"Chromecast ({host})", host, port, ProtocolLabel.CHROMECAST_LIKE)
    if port == 8080:
        return NetworkDevice(f"Media Server ({host})", host, port, ProtocolLabel.GENERIC_MEDIA_RENDERER)
    return NetworkDevice(f"Streaming Device ({host}:{port})", host, port, ProtocolLabel.UNCLASSIFIED)


def device_from_service(service_type: str, name: str, host: str, port: int) -> NetworkDevice:
    if "raop" in service_type.lower():
        port = RAOP_DEFAULT_PORT
    return NetworkDevice(
        name=clean_instance_name(name, service_type),
        host=host,
        port=port,
        label=label_for_service_type(service_type),
        confidence=Confidence.HIGH,
    )


# ---------------------------------------------------------------------------
# SSDP control points
# ---------------------------------------------------------------------------

class ControlPointSource:
    """Listens for SSDP alive/byebye and publishes AVTransport renderers."""

    def __init__(self, registry: DeviceRegistry, config: Dict[str, Any], factory: Optional[UpnpFactory] = None):
        self._registry = registry
        self._config = config
        self._factory = factory
        self._listener: Optional[SsdpListener] = None
        self._seen: Set[str] = set()
        self._ignored: Set[str] = set()
        self._tasks: Set[asyncio.Future] = set()

    @property
    def is_running(self) -> bool:
        return self._listener is not None

    async def start(self) -> None:
        """Start listening and send an M-SEARCH.

        Calling it again on a running source forgets every UDN seen so far and
        searches again, so a new discovery session republishes renderers.
        """
        self._seen.clear()
        self._ignored.clear()
        if self._listener is not None:
            await self._listener.async_search()
            LOG.debug("SSDP search re-sent")
            return
        if self._factory is None:
            self._factory = UpnpFactory(AiohttpRequester())
        listener = SsdpListener(
            callback=self._on_ssdp_device,
            search_timeout=int(self._config.get("ssdp_search_timeout", 5)),
        )
        try:
            await listener.async_start()
        except OSError as e:
            raise DiscoveryError(f"SSDP listener could not start: {e}") from e
        self._listener = listener
        await listener.async_search()
        LOG.debug("SSDP search sent")

    async def stop(self) -> None:
        listener = self._listener
        self._listener = None
        if listener is not None:
            await listener.async_stop()

    def _on_ssdp_device(self, ssdp_device, dst, source) -> None:
        udn = ssdp_device.udn
        if source == SsdpSource.ADVERTISEMENT_BYEBYE:
            self._seen.discard(udn)
            self._registry.remove_control_point(udn)
            return
        if udn in self._seen or udn in self._ignored:
            return
        location = ssdp_device.location
        if not location:
            return
        self._seen.add(udn)
        task = asyncio.ensure_future(self.inspect(udn, location))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def inspect(self, udn: str, location: str) -> Optional[ControlPointDevice]:
        """Fetch the description and publish the device if it can play media."""
        try:
            upnp_device = await self._factory.async_create_device(location)
        except Exception as e:
            LOG.debug("Could not read description %s: %s", location, e)
            self._seen.discard(udn)
            return None

        if find_av_transport(upnp_device) is None:
            LOG.debug("Ignoring %s: no AVTransport service", udn)
            self._ignored.add(udn)
            return None

        device = ControlPointDevice(
            id=udn,
            name=upnp_device.friendly_name or udn,
            manufacturer=upnp_device.manufacturer or "Unknown",
            model=upnp_device.model_name or "Unknown Model",
            handle=upnp_device,
        )
        LOG.info("Found renderer %s (%s %s)", device.name, device.manufacturer, device.model)
        self._registry.publish_control_point(device)
        return device


# ---------------------------------------------------------------------------
# mDNS
# ---------------------------------------------------------------------------

class MdnsSource(ServiceListener):
    """zeroconf browser for the AirPlay, EShare, Cast and renderer service types.

    Callbacks arrive on the zeroconf thread; resolution happens there too, and
    the raop port probe goes to a small thread pool.
    """

    def __init__(self, registry: DeviceRegistry, config: Dict[str, Any],
                 session: Optional[requests.Session] = None):
        self._registry = registry
        self._config = config
        self._session = session or requests.Session()
        self._zc: Optional[Zeroconf] = None
        self._browser: Optional[ServiceBrowser] = None
        self._probe_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="mdns-probe")

    @property
    def is_running(self) -> bool:
        return self._zc is not None

    def start(self) -> None:
        if self._zc is not None:
            return
        types = list(self._config.get("mdns_service_types") or [])
        try:
            self._zc = Zeroconf(ip_version=IPVersion.V4Only)
            self._browser = ServiceBrowser(self._zc, types, listener=self)
        except OSError as e:
            self.stop()
            raise DiscoveryError(f"mDNS browser could not start: {e}") from e
        LOG.debug("Browsing mDNS for %s", ", ".join(types))

    def stop(self) -> None:
        browser, zc = self._browser, self._zc
        self._browser = None
        self._zc = None
        if browser is not None:
            browser.cancel()
        if zc is not None:
            zc.close()

    def close(self) -> None:
        self.stop()
        self._probe_pool.shutdown(wait=False)

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._resolve(zc, type_, name)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self._resolve(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        LOG.debug("mDNS service gone: %s", name)

    def _resolve(self, zc: Zeroconf, type_: str, name: str) -> None:
        try:
            info = zc.get_service_info(type_, name, timeout=3000)
        except Exception as e:
            LOG.debug("mDNS resolve failed for %s: %s", name, e)
            return
        if info is None:
            return
        addresses = info.parsed_addresses(IPVersion.V4Only)
        if not addresses or not info.port:
            return
        self.publish_service(type_, name, addresses[0], info.port)

    def publish_service(self, type_: str, name: str, host: str, port: int) -> NetworkDevice:
        device = device_from_service(type_, name, host, port)
        LOG.info("mDNS: %s at %s:%s", device.display_name, host, device.port)
        self._registry.publish_network(device)
        if "raop" in type_.lower():
            self._probe_pool.submit(self.correct_port, device)
        return device

    def correct_port(self, device: NetworkDevice) -> Optional[int]:
        """Find the port that actually answers /server-info and republish with it."""
        ports = self._config.get("mdns_port_probe_ports") or []
        timeout = float(self._config.get("mdns_port_probe_timeout", 2.0))
        for port in ports:
            url = f"http://{device.host}:{port}/server-info"
            try:
                r = self._session.get(url, timeout=timeout)
            except requests.RequestException as e:
                LOG.debug("Port probe %s failed: %s", url, e)
                continue
            status = r.status_code
            r.close()
            if 200 <= status < 300:
                if port != device.port:
                    LOG.info("%s answers on port %s", device.name, port)
                    self._registry.publish_network(replace(device, port=port), authoritative=True)
                return port
        return None


# ---------------------------------------------------------------------------
# Subnet sweep and vendor UDP broadcast
# ---------------------------------------------------------------------------

class NetworkSweepSource:
    def __init__(self, registry: DeviceRegistry, config: Dict[str, Any], local_ip: Optional[str] = None):
        self._registry = registry
        self._config = config
        self._local_ip = local_ip

    async def run(self) -> None:
        await asyncio.gather(self.sweep(), self.vendor_broadcast())

    async def sweep(self, hosts: Optional[List[str]] = None) -> None:
        if hosts is None:
            hosts = subnet_hosts(self._local_ip or get_local_ip())
        semaphore = asyncio.Semaphore(max(1, int(self._config.get("sweep_max_concurrency", 256))))
        LOG.debug("Sweeping %d hosts", len(hosts))
        await asyncio.gather(*(self._sweep_host(host, semaphore) for host in hosts))
        LOG.debug("Sweep finished")

    async def _sweep_host(self, host: str, semaphore: asyncio.Semaphore) -> None:
        ports = [int(p) for p in self._config.get("sweep_ports") or []]
        timeout_ms = int(self._config.get("sweep_timeout_ms", 100))

        async def probe(port: int) -> bool:
            async with semaphore:
                return await tcp_probe(host, port, timeout_ms)

        results = await asyncio.gather(*(probe(p) for p in ports))
        for port, is_open in zip(ports, results):
            if is_open:
                self._registry.publish_network(device_for_open_port(host, port))

    async def vendor_broadcast(self) -> None:
        ports = [int(p) for p in self._config.get("vendor_discovery_ports") or []]
        payload = str(self._config.get("vendor_discovery_payload", "ESHARE_DISCOVER")).encode("utf-8")
        timeout_ms = int(self._config.get("vendor_discovery_timeout_ms", 3000))
        loop = asyncio.get_running_loop()
        replies = await asyncio.gather(
            *(loop.run_in_executor(None, udp_broadcast, payload, port, timeout_ms) for port in ports)
        )
        for port, responders in zip(ports, replies):
            for host, _ in responders:
                LOG.info("EShare reply from %s on port %s", host, port)
                self._registry.publish_network(NetworkDevice(
                    "EShare Device", host, port, ProtocolLabel.VENDOR_ESHARE_LIKE, Confidence.HIGH,
                ))


# ---------------------------------------------------------------------------
# Discovery session
# ---------------------------------------------------------------------------

class DiscoveryManager:
    """Runs a discovery session across all sources on the engine loop."""

    def __init__(self, registry: DeviceRegistry, config: Dict[str, Any],
                 control_point: Optional[ControlPointSource] = None,
                 mdns: Optional[MdnsSource] = None,
                 sweep: Optional[NetworkSweepSource] = None):
        self._registry = registry
        self._config = config
        self.control_point = control_point or ControlPointSource(registry, config)
        self.mdns = mdns or MdnsSource(registry, config)
        self.sweep = sweep or NetworkSweepSource(registry, config)
        self._discovering = False
        self._window: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Future] = set()

    @property
    def is_discovering(self) -> bool:
        return self._discovering

    async def start_discovery(self) -> None:
        if self._discovering:
            LOG.info("Discovery already running")
            return
        loop = asyncio.get_running_loop()
        self._registry.clear()
        self._discovering = True
        window = float(self._config.get("discovery_window_seconds", 15))
        self._window = loop.call_later(window, self._end_window)
        LOG.info("Discovery started (%ss window)", window)

        # Sources left running by an expired window are restarted so cached
        # sightings are reported again into the cleared registry.
        await self._stop_sources()
        self._spawn(self._guard("SSDP", self.control_point.start()))
        self._spawn(self._guard("mDNS", loop.run_in_executor(None, self.mdns.start)))
        self._spawn(self._guard("sweep", self.sweep.run()))

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, name: str, awaitable) -> None:
        try:
            await awaitable
        except DiscoveryError as e:
            LOG.warning("%s discovery unavailable: %s", name, e)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOG.exception("%s discovery failed", name)

    def _end_window(self) -> None:
        self._window = None
        if self._discovering:
            self._discovering = False
            LOG.info("Discovery window closed")

    async def stop_discovery(self) -> None:
        self._discovering = False
        if self._window is not None:
            self._window.cancel()
            self._window = None
        await self._stop_sources()
        LOG.info("Discovery stopped")

    async def _stop_sources(self) -> None:
        try:
            await self.control_point.stop()
        except Exception as e:
            LOG.warning("SSDP listener stop failed: %s", e)
        await asyncio.get_running_loop().run_in_executor(None, self.mdns.stop)

    async def refresh(self) -> None:
        await self.stop_discovery()
        await self.start_discovery()

    async def shutdown(self) -> None:
        await self.stop_discovery()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.mdns.close()
