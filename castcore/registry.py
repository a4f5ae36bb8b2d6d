"""Single consistent view of every device the discovery sources have found.

All mutations go through one lock and end by publishing a new immutable
``RegistrySnapshot`` to subscribers, so a reader never sees a half-updated
list no matter which thread (zeroconf, asyncio loop, executor) published.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple, Union

from castcore.models import Confidence, ControlPointDevice, NetworkDevice

LOG = logging.getLogger(__name__)

Device = Union[ControlPointDevice, NetworkDevice]


@dataclass(frozen=True)
class RegistrySnapshot:
    control_point_devices: Tuple[ControlPointDevice, ...] = ()
    network_devices: Tuple[NetworkDevice, ...] = ()

    @property
    def selected(self) -> Optional[Device]:
        for d in self.control_point_devices:
            if d.is_selected:
                return d
        for d in self.network_devices:
            if d.is_selected:
                return d
        return None

    @property
    def all_devices(self) -> List[Device]:
        return list(self.control_point_devices) + list(self.network_devices)


Listener = Callable[[RegistrySnapshot], None]


class DeviceRegistry:
    def __init__(self):
        self._lock = threading.RLock()
        self._snapshot = RegistrySnapshot()
        self._listeners: List[Listener] = []

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def selected(self) -> Optional[Device]:
        return self._snapshot.selected

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; it immediately receives the current snapshot.

        Listeners are called under the registry lock so they observe snapshots
        in mutation order. They must not block.
        """
        with self._lock:
            self._listeners.append(listener)
            self._notify_one(listener, self._snapshot)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    # -- mutations ---------------------------------------------------------

    def publish_control_point(self, device: ControlPointDevice) -> bool:
        with self._lock:
            current = self._snapshot.control_point_devices
            if any(d.id == device.id for d in current):
                return False
            self._set(replace(self._snapshot, control_point_devices=current + (device.with_selected(False),)))
        LOG.info("UPnP device added: %s", device.name)
        return True

    def remove_control_point(self, device_id: str) -> bool:
        with self._lock:
            current = self._snapshot.control_point_devices
            kept = tuple(d for d in current if d.id != device_id)
            if len(kept) == len(current):
                return False
            self._set(replace(self._snapshot, control_point_devices=kept))
        LOG.info("UPnP device removed: %s", device_id)
        return True

    def publish_network(self, device: NetworkDevice, authoritative: bool = False) -> bool:
        """Merge a network device; returns True if the registry changed.

        One entry per host. A HIGH confidence entry replaces a LOW one for the
        same host; anything else keeps the existing entry. An authoritative
        publish corrects the port of the entry it was derived from (same host
        and name) instead.
        """
        with self._lock:
            current = list(self._snapshot.network_devices)
            index = next((i for i, d in enumerate(current) if d.host == device.host), -1)

            if index < 0:
                current.append(device.with_selected(False))
                self._set(replace(self._snapshot, network_devices=tuple(current)))
                LOG.info("Network device added: %s at %s", device.name, device.key)
                return True

            existing = current[index]
            if authoritative and existing.name == device.name and existing.port != device.port:
                current[index] = replace(existing, port=device.port, label=device.label,
                                         confidence=device.confidence)
                self._set(replace(self._snapshot, network_devices=tuple(current)))
                LOG.info("Network device port corrected: %s -> %s", existing.key, device.key)
                return True

            if device.confidence is Confidence.HIGH and existing.confidence is Confidence.LOW:
                current[index] = device.with_selected(existing.is_selected)
                self._set(replace(self._snapshot, network_devices=tuple(current)))
                LOG.info("Network device updated (announcement wins): %s at %s", device.name, device.key)
                return True

            LOG.debug("Keeping %s, ignoring %s", existing.key, device.key)
            return False

    def select(self, device: Device) -> bool:
        """Select the entry matching device's identity and clear all others."""
        with self._lock:
            snap = self._snapshot
            key = device.key
            is_cp = isinstance(device, ControlPointDevice)
            found = any(d.key == key for d in (snap.control_point_devices if is_cp else snap.network_devices))
            if not found:
                LOG.warning("Cannot select unknown device %s", key)
                return False

            cps = tuple(d.with_selected(is_cp and d.key == key) for d in snap.control_point_devices)
            nets = tuple(d.with_selected((not is_cp) and d.key == key) for d in snap.network_devices)
            new = RegistrySnapshot(control_point_devices=cps, network_devices=nets)
            if new != snap:
                self._set(new)
        LOG.info("Device selected: %s", device.name)
        return True

    def clear(self) -> None:
        with self._lock:
            self._set(RegistrySnapshot())

    # -- internals -----------------------------------------------------------

    def _set(self, snap: RegistrySnapshot) -> None:
        self._snapshot = snap
        for listener in list(self._listeners):
            self._notify_one(listener, snap)

    def _notify_one(self, listener: Listener, snap: RegistrySnapshot) -> None:
        try:
            listener(snap)
        except Exception as e:
            LOG.warning("Registry listener failed: %s", e)
