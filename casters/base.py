import abc
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import requests

from castcore.errors import AdapterAttemptFailure
from castcore.models import NetworkDevice

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CastRequest:
    """What to play: a URL the device can fetch, plus display metadata."""
    media_url: str
    title: str
    mime_type: str = "video/mp4"


class HttpDialect(abc.ABC):
    """One HTTP wire shape for starting playback on a network device.

    Dialects are stateless; every attempt is an independent POST with its own
    timeout. A dialect reports success only on an HTTP 2xx.
    """

    name = "http"

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    @abc.abstractmethod
    def applies_to(self, device: NetworkDevice) -> bool:
        pass

    @abc.abstractmethod
    def play(self, device: NetworkDevice, request: CastRequest) -> bool:
        pass

    def _post(self, url: str, body: bytes, headers: Dict[str, str], timeout: float) -> int:
        """POST and return the status code; anything but 2xx raises."""
        try:
            r = self.session.post(url, data=body, headers=headers, timeout=timeout, allow_redirects=False)
        except requests.RequestException as e:
            raise AdapterAttemptFailure(f"POST {url} failed: {e}") from e
        try:
            status = r.status_code
        finally:
            r.close()
        if not 200 <= status < 300:
            raise AdapterAttemptFailure(f"POST {url} returned {status}", status_code=status)
        return status

    def _attempt(self, url: str, body: bytes, headers: Dict[str, str], timeout: float) -> bool:
        try:
            status = self._post(url, body, headers, timeout)
        except AdapterAttemptFailure as e:
            LOG.debug("%s: %s", self.name, e)
            return False
        LOG.info("%s accepted by %s (%s)", self.name, url, status)
        return True


def unique_ports(first: int, others: Iterable[int]) -> List[int]:
    ports = [int(first)]
    for p in others or []:
        p = int(p)
        if p not in ports:
            ports.append(p)
    return ports
