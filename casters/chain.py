import logging
from typing import Any, Dict, Optional

import requests

from casters.app_launch import AppLaunchCaster
from casters.base import CastRequest
from casters.generic import GenericPathCaster
from casters.push_to_play import PushToPlayCaster
from casters.vendor import VendorCaster
from castcore.models import NetworkDevice

LOG = logging.getLogger(__name__)


class NetworkCasterChain:
    """Tries every HTTP dialect against a network device, in a fixed order.

    Push-to-play always runs first, then at most one label or port specific
    dialect (vendor before app-launch), and finally the generic control-path
    sweep. The first 2xx wins.
    """

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.push_to_play = PushToPlayCaster(config, self.session)
        self.specialized = [
            VendorCaster(config, self.session),
            AppLaunchCaster(config, self.session),
        ]
        self.generic = GenericPathCaster(config, self.session)

    def dialects_for(self, device: NetworkDevice):
        chain = [self.push_to_play]
        specialized = next((d for d in self.specialized if d.applies_to(device)), None)
        if specialized is not None:
            chain.append(specialized)
        chain.append(self.generic)
        return chain

    def play(self, device: NetworkDevice, request: CastRequest) -> Optional[str]:
        """Return the name of the dialect the device accepted, or None."""
        for dialect in self.dialects_for(device):
            LOG.debug("Trying %s on %s", dialect.name, device.display_name)
            if dialect.play(device, request):
                return dialect.name
        LOG.warning("No streaming dialect accepted by %s", device.display_name)
        return None

    def stop(self, device: NetworkDevice) -> bool:
        return self.push_to_play.stop(device)

    def close(self) -> None:
        self.session.close()
