import json
import logging
import os
import sys

LOG = logging.getLogger(__name__)

# When frozen use the exe directory; otherwise use the directory of the main
# script so config.json stays alongside the app regardless of where the user
# launches it from.
if getattr(sys, 'frozen', False):
    APP_DIR = os.path.dirname(sys.executable)
else:
    APP_DIR = os.path.dirname(os.path.abspath(sys.argv[0]))

CONFIG_FILE = os.path.join(APP_DIR, "config.json")

DEFAULT_CONFIG = {
    "media_server_port": 8080,
    "media_server_port_attempts": 2,  # default port, then the next one
    "discovery_window_seconds": 15,
    "sweep_ports": [7000, 7100, 8008, 8009, 8080, 8443, 9000, 49152, 49153, 49154],
    "sweep_timeout_ms": 100,
    "sweep_max_concurrency": 256,  # simultaneous TCP connects during a sweep
    "vendor_discovery_ports": [48689, 8121, 2425],
    "vendor_discovery_payload": "ESHARE_DISCOVER",
    "vendor_discovery_timeout_ms": 3000,
    "ssdp_search_timeout": 5,  # seconds (MX)
    "mdns_service_types": [
        "_airplay._tcp.local.",
        "_raop._tcp.local.",
        "_eshare._tcp.local.",
        "_googlecast._tcp.local.",
        "_mediarenderer._tcp.local.",
    ],
    "mdns_port_probe_ports": [7000, 7100, 47000, 5000],
    "mdns_port_probe_timeout": 2.0,
    "push_to_play_fallback_ports": [7000, 7100],
    "push_to_play_timeout": 10.0,
    "vendor_timeout": 5.0,
    "app_launch_timeout": 5.0,
    "generic_timeout": 3.0,
    "stop_timeout": 5.0,
    "log_level": "INFO",
}


class ConfigManager:
    def __init__(self, path: str = None):
        self.path = path or CONFIG_FILE
        self.config = self.load_config()

    def load_config(self):
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r') as f:
                    loaded = json.load(f)
                    return self._apply_defaults(loaded)
            except Exception as e:
                LOG.error("Error loading config %s: %s", self.path, e)
                return self._apply_defaults({})
        return self._apply_defaults({})

    def _apply_defaults(self, cfg: dict) -> dict:
        """
        Merge any missing default keys into an existing config without clobbering
        user settings. Ensures options added in newer versions are present.
        """
        merged = cfg if isinstance(cfg, dict) else {}
        for key, val in DEFAULT_CONFIG.items():
            merged.setdefault(key, list(val) if isinstance(val, list) else val)
        return merged

    def save_config(self):
        try:
            with open(self.path, 'w') as f:
                json.dump(self.config, f, indent=4)
        except Exception as e:
            LOG.error("Error saving config %s: %s", self.path, e)

    def get(self, key, default=None):
        return self.config.get(key, default)

    def set(self, key, value):
        self.config[key] = value
        self.save_config()
