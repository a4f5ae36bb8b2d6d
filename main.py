import argparse
import logging
import os
import sys
import time


def _parse_args(argv):
    parser = argparse.ArgumentParser(description="Discover media renderers on the LAN and cast a local video.")
    parser.add_argument("video", nargs="?", help="video file to cast")
    parser.add_argument("--config", help="path to config.json")
    parser.add_argument("--seconds", type=float, default=None, help="how long to discover before casting")
    parser.add_argument("--list", action="store_true", help="only list discovered devices")
    parser.add_argument("--device", help="cast to the first device whose name contains this text")
    parser.add_argument("--port", type=int, help="media server port")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def _print_devices(snapshot) -> None:
    devices = snapshot.all_devices
    if not devices:
        print("No devices found.")
        return
    for i, d in enumerate(devices, 1):
        where = getattr(d, "host", None)
        if where:
            where = f"{d.host}:{d.port}"
        else:
            where = f"{d.manufacturer} {d.model}"
        print(f"{i:2d}. {d.display_name}  {where}")


def main(argv=None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    from castcore.config import ConfigManager
    from castcore.engine import CastEngine
    from castcore.models import Error, MediaSource

    config = ConfigManager(args.config)
    level = logging.DEBUG if args.verbose else getattr(logging, str(config.get("log_level", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = dict(config.config)
    if args.port is not None:
        settings["media_server_port"] = args.port
    seconds = args.seconds if args.seconds is not None else float(settings.get("discovery_window_seconds", 15))

    if args.video and not os.path.isfile(args.video):
        print(f"No such file: {args.video}", file=sys.stderr)
        return 2

    engine = CastEngine(settings)
    engine.start()
    try:
        engine.start_discovery()
        print(f"Discovering for {seconds:g}s...")
        time.sleep(seconds)
        engine.stop_discovery()
        snapshot = engine.devices()
        _print_devices(snapshot)

        if args.list or not args.video:
            return 0

        candidates = snapshot.all_devices
        if args.device:
            needle = args.device.lower()
            candidates = [d for d in candidates if needle in d.name.lower()]
        if not candidates:
            print("No matching device.", file=sys.stderr)
            return 1
        device = candidates[0]
        engine.select_device(device)
        engine.set_media_source(MediaSource.from_file(args.video))
        print(f"Casting {os.path.basename(args.video)} to {device.display_name}")

        state = engine.start_streaming()
        if isinstance(state, Error):
            print(f"Error: {state.message}", file=sys.stderr)
            return 1
        print("Streaming. Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        engine.stop_streaming()
        return 0
    finally:
        engine.stop()


if __name__ == "__main__":
    sys.exit(main())
