from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Dict

import yaml

from pairchat.server.runtime import ServerRuntime

log = logging.getLogger("pairchat.cmd.server")


def load_config(path: Path) -> Dict[str, Any]:
    config = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(config, dict):
        raise SystemExit(f"{path}: config must be a mapping")
    return config


async def _run(config: Dict[str, Any]) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="pairchat realtime + HTTP server")
    parser.add_argument("--config", required=True, help="Path to server YAML config")
    parser.add_argument("--log-level", default=None, help="Override log_level from the config")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config))
    if args.log_level:
        config["log_level"] = args.log_level
    level = str(config.get("log_level", "INFO")).upper()

    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
