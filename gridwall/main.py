"""
Gridwall main entry point.

Runs the sync server in a single process on one asyncio event loop.

Usage:
    python -m gridwall.main [--config path/to/config.json] [--port 8080]
"""

import asyncio
import argparse
import signal
import sys

from gridwall.config import ConfigError, loadConfig
from gridwall.logging import getLogger, configureLogging
from gridwall.server.server import WallServer


def parseArgs(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Gridwall - collaborative video wall control server')
    parser.add_argument('--config', default=None, help='Path to config file')
    parser.add_argument('--host', default=None, help='Listen address (overrides server.host)')
    parser.add_argument('--port', type=int, default=None, help='Listen port (overrides server.port)')
    parser.add_argument('--log-level', default=None, help='Log level (overrides log.level)')
    return parser.parse_args(argv)


def applyArgs(config: dict, args: argparse.Namespace) -> dict:
    if args.host:
        config['server']['host'] = args.host
    if args.port:
        config['server']['port'] = args.port
    if args.log_level:
        config['log']['level'] = args.log_level
    return config


async def runServer(config: dict):
    log = getLogger('gridwall.main')
    server = WallServer(config)

    stopEvent = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopEvent.set)
        except NotImplementedError:
            pass  # Windows

    try:
        await server.start()
        await stopEvent.wait()
        log.info("[Main] Shutdown signal received")
    finally:
        await server.stop()


def main(argv=None):
    """Main entry point"""
    args = parseArgs(argv)

    try:
        config = applyArgs(loadConfig(args.config), args)
    except ConfigError as e:
        print(f"gridwall: {e}", file=sys.stderr)
        sys.exit(1)

    logConfig = config['log']
    configureLogging(
        logDir=logConfig.get('dir'),
        maxBytes=logConfig.get('maxBytes', 10_000_000),
        backupCount=logConfig.get('backupCount', 5),
        console=logConfig.get('console', True),
        level=logConfig.get('level', 'INFO'),
        utc=logConfig.get('utc', False)
    )
    log = getLogger('gridwall.main')
    log.info("=" * 60)
    log.info("Gridwall - collaborative video wall control")
    log.info("=" * 60)
    log.info(f"Config: {args.config or '(defaults)'}")

    try:
        asyncio.run(runServer(config))
    except KeyboardInterrupt:
        log.info("[Main] Interrupted")
    except OSError as e:
        log.error(f"[Main] Failed to start: {e}")
        sys.exit(1)

    log.info("[Main] Gridwall stopped")


if __name__ == '__main__':
    main()
