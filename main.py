#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Upstox Bridge
=============

Relays the Upstox market data feed to a browser over a WebSocket and
proxies option chain and quote lookups.

This is the main entry point to the application.
"""

import sys
import logging
import signal
import time
from pathlib import Path
import argparse

from dotenv import load_dotenv

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

# Import internal modules
from config.loader import ConfigLoader
from utils.logger import setup_logging
from relay.server import RelayServer

# Global flags
running = True


def signal_handler(sig, frame):
    """Handle interrupt signals."""
    global running
    logging.info("Shutdown signal received, stopping bridge...")
    running = False


def main():
    """Main entry point for the application."""
    # Parse command line arguments
    parser = argparse.ArgumentParser(description='Upstox Bridge')
    parser.add_argument('--config', '-c', default='default_config.yaml',
                        help='Configuration file name within config directory')
    parser.add_argument('--port', '-p', type=int, default=None,
                        help='Port to listen on (overrides config)')
    parser.add_argument('--log-level', '-d', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (overrides config)')
    args = parser.parse_args()

    load_dotenv()

    # Console logging until the config says otherwise
    setup_logging({'level': args.log_level or 'INFO', 'file': None})
    logger = logging.getLogger(__name__)

    # Load configuration
    config = ConfigLoader().load_config(args.config)
    if not config:
        logger.error(f"Failed to load configuration from {args.config}")
        return 1

    logging_config = dict(config.get('logging', {}))
    if args.log_level:
        logging_config['level'] = args.log_level
    setup_logging(logging_config)

    if args.port is not None:
        config['server']['port'] = args.port

    server = None
    try:
        # Register signal handlers
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info(f"Starting Upstox Bridge (Config: {args.config})")
        server = RelayServer(config)
        server.start()

        # Run until interrupted
        while running:
            time.sleep(1)

    except Exception as e:
        logger.error(f"Error in main application: {e}", exc_info=True)
        return 1

    finally:
        # Ensure clean shutdown
        if server:
            server.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
