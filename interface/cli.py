"""
Command Line Interface for Upstox Bridge.

This module provides a CLI for running the bridge server, validating
configuration files and making one-off option chain lookups.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Optional

import click
from dotenv import load_dotenv

from bridge.exceptions import UpstreamError
from bridge.upstox import UpstoxBridge
from config.loader import ConfigLoader
from relay.server import RelayServer
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class BridgeCLI:
    """
    Command Line Interface for the Upstox Bridge.

    This class provides methods for handling CLI commands
    and managing the bridge server.
    """

    def __init__(self):
        """Initialize the CLI with default settings."""
        self.config = None
        self.config_path = None
        self.server = None
        self.loader = ConfigLoader()

    def load_config(self, config_path: str) -> bool:
        """
        Load configuration from a YAML file.

        A missing file falls back to the built-in defaults.

        Args:
            config_path: Path to the configuration file

        Returns:
            True if configuration was loaded successfully, False otherwise
        """
        config_file = Path(config_path)
        if not config_file.exists():
            logger.warning(f"Configuration file not found: {config_path}, using defaults")
            self.config = self.loader.default_config()
            return True

        self.config = self.loader.load_config(str(config_file.resolve()))
        if self.config is None:
            return False

        self.config_path = config_path
        return True

    def start_server(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """
        Start the bridge server.

        Args:
            host: Override for server.host
            port: Override for server.port

        Returns:
            True if the server was started, False otherwise
        """
        if self.server is not None:
            logger.warning("Bridge server is already running")
            return False

        if not self.config:
            logger.error("No configuration loaded")
            return False

        if host:
            self.config['server']['host'] = host
        if port is not None:
            self.config['server']['port'] = port

        try:
            self.server = RelayServer(self.config)
            self.server.start()
            return True
        except OSError as e:
            logger.error(f"Failed to start bridge server: {e}")
            self.server = None
            return False

    def stop_server(self) -> None:
        """Stop the bridge server if it is running."""
        if self.server is not None:
            self.server.stop()
            self.server = None

    def validate_config(self, config_path: str) -> bool:
        """
        Validate a configuration file.

        Args:
            config_path: Path to the configuration file

        Returns:
            True if configuration is valid, False otherwise
        """
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            return False

        return self.loader.load_config(str(config_file.resolve())) is not None

    def fetch_option_chain(self, instrument_key: str, token: Optional[str] = None) -> Any:
        """
        Fetch option contracts once, without opening a stream.

        Args:
            instrument_key: Underlying instrument key
            token: Access token, defaults to the configured one

        Returns:
            Contract data from Upstox

        Raises:
            UpstreamError: If the lookup fails
        """
        bridge = UpstoxBridge(self.config)
        try:
            bridge.authenticate(token or self.config['upstox'].get('access_token'))
            return bridge.fetch_option_chain(instrument_key)
        finally:
            bridge.close()


# Click CLI setup
@click.group()
@click.option('--config', '-c', default='config/default_config.yaml', help='Configuration file path')
@click.option('--log-level', '-l', default=None, help='Logging level (DEBUG, INFO, WARNING, ERROR)')
@click.pass_context
def cli(ctx, config, log_level):
    """Upstox Bridge Command Line Interface."""
    load_dotenv()

    # Initialize CLI instance
    ctx.obj = BridgeCLI()

    # Validation reads its own file argument
    if ctx.invoked_subcommand == 'validate':
        setup_logging({'level': log_level or 'INFO', 'file': None})
        return

    # Load configuration
    if not ctx.obj.load_config(config):
        click.echo(f"Error loading configuration from {config}")
        ctx.exit(1)

    logging_config = dict(ctx.obj.config.get('logging', {}))
    if log_level:
        logging_config['level'] = log_level
    setup_logging(logging_config)


@cli.command()
@click.option('--host', default=None, help='Interface to listen on')
@click.option('--port', '-p', type=int, default=None, help='Port to listen on')
@click.pass_obj
def serve(cli_obj, host, port):
    """Run the bridge server until interrupted."""
    if not cli_obj.start_server(host, port):
        click.echo("❌ Failed to start bridge server")
        raise SystemExit(1)

    click.echo(f"✅ Bridge server running on ws://{cli_obj.server.host}:{cli_obj.server.port}")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("Stopping bridge server...")
    finally:
        cli_obj.stop_server()


@cli.command()
@click.argument('config-path')
@click.pass_obj
def validate(cli_obj, config_path):
    """Validate a configuration file."""
    if cli_obj.validate_config(config_path):
        click.echo(f"✅ Configuration is valid: {config_path}")
    else:
        click.echo(f"❌ Configuration has errors: {config_path}")
        raise SystemExit(1)


@cli.command(name='option-chain')
@click.argument('instrument-key')
@click.option('--token', '-t', default=None, help='Upstox access token (defaults to UPSTOX_ACCESS_TOKEN)')
@click.pass_obj
def option_chain(cli_obj, instrument_key, token):
    """Fetch option contracts for INSTRUMENT_KEY and print them as JSON."""
    try:
        data = cli_obj.fetch_option_chain(instrument_key, token)
    except UpstreamError as e:
        click.echo(f"❌ Upstox API Error: {e.message}")
        raise SystemExit(1)

    click.echo(json.dumps(data, indent=2, default=str))


if __name__ == '__main__':
    # This allows the CLI to be run directly (python -m interface.cli)
    cli()
