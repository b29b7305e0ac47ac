"""
Configuration Loader for Upstox Bridge.

Handles loading and validating configuration files.
"""

import copy
import logging
import os
import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'server': {
        'host': 'localhost',
        'port': 4000
    },
    'upstox': {
        'base_url': 'https://api.upstox.com/v2',
        'access_token': '',
        'request_timeout': 10
    },
    'stream': {
        'instrument_keys': ['NSE_INDEX|Nifty 50', 'NSE_INDEX|Nifty Bank'],
        'mode': 'full',
        'connect_timeout': 15
    },
    'quotes': {
        'live': False
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/bridge.log',
        'max_size_mb': 10,
        'backup_count': 5
    }
}

STREAM_MODES = ('ltpc', 'option_greeks', 'full', 'full_d30')


class ConfigLoader:
    """
    Configuration loader and validator.

    Loads YAML configuration files, applies environment variable
    substitutions and fills missing settings from DEFAULT_CONFIG.
    """

    def __init__(self, config_dir: str = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = config_dir or Path(__file__).parent

    def load_config(self, config_file: str) -> Optional[Dict[str, Any]]:
        """
        Load configuration from YAML file.

        Args:
            config_file: Configuration file name in config directory, or an absolute path

        Returns:
            Configuration dictionary or None if loading failed
        """
        # Build config file path
        if os.path.isabs(config_file):
            config_path = config_file
        else:
            config_path = os.path.join(self.config_dir, config_file)

        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            if not isinstance(config_data, dict):
                logger.error(f"Invalid configuration: {config_path} must contain a mapping")
                return None

            # Apply environment variable substitutions
            config_data = self._substitute_env_vars(config_data)
            config_data = self._apply_defaults(config_data)

            # Validate configuration
            is_valid, errors = self.validate_config(config_data)
            if not is_valid:
                logger.error(f"Invalid configuration: {', '.join(errors)}")
                return None

            logger.info(f"Loaded configuration from {config_path}")
            return config_data

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            return None

    def default_config(self) -> Dict[str, Any]:
        """Return the built-in configuration with environment substitutions applied."""
        config_data = copy.deepcopy(DEFAULT_CONFIG)
        config_data['upstox']['access_token'] = os.environ.get('UPSTOX_ACCESS_TOKEN', '')
        return config_data

    def _substitute_env_vars(self, config_data: Any) -> Any:
        """
        Substitute environment variables in configuration values.

        Environment variables are referenced as ${ENV_VAR_NAME}.

        Args:
            config_data: Configuration data

        Returns:
            Configuration data with environment variables substituted
        """
        if isinstance(config_data, dict):
            return {k: self._substitute_env_vars(v) for k, v in config_data.items()}
        elif isinstance(config_data, list):
            return [self._substitute_env_vars(item) for item in config_data]
        elif isinstance(config_data, str) and config_data.startswith("${") and config_data.endswith("}"):
            # Extract environment variable name
            env_var = config_data[2:-1]
            # Get value with a default of empty string
            return os.environ.get(env_var, "")
        else:
            return config_data

    def _apply_defaults(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for section, values in config_data.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def validate_config(self, config_data: Dict[str, Any]) -> tuple:
        """
        Validate configuration data.

        Args:
            config_data: Configuration data

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors: List[str] = []

        # Minimum required sections
        required_sections = ['server', 'upstox', 'stream']
        for section in required_sections:
            if not isinstance(config_data.get(section), dict):
                errors.append(f"Missing required section: {section}")

        server = config_data.get('server')
        if isinstance(server, dict):
            port = server.get('port')
            if not isinstance(port, int) or isinstance(port, bool) or not 0 <= port <= 65535:
                errors.append("server.port must be an integer between 0 and 65535")
            if not server.get('host'):
                errors.append("Missing host in server section")

        upstox = config_data.get('upstox')
        if isinstance(upstox, dict):
            if not upstox.get('base_url'):
                errors.append("Missing base_url in upstox section")
            if not self._is_positive_number(upstox.get('request_timeout')):
                errors.append("upstox.request_timeout must be a positive number")

        stream = config_data.get('stream')
        if isinstance(stream, dict):
            keys = stream.get('instrument_keys')
            if not isinstance(keys, list) or len(keys) == 0:
                errors.append("stream.instrument_keys must be a non-empty list")
            else:
                for i, key in enumerate(keys):
                    if not isinstance(key, str) or '|' not in key:
                        errors.append(f"Instrument key at index {i} must look like EXCHANGE|SYMBOL")
            if stream.get('mode') not in STREAM_MODES:
                errors.append(f"stream.mode must be one of: {', '.join(STREAM_MODES)}")
            if not self._is_positive_number(stream.get('connect_timeout')):
                errors.append("stream.connect_timeout must be a positive number")

        return len(errors) == 0, errors

    @staticmethod
    def _is_positive_number(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
