"""
Configuration loader for the Modern Forms fan bridge
Loads and validates configuration from YAML files
"""

import yaml
import logging
from typing import Dict, Any, List
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

DEFAULT_OUI_PREFIX = "C8:93:46"

def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError("Configuration root must be a mapping")

        # Apply defaults first so validation sees a complete tree
        config = _apply_defaults(config)
        _validate_config(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

def _validate_config(config: Dict) -> None:
    """Validate field types and fan entries"""
    if not isinstance(config['auto_discover'], bool):
        raise ValueError("auto_discover must be true or false")

    interval = config['polling_interval_seconds']
    if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
        raise ValueError("polling_interval_seconds must be a positive number")

    if not isinstance(config['fans'], list):
        raise ValueError("fans must be a list")

    for index, fan in enumerate(config['fans']):
        if not isinstance(fan, dict) or not fan.get('ip'):
            raise ValueError(f"fans[{index}] requires a non-empty ip")

    mqtt_url = config.get('mqtt_url')
    if mqtt_url is not None and not isinstance(mqtt_url, str):
        raise ValueError("mqtt_url must be a string")

    debounce = config['sync']['push_debounce_ms']
    if not isinstance(debounce, (int, float)) or debounce < 0:
        raise ValueError("sync.push_debounce_ms must be zero or positive")

def _normalize_fans(fans: List[Dict]) -> List[Dict]:
    """Normalize fan entries; the legacy 'switch' key maps to switch_id"""
    normalized = []
    for fan in fans:
        if not isinstance(fan, dict):
            normalized.append(fan)
            continue
        entry = dict(fan)
        if 'switch' in entry and 'switch_id' not in entry:
            entry['switch_id'] = entry.pop('switch')
        entry.setdefault('light', False)
        entry.setdefault('switch_id', None)
        normalized.append(entry)
    return normalized

def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""

    # Top level defaults
    top_defaults = {
        'auto_discover': True,
        'fans': [],
        'mqtt_url': None,
        'polling_interval_seconds': 15
    }
    for key, default_value in top_defaults.items():
        if config.get(key) is None:
            config[key] = default_value

    if isinstance(config['fans'], list):
        config['fans'] = _normalize_fans(config['fans'])

    # Network defaults
    if 'network' not in config or config['network'] is None:
        config['network'] = {}
    network_defaults = {
        'request_timeout': 5,
        'connect_timeout': 2,
        'probe_timeout_ms': 1000,
        'scan_concurrency': 32,
        'verify_concurrency': 10,
        'oui_prefix': DEFAULT_OUI_PREFIX,
        'fallback_address': '192.168.0.1',
        'fallback_netmask': '255.255.255.0',
        'rediscovery_interval_minutes': 0
    }
    for key, default_value in network_defaults.items():
        if key not in config['network']:
            config['network'][key] = default_value

    # Synchronizer defaults
    if 'sync' not in config or config['sync'] is None:
        config['sync'] = {}
    config['sync'].setdefault('push_debounce_ms', 500)

    # Registry defaults
    if 'registry' not in config or config['registry'] is None:
        config['registry'] = {}
    config['registry'].setdefault('cache_file', 'data/accessories.json')

    # API defaults
    if 'api' not in config or config['api'] is None:
        config['api'] = {}
    api_defaults = {
        'enabled': True,
        'host': '0.0.0.0',
        'port': 8000
    }
    for key, default_value in api_defaults.items():
        if key not in config['api']:
            config['api'][key] = default_value

    # Logging defaults
    if 'logging' not in config or config['logging'] is None:
        config['logging'] = {}
    logging_defaults = {
        'level': 'INFO',
        'file': 'logs/fan_bridge.log',
        'console_output': True,
        'timezone': 'UTC'
    }
    for key, default_value in logging_defaults.items():
        if key not in config['logging']:
            config['logging'][key] = default_value

    return config

def get_default_config() -> Dict[str, Any]:
    """Return a configuration with every default applied"""
    return _apply_defaults({})


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')

def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration with zoned timestamps"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, log_config.get('timezone', 'UTC'))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[]
    )

    # Console handler
    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logging.getLogger().addHandler(console_handler)

    # File handler
    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, console={log_config.get('console_output', True)}, file={log_file}")

def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "auto_discover": True,
        "fans": [
            {"ip": "192.168.1.40", "light": True, "switch_id": "plug1"},
            {"ip": "192.168.1.41"}
        ],
        "mqtt_url": "mqtt://localhost:1883",
        "polling_interval_seconds": 15,
        "network": {
            "request_timeout": 5,
            "connect_timeout": 2,
            "probe_timeout_ms": 1000,
            "scan_concurrency": 32,
            "verify_concurrency": 10,
            "oui_prefix": DEFAULT_OUI_PREFIX,
            "rediscovery_interval_minutes": 0
        },
        "sync": {
            "push_debounce_ms": 500
        },
        "registry": {
            "cache_file": "data/accessories.json"
        },
        "api": {
            "enabled": True,
            "host": "0.0.0.0",
            "port": 8000
        },
        "logging": {
            "level": "INFO",
            "file": "logs/fan_bridge.log",
            "console_output": True,
            "timezone": "America/New_York"
        }
    }
