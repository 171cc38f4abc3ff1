"""
Configuration loader for the WhatsApp automation engine
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/automations.yaml'


def default_config() -> Dict[str, Any]:
    return {
        'database': {
            'url': 'sqlite+aiosqlite:///./data/automations.db',
            'echo': False
        },
        'logging': {
            'level': 'INFO',
            'format': 'text',
            'console_enabled': True,
            'file_enabled': False,
            'file_path': 'logs/automations.log',
            'file_max_size': 10 * 1024 * 1024,
            'file_backup_count': 5,
            'mask_phone_numbers': True
        },
        'locale': {
            'language': 'es',
            'timezone': 'America/Mexico_City',
            'thousands_separator': ',',
            'decimal_separator': '.',
            'default_currency': 'MXN',
            'day_first': True
        },
        'extraction': {
            'confidence_threshold': 0.6
        },
        'calendar': {
            'default_start_time': '09:00',
            'default_duration_minutes': 60,
            'meal_start_times': {
                'breakfast': '09:00',
                'lunch': '14:00',
                'dinner': '20:00'
            }
        },
        'executor': {
            'max_retries': 2,
            'retry_backoff_seconds': 0.5
        },
        'engine': {
            'unit_timeout_seconds': 30,
            'max_concurrent_events': 10
        },
        'ledger': {
            'record_skipped': False
        },
        # instance id -> {'owner_jid': ...}
        'instances': {},
        'rules': [],
        'rules_file': None
    }


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from defaults, a YAML file and environment variables"""

    # Load environment variables
    load_dotenv()

    config = default_config()

    yaml_path = Path(path or os.getenv('AUTOMATIONS_CONFIG', DEFAULT_CONFIG_PATH))

    if yaml_path.exists():
        try:
            with open(yaml_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration from {yaml_path}: {e}")
            raise

        if yaml_config:
            _deep_update(config, yaml_config)
            logger.info(f"Configuration loaded from {yaml_path}")

            rules = config.get('rules') or []
            instances = config.get('instances') or {}
            logger.info(f"Found {len(rules)} inline rules and {len(instances)} instances in configuration")
    else:
        logger.warning(f"Configuration file {yaml_path} not found, using defaults")

    # Override with environment variables
    if os.getenv('DATABASE_URL'):
        config['database']['url'] = os.getenv('DATABASE_URL')

    if os.getenv('LOG_LEVEL'):
        config['logging']['level'] = os.getenv('LOG_LEVEL', 'INFO').upper()

    if os.getenv('AUTOMATIONS_TIMEZONE'):
        config['locale']['timezone'] = os.getenv('AUTOMATIONS_TIMEZONE')

    if os.getenv('AUTOMATIONS_DEFAULT_CURRENCY'):
        config['locale']['default_currency'] = os.getenv('AUTOMATIONS_DEFAULT_CURRENCY').upper()

    return config


def load_rules_file(path: Union[str, Path]) -> list:
    """Rule definitions from a YAML file: a list, or a mapping with a 'rules' key"""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get('rules') or []
    if not isinstance(data, list):
        raise ValueError(f"Rules file {path} must contain a list of rule definitions")
    return data


def _deep_update(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> None:
    """Deep update nested dictionary"""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            _deep_update(base_dict[key], value)
        else:
            base_dict[key] = value
