# Configuration - defaults, then config.json, then PRINTCORE_* environment variables

import json
import os
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


CONFIG_FILE = Path(__file__).resolve().parent.parent / 'config.json'
ENV_PREFIX = 'PRINTCORE_'

DEFAULTS: Dict[str, Any] = {
    'db_path': 'printcore_local.db',
    'queue_db_path': 'printcore_queue.db',
    'queue_host': '0.0.0.0',
    'queue_port': 8000,
    'queue_api_key': None,
    'queue_url': None,
    'queue_visibility_timeout': 0,  # seconds; 0 leaves stuck jobs to the operator
    'queue_poll_interval': 2,
    'agent_id': None,
    'agent_port': 8765,
    'backend_url': None,
    'backend_api_key': None,
    'currency_symbol': '',
    'printers': [],
    'log_path': None,
}

# Environment names that don't follow PRINTCORE_<KEY>
ENV_ALIASES = {
    'PRINTCORE_API_KEY': 'backend_api_key',
}


def _coerce(key: str, value: str) -> Any:
    default = DEFAULTS.get(key)
    if isinstance(default, bool):
        return value.lower() in ('1', 'true', 'yes', 'on')
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, list):
        return json.loads(value)
    return value


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    config = dict(DEFAULTS)

    config_path = Path(path) if path else CONFIG_FILE
    if config_path.exists():
        with open(config_path, encoding='utf-8') as f:
            config.update(json.load(f))
    elif path:
        logger.warning(f"Config file {config_path} not found, using defaults")

    environ = os.environ if environ is None else environ
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = ENV_ALIASES.get(name) or name[len(ENV_PREFIX):].lower()
        if key not in DEFAULTS:
            continue
        try:
            config[key] = _coerce(key, value)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {name}: {value!r}")

    return config
