"""
Configuration Loader - Loads and validates login guard configuration

Usage:
    from config.loader import get_config

    config = get_config()
    print(config.store_backend)
    print(config.ip_table)

Resolution order:
1. YAML file at $LOGIN_GUARD_CONFIG (if set)
2. config/login_guard.yaml next to this module
3. Built-in defaults (in-memory store, standard tables)

String values support ${VAR_NAME} and ${VAR_NAME:-default} substitution.
Lockout tiers (3 / 5 / 6 failures) are fixed and deliberately not configurable.
"""

import yaml
import json
import os
import re
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from jsonschema import validate, ValidationError

from config.database import SupabaseTables

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "store": {
        "backend": "memory",
        "retry_attempts": 3,
    },
    "supabase": {
        "url": "",
        "anon_key": "",
        "service_key": "",
        "ip_table": SupabaseTables.LOGIN_ATTEMPTS_IP,
        "email_table": SupabaseTables.LOGIN_ATTEMPTS_EMAIL,
    },
    "throttle": {
        "window_minutes": 15,
    },
    "logging": {
        "level": "INFO",
        "json": True,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base, one level of nesting deep."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


class GuardConfig:
    """Load and validate login guard configuration from YAML or defaults"""

    def __init__(self, config_path: Optional[str] = None, base_path: Optional[str] = None):
        """
        Initialize login guard configuration

        Args:
            config_path: Explicit YAML file (defaults to $LOGIN_GUARD_CONFIG or config/login_guard.yaml)
            base_path: Base directory path (defaults to project root)
        """
        if base_path is None:
            base_path = Path(__file__).parent.parent

        self.base_path = Path(base_path)
        self.schema_path = self.base_path / "config" / "schema.json"

        if config_path is None:
            config_path = os.getenv("LOGIN_GUARD_CONFIG") or str(self.base_path / "config" / "login_guard.yaml")
        self.config_path = Path(config_path)

        if self.config_path.exists():
            self.config = _merge(DEFAULT_CONFIG, self._load_config())
            self._config_source = 'yaml'
        else:
            logger.debug(f"No config file at {self.config_path}, using defaults")
            self.config = _merge(DEFAULT_CONFIG, {})
            self._config_source = 'defaults'

        self._apply_env_overrides()
        self._validate_config()

    @property
    def config_source(self) -> str:
        """Source of configuration: 'yaml' or 'defaults'"""
        return self._config_source

    def _load_config(self) -> Dict[str, Any]:
        """Load YAML configuration file"""
        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        return self._substitute_env_vars(config)

    def _substitute_env_vars(self, obj: Any) -> Any:
        """
        Recursively substitute environment variables in config

        Supports: ${VAR_NAME} or ${VAR_NAME:-default_value}
        """
        if isinstance(obj, dict):
            return {k: self._substitute_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            pattern = r'\$\{([A-Z_]+)(?::-([^}]*))?\}'

            def replacer(match):
                var_name = match.group(1)
                default = match.group(2)
                return os.getenv(var_name, default or '')

            return re.sub(pattern, replacer, obj)
        else:
            return obj

    def _apply_env_overrides(self):
        """Environment always wins for the store backend and credentials"""
        backend = os.getenv("LOGIN_GUARD_STORE")
        if backend:
            self.config['store']['backend'] = backend.lower()

        for env_var, field in (
            ("SUPABASE_URL", "url"),
            ("SUPABASE_ANON_KEY", "anon_key"),
            ("SUPABASE_SERVICE_KEY", "service_key"),
        ):
            value = os.getenv(env_var)
            if value and not self.config['supabase'].get(field):
                self.config['supabase'][field] = value

        # YAML substitution yields strings; coerce the typed fields back
        store = self.config['store']
        throttle = self.config['throttle']
        log_cfg = self.config['logging']
        try:
            store['retry_attempts'] = int(store['retry_attempts'])
            throttle['window_minutes'] = int(throttle['window_minutes'])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Configuration validation failed: {e}")
        if isinstance(log_cfg.get('json'), str):
            log_cfg['json'] = log_cfg['json'].lower() == 'true'
        log_cfg['level'] = str(log_cfg.get('level') or 'INFO').upper()

    def _validate_config(self):
        """Validate configuration against JSON schema"""
        if not self.schema_path.exists():
            logger.warning(f"Schema file not found: {self.schema_path}, skipping validation")
            return

        with open(self.schema_path, 'r') as f:
            schema = json.load(f)

        try:
            validate(instance=self.config, schema=schema)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e.message}")

    # ==================== Store Properties ====================

    @property
    def store_backend(self) -> str:
        """Attempt store backend: 'memory' or 'supabase'"""
        return self.config['store']['backend']

    @property
    def store_retry_attempts(self) -> int:
        """Attempts for transient network errors on store reads"""
        return self.config['store']['retry_attempts']

    # ==================== Supabase Properties ====================

    @property
    def supabase_url(self) -> str:
        """Supabase project URL"""
        return self.config['supabase'].get('url', '')

    @property
    def supabase_anon_key(self) -> str:
        """Supabase anon key"""
        return self.config['supabase'].get('anon_key', '')

    @property
    def supabase_service_key(self) -> Optional[str]:
        """Supabase service role key"""
        return self.config['supabase'].get('service_key') or None

    @property
    def ip_table(self) -> str:
        """Table holding per-IP attempt records"""
        return self.config['supabase']['ip_table']

    @property
    def email_table(self) -> str:
        """Table holding per-email attempt records"""
        return self.config['supabase']['email_table']

    # ==================== Throttle Properties ====================

    @property
    def window_minutes(self) -> int:
        """Sliding window anchored at last_attempt"""
        return self.config['throttle']['window_minutes']

    # ==================== Logging Properties ====================

    @property
    def log_level(self) -> str:
        return (os.getenv("LOG_LEVEL") or self.config['logging']['level']).upper()

    @property
    def log_json(self) -> bool:
        return self.config['logging']['json']

    # ==================== Admin Properties ====================

    @property
    def admin_token(self) -> Optional[str]:
        """Token required in X-Admin-Token for admin endpoints (unset = open)"""
        return os.getenv("ADMIN_API_TOKEN") or None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return self.config.copy()

    def __repr__(self) -> str:
        return f"GuardConfig(source='{self.config_source}', backend='{self.store_backend}')"


# Singleton pattern for easy access
_config_cache: Optional[GuardConfig] = None


def get_config() -> GuardConfig:
    """
    Get or create the login guard configuration (cached)

    Returns:
        GuardConfig instance
    """
    global _config_cache
    if _config_cache is None:
        _config_cache = GuardConfig()
    return _config_cache


def clear_config_cache():
    """Clear the config cache so the next get_config() reloads from disk/env."""
    global _config_cache
    _config_cache = None
