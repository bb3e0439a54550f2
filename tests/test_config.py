"""
Configuration Loader Unit Tests

Tests for GuardConfig and helper functions in config/loader.py.
"""

import pytest
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the loader reads."""
    for var in (
        "LOGIN_GUARD_CONFIG", "LOGIN_GUARD_STORE", "SUPABASE_URL",
        "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_KEY", "LOG_LEVEL",
        "LOG_JSON", "ADMIN_API_TOKEN",
    ):
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def write_yaml(tmp_path):
    def _write(content: str) -> str:
        path = tmp_path / "login_guard.yaml"
        path.write_text(content)
        return str(path)
    return _write


class TestGuardConfigDefaults:
    """Built-in defaults when no YAML file exists."""

    def test_defaults(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert config.config_source == 'defaults'
        assert config.store_backend == 'memory'
        assert config.store_retry_attempts == 3
        assert config.ip_table == 'login_attempts_ip'
        assert config.email_table == 'login_attempts_email'
        assert config.window_minutes == 15
        assert config.log_level == 'INFO'
        assert config.log_json is True
        assert config.supabase_service_key is None
        assert config.admin_token is None

    def test_bundled_yaml(self, clean_env):
        """The shipped config/login_guard.yaml resolves to the same defaults."""
        from config.loader import GuardConfig

        config = GuardConfig()

        assert config.config_source == 'yaml'
        assert config.store_backend == 'memory'
        assert config.window_minutes == 15
        assert config.log_json is True

    def test_repr(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert repr(config) == "GuardConfig(source='defaults', backend='memory')"


class TestGuardConfigYaml:
    """Loading and substituting YAML files."""

    def test_partial_yaml_merges_over_defaults(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        config = GuardConfig(config_path=write_yaml("throttle:\n  window_minutes: 30\n"))

        assert config.window_minutes == 30
        assert config.ip_table == 'login_attempts_ip'

    def test_env_substitution_with_default(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        path = write_yaml("logging:\n  level: ${LOG_LEVEL_TEST:-debug}\n")
        config = GuardConfig(config_path=path)

        assert config.config['logging']['level'] == 'DEBUG'

    def test_env_substitution_from_environment(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        clean_env.setenv("MY_WINDOW", "20")
        config = GuardConfig(config_path=write_yaml("throttle:\n  window_minutes: ${MY_WINDOW}\n"))

        assert config.window_minutes == 20

    def test_config_path_from_env(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        clean_env.setenv("LOGIN_GUARD_CONFIG", write_yaml("store:\n  retry_attempts: 5\n"))

        assert GuardConfig().store_retry_attempts == 5

    def test_json_flag_from_string(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        config = GuardConfig(config_path=write_yaml("logging:\n  json: ${LOG_JSON:-false}\n"))

        assert config.log_json is False


class TestEnvOverrides:
    """Environment variables for the backend and credentials."""

    def test_store_backend_env(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        clean_env.setenv("LOGIN_GUARD_STORE", "Supabase")
        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert config.store_backend == 'supabase'

    def test_supabase_credentials_env(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        clean_env.setenv("SUPABASE_URL", "https://env.supabase.co")
        clean_env.setenv("SUPABASE_SERVICE_KEY", "service-key")
        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert config.supabase_url == "https://env.supabase.co"
        assert config.supabase_service_key == "service-key"

    def test_log_level_env(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        clean_env.setenv("LOG_LEVEL", "warning")
        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert config.log_level == 'WARNING'

    def test_admin_token_env(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        clean_env.setenv("ADMIN_API_TOKEN", "secret")
        config = GuardConfig(config_path=str(tmp_path / "missing.yaml"))

        assert config.admin_token == "secret"


class TestValidation:
    """Schema validation failures raise ValueError."""

    def test_invalid_backend(self, clean_env, tmp_path):
        from config.loader import GuardConfig

        clean_env.setenv("LOGIN_GUARD_STORE", "redis")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            GuardConfig(config_path=str(tmp_path / "missing.yaml"))

    def test_non_numeric_window(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        with pytest.raises(ValueError, match="Configuration validation failed"):
            GuardConfig(config_path=write_yaml("throttle:\n  window_minutes: soon\n"))

    def test_zero_window(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        with pytest.raises(ValueError):
            GuardConfig(config_path=write_yaml("throttle:\n  window_minutes: 0\n"))

    def test_bad_table_name(self, clean_env, write_yaml):
        from config.loader import GuardConfig

        with pytest.raises(ValueError):
            GuardConfig(config_path=write_yaml("supabase:\n  ip_table: attempts\n"))


class TestGetConfig:
    """Tests for the cached accessor."""

    def test_cached(self, clean_env):
        from config.loader import get_config

        assert get_config() is get_config()

    def test_clear_cache(self, clean_env):
        from config.loader import get_config, clear_config_cache

        first = get_config()
        clear_config_cache()

        assert get_config() is not first


class TestSupabaseTables:
    """Tests for config.database.SupabaseTables."""

    @pytest.mark.parametrize("table,column", [
        ("login_attempts_ip", "ip_address"),
        ("login_attempts_email", "email"),
        ("staging_attempts_ip", "ip_address"),
        ("staging_attempts_email", "email"),
    ])
    def test_key_column(self, table, column):
        from config.database import SupabaseTables

        assert SupabaseTables.key_column(table) == column

    def test_unknown_table(self):
        from config.database import SupabaseTables

        with pytest.raises(ValueError):
            SupabaseTables.key_column("users")
