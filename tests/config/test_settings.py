"""
Settings loading: defaults, YAML, environment overrides and the cached
process-wide instance.
"""

import pytest
import yaml

from steeltrack_config import (
    TrackerSettings,
    get_active_settings,
    load_settings,
    load_yaml_file,
    reset_active_settings,
)


@pytest.fixture
def write_yaml(tmp_path):
    def _write(data, name="steeltrack.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data) if data is not None else "")
        return path

    return _write


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_active_settings()
    yield
    reset_active_settings()


class TestDefaults:
    def test_no_sources(self):
        settings = load_settings(environ={})
        assert settings == TrackerSettings()
        assert settings.log_level == "INFO"
        assert settings.broadcast_enabled is True

    def test_frozen(self):
        settings = TrackerSettings()
        with pytest.raises(AttributeError):
            settings.pool_size = 1


class TestYaml:
    def test_top_level_keys(self, write_yaml):
        path = write_yaml({"database_url": "sqlite:///yard.db", "pool_size": 3, "log_level": "debug"})
        settings = load_settings(path, environ={})
        assert settings.database_url == "sqlite:///yard.db"
        assert settings.pool_size == 3
        assert settings.log_level == "DEBUG"

    def test_wrapped_under_steeltrack_key(self, write_yaml):
        path = write_yaml({"steeltrack": {"broadcast_enabled": False}})
        assert load_settings(path, environ={}).broadcast_enabled is False

    def test_empty_file(self, write_yaml):
        assert load_yaml_file(write_yaml(None)) == {}

    def test_unknown_key_rejected(self, write_yaml):
        path = write_yaml({"pool_sise": 3})
        with pytest.raises(ValueError, match="pool_sise"):
            load_settings(path, environ={})

    def test_non_mapping_rejected(self, write_yaml):
        with pytest.raises(ValueError):
            load_settings(write_yaml(["a", "b"]), environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_path_from_environment(self, write_yaml):
        path = write_yaml({"echo": True})
        assert load_settings(environ={"STEELTRACK_CONFIG": str(path)}).echo is True

    def test_invalid_values(self, write_yaml):
        with pytest.raises(ValueError):
            load_settings(write_yaml({"pool_size": -1}), environ={})
        with pytest.raises(ValueError):
            load_settings(write_yaml({"log_level": "chatty"}), environ={})
        with pytest.raises(ValueError):
            load_settings(write_yaml({"echo": "yes"}), environ={})


class TestEnvironment:
    def test_env_wins_over_yaml(self, write_yaml):
        path = write_yaml({"database_url": "sqlite:///yard.db", "log_level": "INFO"})
        settings = load_settings(
            path,
            environ={
                "STEELTRACK_DATABASE_URL": "postgresql://localhost/steel",
                "STEELTRACK_LOG_LEVEL": "warning",
            },
        )
        assert settings.database_url == "postgresql://localhost/steel"
        assert settings.log_level == "WARNING"

    def test_plain_database_url_fallback(self):
        settings = load_settings(environ={"DATABASE_URL": "sqlite:///other.db"})
        assert settings.database_url == "sqlite:///other.db"


class TestActiveSettings:
    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("STEELTRACK_DATABASE_URL", "sqlite:///first.db")
        monkeypatch.delenv("STEELTRACK_CONFIG", raising=False)
        first = get_active_settings()
        monkeypatch.setenv("STEELTRACK_DATABASE_URL", "sqlite:///second.db")
        assert get_active_settings() is first

        reset_active_settings()
        assert get_active_settings().database_url == "sqlite:///second.db"
