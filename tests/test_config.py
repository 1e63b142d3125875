from __future__ import annotations

import pytest
import yaml

import importador.config as config_mod


@pytest.fixture
def config_dir(monkeypatch, tmp_path):
    d = tmp_path / "config"
    d.mkdir()
    monkeypatch.setenv("IMPORTADOR_CONFIG_DIR", str(d))
    monkeypatch.delenv("IMPORTADOR_DATABASE_URL", raising=False)
    return d


class TestResolveDir:
    def test_from_env_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IMPORTADOR_DATA_DIR", str(tmp_path))
        assert config_mod.get_data_dir() == tmp_path

    def test_project_root_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("IMPORTADOR_CONFIG_DIR", raising=False)
        fake_root = tmp_path / "src" / "importador"
        fake_root.mkdir(parents=True)
        config_dir = tmp_path / "config"
        config_dir.mkdir()

        # Patch __file__ so the project root resolves to tmp_path
        monkeypatch.setattr(config_mod, "__file__", str(fake_root / "config.py"))
        assert config_mod.resolve_dir("config") == config_dir

    @pytest.mark.parametrize(
        "kind,env_var", [("config", "IMPORTADOR_CONFIG_DIR"), ("data", "IMPORTADOR_DATA_DIR")]
    )
    def test_platformdirs_fallback(self, monkeypatch, tmp_path, kind, env_var):
        monkeypatch.delenv(env_var, raising=False)
        fake = tmp_path / "nowhere" / "src" / "importador"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        assert "importador-nfe" in str(config_mod.resolve_dir(kind))

    def test_must_exist_skips_missing_platform_dir(self, monkeypatch, tmp_path):
        monkeypatch.delenv("IMPORTADOR_CONFIG_DIR", raising=False)
        fake = tmp_path / "nowhere" / "src" / "importador"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        monkeypatch.setitem(
            config_mod._DIR_SOURCES,
            "config",
            config_mod._DirSource("IMPORTADOR_CONFIG_DIR", "config", lambda app: str(tmp_path / "missing")),
        )
        assert config_mod.resolve_dir("config", must_exist=True) is None
        assert config_mod.resolve_dir("config") == tmp_path / "missing"

    def test_must_exist_keeps_env_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IMPORTADOR_CONFIG_DIR", str(tmp_path))
        assert config_mod.resolve_dir("config", must_exist=True) == tmp_path


class TestSettings:
    def test_missing_file_is_empty(self, config_dir):
        assert config_mod.load_settings() == {}

    def test_empty_file_is_empty(self, config_dir):
        (config_dir / "settings.yaml").write_text("")
        assert config_mod.load_settings() == {}

    def test_pricing_defaults(self, config_dir):
        assert config_mod.load_pricing_defaults() == config_mod.DEFAULT_PRICING

    def test_pricing_section_overrides(self, config_dir):
        (config_dir / "settings.yaml").write_text(
            yaml.dump({"precificacao": {"valor_frete": 25.5, "arredondamento": "90", "outro": 1}})
        )
        pricing = config_mod.load_pricing_defaults()
        assert pricing["valor_frete"] == "25.5"
        assert pricing["arredondamento"] == "90"
        assert pricing["markup_primario"] == "160"
        assert "outro" not in pricing


class TestDatabaseUrl:
    def test_env_var_first(self, config_dir, monkeypatch):
        (config_dir / "settings.yaml").write_text(yaml.dump({"database_url": "sqlite:///settings.db"}))
        monkeypatch.setenv("IMPORTADOR_DATABASE_URL", "sqlite:///env.db")
        assert config_mod.get_database_url() == "sqlite:///env.db"

    def test_settings_second(self, config_dir):
        (config_dir / "settings.yaml").write_text(yaml.dump({"database_url": "sqlite:///settings.db"}))
        assert config_mod.get_database_url() == "sqlite:///settings.db"

    def test_default_sqlite_in_data_dir(self, config_dir, monkeypatch, tmp_path):
        monkeypatch.setenv("IMPORTADOR_DATA_DIR", str(tmp_path / "data"))
        url = config_mod.get_database_url()
        assert url == f"sqlite:///{tmp_path / 'data' / 'importador.sqlite'}"


class TestLogLevel:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("IMPORTADOR_LOG_LEVEL", raising=False)
        assert config_mod.get_log_level() == "WARNING"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("IMPORTADOR_LOG_LEVEL", "debug")
        assert config_mod.get_log_level() == "DEBUG"
