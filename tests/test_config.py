"""Unit tests for kbase.engine.config — KBaseConfig and loading."""

import pytest

from kbase.engine.config import (
    AIConfig,
    KBaseConfig,
    get_config,
    load_config,
)
from kbase.engine.errors import KBConfigError


class TestKBaseConfig:
    """Test KBaseConfig Pydantic model."""

    def test_defaults(self):
        cfg = KBaseConfig()
        assert cfg.name == "KBase"
        assert cfg.environment == "dev"
        assert cfg.versioning.max_versions == 10
        assert cfg.versioning.max_tags == 10
        assert cfg.ai.tag_count == 6
        assert cfg.ai.timeout_seconds == 10.0
        assert cfg.activity.page_size == 10
        assert cfg.logging.level == "INFO"

    def test_valid_environments(self):
        for env in ("dev", "staging", "prod"):
            assert KBaseConfig(environment=env).environment == env

    def test_invalid_environment(self):
        with pytest.raises(ValueError, match="dev/staging/prod"):
            KBaseConfig(environment="test")

    def test_is_production(self):
        assert KBaseConfig(environment="prod").is_production
        assert not KBaseConfig(environment="staging").is_production

    def test_invalid_provider(self):
        with pytest.raises(ValueError, match="gemini/offline"):
            AIConfig(provider="openai")

    def test_spool_directory_defaults_to_log_directory(self):
        cfg = KBaseConfig()
        assert cfg.spool_directory == cfg.logging.directory

    def test_versioning_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            KBaseConfig(versioning={"max_versions": 0})


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        cfg = load_config(str(tmp_path / "nope.yaml"))
        assert cfg.name == "KBase"
        assert cfg.ai.api_key is None

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "kbase.yaml"
        path.write_text(
            "kbase:\n"
            "  name: TeamKB\n"
            "  environment: staging\n"
            "database:\n"
            "  url: sqlite:///team.db\n"
            "ai:\n"
            "  provider: offline\n"
            "  tag_count: 4\n"
            "versioning:\n"
            "  max_versions: 5\n"
            "activity:\n"
            "  page_size: 25\n",
            encoding="utf-8",
        )
        cfg = load_config(str(path))
        assert cfg.name == "TeamKB"
        assert cfg.environment == "staging"
        assert cfg.database.url == "sqlite:///team.db"
        assert cfg.ai.provider == "offline"
        assert cfg.ai.tag_count == 4
        assert cfg.versioning.max_versions == 5
        assert cfg.activity.page_size == 25

    def test_invalid_yaml_values_raise_config_error(self, tmp_path):
        path = tmp_path / "kbase.yaml"
        path.write_text("kbase:\n  environment: qa\n", encoding="utf-8")
        with pytest.raises(KBConfigError):
            load_config(str(path))

    def test_api_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "secret-key")
        cfg = load_config(str(tmp_path / "kbase.yaml"))
        assert cfg.ai.api_key == "secret-key"

    def test_explicit_api_key_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        path = tmp_path / "kbase.yaml"
        path.write_text("ai:\n  api_key: from-file\n", encoding="utf-8")
        assert load_config(str(path)).ai.api_key == "from-file"

    def test_get_config_caches(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "kbase.yaml").write_text("kbase:\n  name: Cached\n", encoding="utf-8")
        first = get_config()
        assert first.name == "Cached"
        assert get_config() is first
