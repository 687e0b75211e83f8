"""
Tests for configuration loading.
"""

import pytest

from session_coordinator.config import (
    SessionCoordinatorConfig,
    _deep_merge,
    create_embedding_provider,
    create_vector_index,
    find_config_file,
    load_config,
    load_config_from_env,
)
from session_coordinator.errors import ConfigurationError
from session_coordinator.memory import (
    OpenAIEmbedding,
    QdrantVectorIndex,
    SimpleEmbedding,
)
from session_coordinator.service import CoordinationService


ENV_VARS = [
    "QDRANT_URL",
    "QDRANT_API_KEY",
    "OPENAI_API_KEY",
    "SESSION_COORDINATOR_EMBEDDING_PROVIDER",
    "SESSION_COORDINATOR_EMBEDDING_MODEL",
    "SESSION_COORDINATOR_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No coordinator env vars, and no config files in cwd or home."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestConfigDefaults:
    """Test default values and validation."""

    def test_defaults(self):
        config = SessionCoordinatorConfig()

        assert config.qdrant.url is None
        assert config.embedding.provider == "openai"
        assert config.stuck.cooldown_minutes == 10
        assert config.stuck.no_progress_minutes == 20
        assert config.logging.level == "INFO"

    def test_missing_qdrant_url(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SessionCoordinatorConfig().validate()
        assert "QDRANT_URL" in str(exc_info.value)

    def test_openai_requires_key(self):
        config = SessionCoordinatorConfig.from_dict({"qdrant": {"url": ":memory:"}})

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_unknown_provider(self):
        config = SessionCoordinatorConfig.from_dict({
            "qdrant": {"url": ":memory:"},
            "embedding": {"provider": "word2vec"},
        })

        with pytest.raises(ConfigurationError):
            config.validate()

    def test_to_dict_redacts_secrets(self):
        config = SessionCoordinatorConfig.from_dict({
            "qdrant": {"url": "http://localhost:6333", "api_key": "qdrant-secret"},
            "embedding": {"api_key": "sk-secret"},
        })

        data = config.to_dict()

        assert data["qdrant"]["api_key"] == "***"
        assert data["embedding"]["api_key"] == "***"
        assert "sk-secret" not in str(data)


class TestConfigLoading:
    """Test file, environment and override precedence."""

    def test_yaml_file(self, clean_env):
        (clean_env / ".session-coordinator.yml").write_text(
            "qdrant:\n"
            "  url: http://qdrant:6333\n"
            "embedding:\n"
            "  provider: simple\n"
            "stuck:\n"
            "  cooldown_minutes: 5\n"
            "  unknown_setting: true\n"
            "logging:\n"
            "  level: debug\n"
        )

        config = load_config()

        assert config.qdrant.url == "http://qdrant:6333"
        assert config.embedding.provider == "simple"
        assert config.stuck.cooldown_minutes == 5
        assert config.stuck.no_progress_minutes == 20
        assert config.logging.level == "DEBUG"

    def test_found_in_parent_of_project(self, clean_env):
        (clean_env / ".session-coordinator.yaml").write_text("qdrant:\n  url: http://parent:6333\n")
        project = clean_env / "repo" / "pkg"
        project.mkdir(parents=True)

        assert find_config_file(str(project)) == (clean_env / ".session-coordinator.yaml").resolve()

    def test_env_overrides_file(self, clean_env, monkeypatch):
        (clean_env / ".session-coordinator.yml").write_text("qdrant:\n  url: http://file:6333\n")
        monkeypatch.setenv("QDRANT_URL", "http://env:6333")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        config = load_config()

        assert config.qdrant.url == "http://env:6333"
        assert config.embedding.api_key == "sk-test"

    def test_overrides_win(self, clean_env, monkeypatch):
        monkeypatch.setenv("QDRANT_URL", "http://env:6333")

        config = load_config(qdrant={"url": ":memory:"}, embedding={"provider": "simple"})

        assert config.qdrant.url == ":memory:"
        assert config.embedding.provider == "simple"

    def test_explicit_file_missing(self, clean_env):
        with pytest.raises(ConfigurationError):
            load_config(config_path=str(clean_env / "nope.yml"))

    def test_invalid_yaml(self, clean_env):
        path = clean_env / "bad.yml"
        path.write_text("qdrant: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(config_path=str(path))

    def test_non_mapping_yaml(self, clean_env):
        path = clean_env / "list.yml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ConfigurationError):
            load_config(config_path=str(path))

    def test_env_only(self, clean_env, monkeypatch):
        monkeypatch.setenv("SESSION_COORDINATOR_EMBEDDING_PROVIDER", "simple")
        monkeypatch.setenv("SESSION_COORDINATOR_LOG_LEVEL", "warning")

        env = load_config_from_env()

        assert env["embedding"] == {"provider": "simple"}
        assert env["logging"] == {"level": "warning"}
        assert env["qdrant"] == {}

    def test_deep_merge(self):
        merged = _deep_merge(
            {"qdrant": {"url": "a", "timeout": 30}, "logging": {"level": "INFO"}},
            {"qdrant": {"url": "b", "api_key": None}},
        )

        assert merged == {"qdrant": {"url": "b", "timeout": 30}, "logging": {"level": "INFO"}}


class TestFactories:
    """Test building components from configuration."""

    def test_simple_provider(self):
        config = SessionCoordinatorConfig.from_dict({
            "qdrant": {"url": ":memory:"},
            "embedding": {"provider": "simple"},
        })

        provider = create_embedding_provider(config)

        assert isinstance(provider, SimpleEmbedding)
        assert provider.dimension == SimpleEmbedding.DIMENSION

    def test_openai_provider(self):
        config = SessionCoordinatorConfig.from_dict({
            "embedding": {"api_key": "sk-test", "model": "text-embedding-3-small", "dimension": 1536},
        })

        provider = create_embedding_provider(config)

        assert isinstance(provider, OpenAIEmbedding)
        assert provider.dimension == 1536

    def test_vector_index(self):
        config = SessionCoordinatorConfig.from_dict({"qdrant": {"url": ":memory:"}})

        assert isinstance(create_vector_index(config), QdrantVectorIndex)

    def test_service_from_config(self):
        config = SessionCoordinatorConfig.from_dict({
            "qdrant": {"url": ":memory:"},
            "embedding": {"provider": "simple"},
            "stuck": {"cooldown_minutes": 3},
        })

        service = CoordinationService.from_config(config)

        assert service.manager.active is None
        handle = service.manager.build_handle("s1", "/tmp/project")
        assert handle.detector.config.cooldown_minutes == 3

    def test_service_from_invalid_config(self):
        with pytest.raises(ConfigurationError):
            CoordinationService.from_config(SessionCoordinatorConfig())
