"""Tests for settings loading and secret masking."""

from config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.checkpoint_backend == "redis"
        assert settings.extraction_context_buffer == 2
        assert settings.extraction_max_concurrency == 1
        assert settings.llm_schema_retries == 1

    def test_postgres_url_gets_async_driver(self):
        settings = Settings(_env_file=None, database_url="postgresql://u:p@localhost:5432/db")
        assert settings.database_url == "postgresql+asyncpg://u:p@localhost:5432/db"

    def test_other_drivers_untouched(self):
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///./x.db")
        assert settings.database_url == "sqlite+aiosqlite:///./x.db"

    def test_repr_masks_secrets(self):
        settings = Settings(
            _env_file=None,
            database_url="postgresql://app:hunter2@db:5432/decisions",
            redis_url="redis://:s3cret@cache:6379",
            llm_api_key="sk-live-key",
        )

        text = repr(settings)

        assert "hunter2" not in text
        assert "s3cret" not in text
        assert "sk-live-key" not in text
        assert ":***@db" in text

    def test_api_key_is_secret(self):
        settings = Settings(_env_file=None, llm_api_key="sk-live-key")

        assert "sk-live-key" not in str(settings.llm_api_key)
        assert settings.get_llm_api_key() == "sk-live-key"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EXTRACTION_CONTEXT_BUFFER", "5")
        monkeypatch.setenv("CHECKPOINT_BACKEND", "memory")

        settings = Settings(_env_file=None)

        assert settings.extraction_context_buffer == 5
        assert settings.checkpoint_backend == "memory"
