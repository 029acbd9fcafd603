"""
Tests for retrieval settings.
"""

import pytest

from ragcore.config import Settings, get_settings, validate_settings


class TestSettings:
    """Tests for settings defaults and validation."""

    def test_defaults(self, monkeypatch):
        """Test the documented defaults."""
        for name in ("CHUNK_SIZE", "CHUNK_OVERLAP", "RRF_K", "MMR_LAMBDA", "DEDUP_THRESHOLD"):
            monkeypatch.delenv(name, raising=False)
        config = Settings(_env_file=None)

        assert config.CHUNK_SIZE == 1000
        assert config.CHUNK_OVERLAP == 200
        assert config.RRF_K == 60
        assert config.MMR_LAMBDA == 0.5
        assert config.DEDUP_THRESHOLD == 0.85
        assert config.TARGET_TOKEN_COUNT == 2000

    def test_environment_override(self, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("RETRIEVAL_TOP_K", "7")
        assert Settings(_env_file=None).RETRIEVAL_TOP_K == 7

    def test_get_settings_cached(self):
        """Test the settings instance is shared."""
        assert get_settings() is get_settings()

    def test_validate_defaults(self):
        """Test the default configuration is consistent."""
        assert all(validate_settings(Settings(_env_file=None)).values())

    def test_validate_flags_bad_values(self):
        """Test inconsistent values are reported per group."""
        config = Settings(_env_file=None, CHUNK_OVERLAP=1000, MMR_LAMBDA=0.0, RRF_K=0)

        status = validate_settings(config)

        assert status["chunking"] is False
        assert status["mmr"] is False
        assert status["fusion"] is False
        assert status["similarity"] is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
