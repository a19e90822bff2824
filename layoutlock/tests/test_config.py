"""
Tests for settings, the generation policy and application startup.
"""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from layoutlock import main
from layoutlock.core.config import ConfigurationError, GenerationPolicy, Settings


def make_settings(**overrides) -> Settings:
    values = {"google_ai_api_key": "AIzaSyExampleKey1234", "database_url": "postgresql://u:p@db:5432/layoutlock"}
    values.update(overrides)
    return Settings(**values)


class TestSettings:
    def test_complete_configuration_passes(self):
        make_settings().require_generation_config()

    def test_missing_credentials_are_named(self):
        with pytest.raises(ConfigurationError) as exc_info:
            make_settings(google_ai_api_key="", database_url="").require_generation_config()

        assert "GOOGLE_AI_API_KEY" in str(exc_info.value)
        assert "DATABASE_URL" in str(exc_info.value)

    def test_defaults_match_documented_limits(self):
        s = make_settings()

        assert (s.design_daily_limit, s.design_burst_limit, s.design_burst_window_seconds) == (8, 4, 900)
        assert s.design_max_attempts == 2


class TestGenerationPolicy:
    def test_anchor_separation_scales_with_resolution(self):
        assert GenerationPolicy().anchor_min_separation == 4
        assert GenerationPolicy(sample_resolution=128).anchor_min_separation == 9
        assert GenerationPolicy(sample_resolution=8).anchor_min_separation == 1

    def test_from_settings(self):
        policy = GenerationPolicy.from_settings(make_settings(design_max_attempts=0, min_change_intensity=12.5))

        assert policy.max_attempts == 1
        assert policy.min_change_intensity == 12.5
        assert policy.sample_resolution == 64


class TestStartup:
    @pytest.mark.asyncio
    async def test_refuses_to_start_without_credentials(self):
        with patch("layoutlock.main.settings", make_settings(google_ai_api_key="")):
            with pytest.raises(ConfigurationError):
                async with main.lifespan(main.app):
                    pass

    @pytest.mark.asyncio
    async def test_starts_and_creates_tables_when_asked(self):
        create_tables = AsyncMock()
        with patch("layoutlock.main.settings", make_settings(database_auto_create=True)), patch(
            "layoutlock.main.create_tables", create_tables
        ):
            async with main.lifespan(main.app):
                pass

        create_tables.assert_awaited_once()

    def test_health_check(self):
        response = TestClient(main.app).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
