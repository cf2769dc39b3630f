"""Tests for configuration models and settings."""

import pytest
from pydantic import ValidationError

from ical_feeds.config import Settings, get_settings
from ical_feeds.models.source import (
    ExclusionRule,
    SourceConfig,
    calendar_name_from_url,
)


class TestSourceConfig:
    """Tests for SourceConfig."""

    def test_defaults(self):
        config = SourceConfig(url="https://example.com/team.ics")
        assert config.fetch_interval == 60_000
        assert config.fetch_interval_seconds == 60.0
        assert config.maximum_entries == 10
        assert config.maximum_number_of_days == 365
        assert config.past_days_count == 0
        assert config.symbol_class_name == "fas fa-"
        assert config.recurring_symbol == "repeat"
        assert config.full_day_symbol == "clock"

    def test_identity_defaults_to_url(self):
        config = SourceConfig(url="https://example.com/team.ics")
        assert config.identity == "https://example.com/team.ics"
        assert SourceConfig(url=config.url, source_id="m_0").identity == "m_0"

    def test_camel_case_keys(self):
        config = SourceConfig.model_validate(
            {
                "url": "https://example.com/team.ics",
                "fetchInterval": 300000,
                "maximumEntries": 20,
                "excludedEvents": ["holiday", {"filterBy": "birthday"}],
                "customEvents": [{"keyword": "meeting", "symbol": "users"}],
                "selfSignedCert": True,
            }
        )
        assert config.fetch_interval == 300_000
        assert config.maximum_entries == 20
        assert config.excluded_events == ["holiday", ExclusionRule(filter_by="birthday")]
        assert config.custom_events[0].keyword == "meeting"
        assert config.self_signed_cert is True

    def test_is_frozen(self):
        config = SourceConfig(url="https://example.com/team.ics")
        with pytest.raises(ValidationError):
            config.maximum_entries = 5

    def test_maximum_entries_must_be_positive(self):
        with pytest.raises(ValidationError):
            SourceConfig(url="https://example.com/team.ics", maximum_entries=0)

    def test_explicit_name(self):
        config = SourceConfig(url="https://example.com/team.ics", name="Team")
        assert config.calendar_name == "Team"


class TestCalendarNameFromUrl:
    """Tests for deriving display names."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://example.com/calendars/team.ics", "team"),
            ("https://example.com/calendars/team/", "team"),
            ("https://example.com", "Calendar"),
            ("", "Calendar"),
        ],
    )
    def test_names(self, url, expected):
        assert calendar_name_from_url(url) == expected


class TestSettings:
    """Tests for application settings."""

    def test_defaults(self):
        settings = Settings(timezone=None)
        assert settings.max_retries == 5
        assert settings.backoff_base_seconds == 60.0
        assert settings.backoff_max_seconds == 960.0
        assert settings.request_timeout_seconds == 30.0
        assert "Mozilla" in settings.user_agent

    def test_log_level_uppercased(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            Settings(timezone="Not/AZone")

    def test_local_timezone(self):
        settings = Settings(timezone="Europe/Oslo")
        assert settings.local_timezone is not None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "2")
        assert get_settings().max_retries == 2
