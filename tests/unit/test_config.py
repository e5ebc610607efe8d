import pytest

from linkme.config import ConfigurationError, Settings


def _settings(**overrides) -> Settings:
    values = {"WEBHOOK_SECRET": "s", "EXECUTOR_BASE_URL": "http://executor.test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults_match_pipeline_timing():
    settings = _settings()

    assert settings.SCHEDULER_INTERVAL_MINUTES == 30
    assert settings.MESSAGE_MAX_RETRIES == 2
    assert settings.lease_ttl_seconds() == 240
    assert settings.event_log_enabled() is False
    settings.validate_runtime()


def test_missing_secret_fails_fast():
    with pytest.raises(ConfigurationError) as exc_info:
        _settings(WEBHOOK_SECRET=None).validate_runtime()

    assert exc_info.value.setting == "WEBHOOK_SECRET"
    assert exc_info.value.recoverable is False


def test_executor_optional_when_not_required():
    settings = _settings(EXECUTOR_BASE_URL=None)

    settings.validate_runtime(require_executor=False)
    with pytest.raises(ConfigurationError):
        settings.validate_runtime()


def test_inverted_jitter_window_rejected():
    with pytest.raises(ConfigurationError):
        _settings(SCHEDULER_JITTER_MIN_MINUTES=40).validate_runtime()
