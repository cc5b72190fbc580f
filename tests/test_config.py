import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_push_requires_server_key():
    with pytest.raises(ValidationError):
        Settings(FCM_ENABLED=True, FCM_SERVER_KEY="")

    settings = Settings(FCM_ENABLED=True, FCM_SERVER_KEY="server-key")
    assert settings.FCM_ENABLED


@pytest.mark.parametrize(
    "overrides",
    [
        {"ALERT_EVAL_INTERVAL_SECONDS": 0},
        {"ALERT_EVAL_BATCH_SIZE": 0},
        {"ALERT_EVAL_MAX_CONCURRENCY": -1},
        {"DB_POOL_SIZE": -1},
        {"LOG_LEVEL": "verbose"},
        {"SERVER_WRITE_TIMEOUT_SECONDS": 0},
    ],
)
def test_invalid_evaluation_settings_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_cors_origins_accept_csv_and_json():
    assert Settings(CORS_ORIGINS="http://a.example, http://b.example").get_cors_origins() == [
        "http://a.example",
        "http://b.example",
    ]
    assert Settings(CORS_ORIGINS='["http://a.example"]').get_cors_origins() == ["http://a.example"]
    assert Settings(CORS_ORIGINS="").get_cors_origins() == ["http://localhost:9090", "http://127.0.0.1:9090"]
