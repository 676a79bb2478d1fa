import pytest

from config.registry import CHAT_KEY, bind_model, get_model, is_bound, unbind_model
from config.routes import AppConfig, resolve_route
from config.settings import Settings


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.DB_PATH.endswith(".db")
    assert settings.DEFAULT_PLANNED_QUESTIONS == 10
    assert settings.MIN_PLANNED_QUESTIONS == 5
    assert settings.MAX_PLANNED_QUESTIONS == 20
    assert settings.MAX_FOLLOWUPS_PER_TOPIC == 2
    assert settings.EMA_ALPHA == pytest.approx(0.3)


def test_settings_read_auth_tokens_from_env(monkeypatch):
    monkeypatch.setenv("AUTH_TOKENS", '{"tok-a": "user-a"}')
    settings = Settings(_env_file=None)
    assert settings.AUTH_TOKENS == {"tok-a": "user-a"}


def test_registry_bind_and_retrieve():
    marker = object()
    bind_model(CHAT_KEY, lambda *_: marker)
    assert is_bound(CHAT_KEY)
    assert get_model(CHAT_KEY)() is marker
    unbind_model(CHAT_KEY)
    assert not is_bound(CHAT_KEY)
    with pytest.raises(KeyError):
        get_model(CHAT_KEY)


def test_resolve_route_reports_missing_entries():
    cfg = AppConfig.model_validate(
        {
            "llm_routes": {
                "r1": {"name": "r1", "base_url": "http://llm", "endpoint": "/v1/chat", "model": "m"},
            },
            "registry": {CHAT_KEY: "r1", "models.other": "missing"},
        }
    )
    assert resolve_route(cfg, CHAT_KEY).model == "m"
    with pytest.raises(KeyError):
        resolve_route(cfg, "models.other")
    with pytest.raises(KeyError):
        resolve_route(cfg, "models.unknown")
