import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.persistence_profile import (
    app_persistence_profile_name,
    validate_persistence_profile_guardrails,
)


def test_persistence_profile_defaults_to_local(monkeypatch):
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    assert app_persistence_profile_name() == "LOCAL"


def test_persistence_profile_unknown_value_falls_back_to_local(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "staging")
    assert app_persistence_profile_name() == "LOCAL"


def test_local_profile_allows_in_memory_flow_store(monkeypatch):
    monkeypatch.setenv("FLOW_STORE_BACKEND", "IN_MEMORY")
    monkeypatch.setenv("FLOW_SEED_DEFINITIONS_ENABLED", "true")

    validate_persistence_profile_guardrails()


def test_production_profile_requires_flow_postgres(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("FLOW_STORE_BACKEND", "IN_MEMORY")

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_FLOW_POSTGRES"


def test_production_profile_requires_flow_postgres_dsn(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.delenv("FLOW_POSTGRES_DSN", raising=False)

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_FLOW_POSTGRES_DSN"


def test_production_profile_forbids_definition_seeding(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "production")
    monkeypatch.setenv("FLOW_SEED_DEFINITIONS_ENABLED", "true")

    with pytest.raises(RuntimeError) as exc:
        validate_persistence_profile_guardrails()
    assert str(exc.value) == "PERSISTENCE_PROFILE_FORBIDS_FLOW_DEFINITION_SEEDING"


def test_production_profile_allows_postgres_backend(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")

    validate_persistence_profile_guardrails()


def test_startup_fails_fast_for_in_memory_store_in_production(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")
    monkeypatch.setenv("FLOW_STORE_BACKEND", "IN_MEMORY")

    with pytest.raises(RuntimeError) as exc:
        with TestClient(app):
            pass
    assert str(exc.value) == "PERSISTENCE_PROFILE_REQUIRES_FLOW_POSTGRES"


def test_startup_succeeds_for_postgres_in_production(monkeypatch):
    monkeypatch.setenv("APP_PERSISTENCE_PROFILE", "PRODUCTION")

    with TestClient(app) as client:
        assert client.get("/health/ready").json() == {"status": "ready"}
