from shared.config import Settings


def test_default_settings():
    s = Settings()
    assert "postgresql+asyncpg" in s.DATABASE_URL
    assert "redis" in s.REDIS_URL
    assert s.REDIS_ENABLED is False
    assert s.JWT_ALGORITHM == "HS256"
    assert s.COLLAB_DOCUMENT_PREFIX == "note-"
    assert s.COLLAB_PERSIST_INTERVAL_SECONDS > 0


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://test:test@db:5432/testdb")
    monkeypatch.setenv("REDIS_ENABLED", "true")
    monkeypatch.setenv("JWT_SECRET", "supersecret")
    monkeypatch.setenv("VERSION_SNAPSHOT_INTERVAL_SECONDS", "0")

    s = Settings()
    assert s.DATABASE_URL == "postgresql+asyncpg://test:test@db:5432/testdb"
    assert s.REDIS_ENABLED is True
    assert s.JWT_SECRET == "supersecret"
    assert s.VERSION_SNAPSHOT_INTERVAL_SECONDS == 0
