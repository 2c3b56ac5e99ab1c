"""
Settings are read from the environment when constructed.
"""
from app.core.config import Settings


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_from_env")
    monkeypatch.setenv("SYNC_MAX_RETRIES", "5")
    monkeypatch.setenv("SYNC_RETRY_DELAY_SECONDS", "0.5")

    settings = Settings(_env_file=None)

    assert settings.stripe_webhook_secret == "whsec_from_env"
    assert settings.sync_max_retries == 5
    assert settings.sync_retry_delay_seconds == 0.5


def test_unrelated_dotenv_keys_are_ignored(tmp_path, monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("SUPABASE_URL=https://project.supabase.co\nHOST=0.0.0.0\nPORT=8000\n")

    settings = Settings(_env_file=env_file)

    assert settings.supabase_url == "https://project.supabase.co"
    assert not hasattr(settings, "port")
