from __future__ import annotations

from pathlib import Path

import pytest

from gork_v1.config import DEFAULT_BASE_URL, Settings


def test_load_reads_passwords_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "passwords.txt").write_text(
        "\n".join(
            [
                "# comment",
                "DISCORD_TOKEN=abc",
                "XAI_API_KEY=key-1",
                "OWNER_USER_ID=42",
                "USER_COOLDOWN_MS=1000",
                "MAX_MESSAGES_PER_SECOND=0",
                "HISTORY_LIMIT=oops",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    settings = Settings.load()

    assert settings.discord_token == "abc"
    assert settings.xai_api_key == "key-1"
    assert settings.xai_base_url == DEFAULT_BASE_URL
    assert settings.owner_user_id == 42
    assert settings.user_cooldown_ms == 1000
    assert settings.max_messages_per_second == 1
    assert settings.history_limit == 15
    assert settings.user_daily_image_limit == 1
    assert settings.guild_daily_image_limit == 10


def test_api_key_falls_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "passwords.txt").write_text("DISCORD_TOKEN=abc\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("XAI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "from-env")

    assert Settings.load().xai_api_key == "from-env"


def test_missing_token_is_an_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "passwords.txt").write_text("XAI_API_KEY=key\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    with pytest.raises(RuntimeError, match="DISCORD_TOKEN"):
        Settings.load()


def test_missing_passwords_file_is_an_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(RuntimeError, match="passwords.txt not found"):
        Settings.load()
