from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_BASE_URL = "https://api.x.ai/v1"
API_KEY_ENV_NAMES = ("XAI_API_KEY", "API_KEY")


@dataclass(frozen=True)
class Settings:
    discord_token: str
    xai_api_key: str
    xai_base_url: str
    chat_model: str
    vision_model: str
    image_model: str
    owner_user_id: int
    store_path: Path
    prompts_dir: Path
    user_cooldown_ms: int = 2500
    max_messages_per_second: int = 8
    history_limit: int = 15
    max_images: int = 5
    queue_notice_depth: int = 5
    user_daily_image_limit: int = 1
    guild_daily_image_limit: int = 10
    http_timeout_sec: float = 60.0

    @staticmethod
    def load() -> "Settings":
        values = _parse_passwords_file(Path("passwords.txt"))
        token = values.get("DISCORD_TOKEN", "").strip()
        if not token:
            raise RuntimeError("DISCORD_TOKEN is required in passwords.txt.")
        api_key = values.get("XAI_API_KEY", "").strip()
        if not api_key:
            for name in API_KEY_ENV_NAMES:
                api_key = os.environ.get(name, "").strip()
                if api_key:
                    break
        return Settings(
            discord_token=token,
            xai_api_key=api_key,
            xai_base_url=values.get("XAI_BASE_URL", DEFAULT_BASE_URL).strip(),
            chat_model=values.get("CHAT_MODEL", "grok-3-mini").strip(),
            vision_model=values.get("VISION_MODEL", "grok-2-vision-1212").strip(),
            image_model=values.get("IMAGE_MODEL", "grok-2-image").strip(),
            owner_user_id=_int_value(values, "OWNER_USER_ID", 0),
            store_path=Path(values.get("STORE_PATH", "data/gork_v1.msgpack")),
            prompts_dir=Path(values.get("PROMPTS_DIR", "prompts")),
            user_cooldown_ms=_int_value(values, "USER_COOLDOWN_MS", 2500),
            max_messages_per_second=max(1, _int_value(values, "MAX_MESSAGES_PER_SECOND", 8)),
            history_limit=_int_value(values, "HISTORY_LIMIT", 15),
            max_images=_int_value(values, "MAX_IMAGES", 5),
            queue_notice_depth=_int_value(values, "QUEUE_NOTICE_DEPTH", 5),
            user_daily_image_limit=_int_value(values, "USER_DAILY_IMAGE_LIMIT", 1),
            guild_daily_image_limit=_int_value(values, "GUILD_DAILY_IMAGE_LIMIT", 10),
            http_timeout_sec=float(values.get("HTTP_TIMEOUT_SEC", "60") or 60),
        )


def _int_value(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        raise RuntimeError("passwords.txt not found. Copy passwords.example.txt to passwords.txt and fill values.")
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values
