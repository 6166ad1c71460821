import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key, default)
    if value is not None and value.strip() == "":
        return default
    return value


def _get_int(key: str, default: int) -> int:
    raw = _get_env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Env var {key} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:

    app_env: str = "local"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "dm_chat"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    redis_url: Optional[str] = None

    fcm_service_account_file: Optional[str] = None
    fcm_project_id: Optional[str] = None
    fcm_android_channel_id: str = "direct_messages"

    aws_region: str = "eu-central-1"
    s3_bucket: str = "dm-chat-media"
    s3_get_ttl_sec: int = 3600
    voice_max_bytes: int = 10 * 1024 * 1024

    @property
    def push_enabled(self) -> bool:
        return bool(self.fcm_service_account_file and self.fcm_project_id)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            app_env=_get_env("APP_ENV", "local"),
            log_level=_get_env("LOG_LEVEL", "INFO"),
            log_file=_get_env("LOG_FILE"),
            mongo_uri=_get_env("MONGO_URI", "mongodb://localhost:27017"),
            mongo_db_name=_get_env("MONGO_DB_NAME", "dm_chat"),
            jwt_secret=_get_env("JWT_SECRET", "change-me"),
            jwt_algorithm=_get_env("JWT_ALGORITHM", "HS256"),
            redis_url=_get_env("REDIS_URL"),
            fcm_service_account_file=_get_env("FCM_SERVICE_ACCOUNT_FILE"),
            fcm_project_id=_get_env("FCM_PROJECT_ID"),
            fcm_android_channel_id=_get_env("FCM_ANDROID_CHANNEL_ID", "direct_messages"),
            aws_region=_get_env("AWS_REGION", "eu-central-1"),
            s3_bucket=_get_env("S3_BUCKET", "dm-chat-media"),
            s3_get_ttl_sec=_get_int("S3_GET_TTL_SEC", 3600),
            voice_max_bytes=_get_int("VOICE_MAX_BYTES", 10 * 1024 * 1024),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
