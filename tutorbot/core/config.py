import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _env_int_list(name: str) -> tuple[int, ...]:
    raw = (os.getenv(name) or "").strip()
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.lstrip("-").isdigit():
            raise RuntimeError(f"{name} must be a comma-separated list of ids, got {part!r}")
        ids.append(int(part))
    return tuple(ids)


def make_async_db_url(url: str) -> str:
    """Accepts Railway-style DATABASE_URL and returns sqlalchemy async url."""
    if url.startswith("postgresql+asyncpg://") or url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    raise RuntimeError("Unsupported DATABASE_URL format")


@dataclass(frozen=True)
class Settings:
    bot_token: str
    # public username, used to build referral deep links
    bot_username: str = "JU1confessionbot"
    database_url: str = "sqlite+aiosqlite:///./tutorbot.db"

    # admin allow-list
    admin_ids: tuple[int, ...] = ()

    # business defaults
    registration_fee: int = 500
    referral_reward: int = 30
    min_referrals_for_withdraw: int = 4
    leaderboard_size: int = 10
    currency: str = "ETB"

    # Transport
    # webhook mode when webhook_url is set, long polling otherwise
    webhook_url: str | None = None
    webhook_path: str = "/webhook"
    webhook_secret: str | None = None
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # bounds for external calls
    notify_timeout_seconds: int = 10
    event_timeout_seconds: int = 30

    run_migrations: bool = True

    @property
    def min_withdrawal(self) -> int:
        return self.min_referrals_for_withdraw * self.referral_reward

    def is_admin(self, tg_id: int) -> bool:
        return int(tg_id) in self.admin_ids


def load_settings() -> Settings:
    bot_token = (os.getenv("BOT_TOKEN") or "").strip()
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is missing")

    database_url_raw = (os.getenv("DATABASE_URL") or "").strip() or "sqlite+aiosqlite:///./tutorbot.db"

    return Settings(
        bot_token=bot_token,
        bot_username=(os.getenv("BOT_USERNAME") or "JU1confessionbot").strip().lstrip("@"),
        database_url=make_async_db_url(database_url_raw),
        admin_ids=_env_int_list("ADMIN_IDS"),
        registration_fee=_env_int("REGISTRATION_FEE", 500),
        referral_reward=_env_int("REFERRAL_REWARD", 30),
        min_referrals_for_withdraw=_env_int("MIN_REFERRALS_FOR_WITHDRAW", 4),
        leaderboard_size=_env_int("LEADERBOARD_SIZE", 10),
        currency=(os.getenv("CURRENCY") or "ETB").strip(),
        webhook_url=(os.getenv("WEBHOOK_URL") or "").strip() or None,
        webhook_path=(os.getenv("WEBHOOK_PATH") or "/webhook").strip(),
        webhook_secret=(os.getenv("WEBHOOK_SECRET") or "").strip() or None,
        web_host=(os.getenv("WEB_HOST") or "0.0.0.0").strip(),
        web_port=_env_int("PORT", 8080),
        notify_timeout_seconds=_env_int("NOTIFY_TIMEOUT_SECONDS", 10),
        event_timeout_seconds=_env_int("EVENT_TIMEOUT_SECONDS", 30),
        run_migrations=_env_bool("RUN_MIGRATIONS", True),
    )
