from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/tvtracker.db"
    environment_name: str = "development"
    log_level: str = "INFO"

    session_secret: str = "change-me"
    session_max_age: int = 60 * 60 * 24 * 7
    https_only: bool = False

    catalog_base_url: str = "https://api.tvmaze.com"
    catalog_timeout_ms: int = 10000
    max_initial_episodes: int = 2000

    rp_id: str = "localhost"
    rp_name: str = "TV Tracker"
    rp_origin: str = "http://localhost:8000"

    public_url: str = "http://localhost:8000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_email: str = ""
    smtp_password: str = ""

    model_config = SettingsConfigDict(env_prefix="TVTRACKER_")


class FeatureFlags(BaseSettings):
    """Boolean feature toggles, all read from the environment."""

    maintenance_mode: bool = False
    signup_disabled: bool = False
    fetch_from_source: bool = True
    search: bool = True
    add_show: bool = True
    password_change: bool = True
    delete_account: bool = True
    plex: bool = True
    passkey_registration: bool = True
    upcoming_route: bool = True
    recently_watched_route: bool = True
    stats_route: bool = True
    mark_all_as_watched: bool = True
    archive: bool = True

    model_config = SettingsConfigDict(env_prefix="TVTRACKER_FLAG_")


settings = Settings()
flags = FeatureFlags()


def is_enabled(flag: str) -> bool:
    """Evaluate a feature flag by name, unknown flags are off."""
    return bool(getattr(flags, flag, False))
