from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./vpnstats.db"

    # OpenVPN status log (status-version 1), rewritten by the daemon
    status_log_path: str = "/etc/openvpn/server/openvpn-status.log"
    status_debounce_ms: int = 100
    # How often the watcher checks that the filesystem observer is alive (seconds)
    watch_health_interval: float = 5.0

    # Frontend URL for CORS
    frontend_url: str = "http://localhost:3000"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
