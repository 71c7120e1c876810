from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# Get the directory where this config.py file is located
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"  # repository root .env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # SSH listener
    ssh_host: str = "0.0.0.0"
    ssh_port: int = 23234
    ssh_host_key: str = "ssh_host_ed25519"  # generated on first start if missing

    # Exchange feed
    feed_url: str = "wss://stream.binance.com:9443/ws/btcusdt@miniTicker"

    # Per-session buffers
    queue_capacity: int = 256
    history_capacity: int = 1800

    # Connection liveness (seconds)
    keepalive_interval: float = 45.0
    read_deadline: float = 90.0
    ping_write_timeout: float = 5.0

    # Reconnect backoff: min(cap, base ** min(failures, exponent_cap))
    backoff_cap: float = 30.0
    backoff_base: float = 2.0
    backoff_exponent_cap: int = 6

    # Display
    pair_label: str = "BTC/USDT"
    primary_unit: str = "usdt"
    secondary_unit: str = "czk"  # empty to hide the converted value line
    secondary_rate: float = 21.0
    color_system: str = "truecolor"  # rich color system: standard | 256 | truecolor

    log_level: str = "INFO"

    def get_units(self) -> list[tuple[str, float]]:
        """Return (unit suffix, conversion rate) pairs for the value lines."""
        units = [(self.primary_unit, 1.0)]
        if self.secondary_unit.strip():
            units.append((self.secondary_unit.strip(), self.secondary_rate))
        return units


def get_settings() -> Settings:
    return Settings()
