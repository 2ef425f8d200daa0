"""
Engine configuration parameters for SwapMatch.

Defines auction timing rules, sweep cadence, and storage locations.
Values can be overridden through SWAPMATCH_* environment variables or a
.env file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


ENV_PREFIX = "SWAPMATCH_"


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters"""

    # Auction timing
    min_auction_lead_days: int = 7  # Event must be at least this far away
    min_auto_select_hours: int = 1  # Smallest allowed auto-select window

    # Sweeper
    sweep_interval_seconds: float = 60.0  # PeriodicSweeper tick
    convert_near_event: bool = True  # Convert auctions whose event is too close

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    db_name: str = "swapmatch.db"

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    def ensure_dirs(self) -> None:
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _env(name: str) -> Optional[str]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(raw: str) -> bool:
    return raw.lower() in ("1", "true", "yes", "on")


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from the environment, using defaults for unset keys.

    Args:
        env_file: Optional path to a .env file. When omitted, python-dotenv
            searches the working directory for one.

    Returns:
        EngineConfig instance

    Raises:
        ValueError: If a variable is set but cannot be parsed
    """
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    cfg = EngineConfig()

    raw = _env("MIN_AUCTION_LEAD_DAYS")
    if raw is not None:
        cfg.min_auction_lead_days = int(raw)

    raw = _env("MIN_AUTO_SELECT_HOURS")
    if raw is not None:
        cfg.min_auto_select_hours = int(raw)

    raw = _env("SWEEP_INTERVAL_SECONDS")
    if raw is not None:
        cfg.sweep_interval_seconds = float(raw)

    raw = _env("CONVERT_NEAR_EVENT")
    if raw is not None:
        cfg.convert_near_event = _env_bool(raw)

    raw = _env("DATA_DIR")
    if raw is not None:
        cfg.data_dir = Path(raw).expanduser()

    raw = _env("LOG_DIR")
    if raw is not None:
        cfg.log_dir = Path(raw).expanduser()

    raw = _env("DB_NAME")
    if raw is not None:
        cfg.db_name = raw

    if cfg.min_auction_lead_days < 0:
        raise ValueError("SWAPMATCH_MIN_AUCTION_LEAD_DAYS must be >= 0")
    if cfg.sweep_interval_seconds <= 0:
        raise ValueError("SWAPMATCH_SWEEP_INTERVAL_SECONDS must be > 0")

    return cfg
