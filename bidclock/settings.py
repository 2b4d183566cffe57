from pathlib import Path
from typing import Optional
from pydantic import BaseModel
import tomllib
import logging
import os


class VenueCfg(BaseModel):
    base_url: str = "https://www.civicsource.com"
    login_path: str = "/login/"
    auction_path: str = "/auctions/{ref}"
    username_selector: str = 'input[name="username"]'
    password_selector: str = 'input[name="password"]'
    login_submit_selector: str = 'button[type="submit"]'
    bid_input_suffix: str = "-place-bid-input"
    place_bid_selector: str = 'button[type="submit"] span[title="Place Bid"]'
    confirm_bid_selector: str = 'div.text-center button[type="submit"]'
    # read-back after the confirm click; unset keeps the two-click contract
    confirmation_selector: Optional[str] = None


class TimeoutCfg(BaseModel):
    navigation_ms: int = 60_000
    field_ms: int = 20_000
    button_ms: int = 15_000
    settle_ms: int = 3_000


class BrowserCfg(BaseModel):
    headless: bool = False


class StorageCfg(BaseModel):
    db_path: str = "data/bidclock.sqlite"


class LoggingCfg(BaseModel):
    level: str = "INFO"
    file: str = "bidclock.log"
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class Settings(BaseModel):
    venue: VenueCfg = VenueCfg()
    timeouts: TimeoutCfg = TimeoutCfg()
    browser: BrowserCfg = BrowserCfg()
    storage: StorageCfg = StorageCfg()
    logging: LoggingCfg = LoggingCfg()

    # ---- helpers -----------------------------------------------------
    @property
    def db_url(self) -> str:
        path = Path(self.storage.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path}"

    @property
    def log_level(self) -> int:
        if os.getenv("BIDCLOCK_DEBUG", "0") == "1":
            return logging.DEBUG
        return getattr(logging, self.logging.level.upper(), logging.INFO)


def load_settings() -> Settings:
    cfg_path = Path(os.getenv("BIDCLOCK_CONFIG", "bidclock.toml"))
    raw = tomllib.loads(cfg_path.read_text()) if cfg_path.exists() else {}
    return Settings.model_validate(raw)
