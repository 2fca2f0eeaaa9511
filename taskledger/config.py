import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigError


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    telegram_token: str = ""
    admin_id: Optional[int] = None
    admin_pass: str = "adminpass"
    bot_username: str = "YOUR_BOT_USERNAME"
    referral_bonus: Decimal = Decimal("5")
    log_level: str = "INFO"

    @property
    def bot_enabled(self) -> bool:
        return bool(self.telegram_token)

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv()

        try:
            port = int(os.getenv("PORT", "3000").strip())
        except ValueError:
            raise ConfigError("PORT must be an integer", details={"PORT": os.getenv("PORT")})

        admin_raw = os.getenv("ADMIN_ID", "").strip()
        try:
            admin_id = int(admin_raw) if admin_raw else None
        except ValueError:
            raise ConfigError("ADMIN_ID must be a numeric chat id", details={"ADMIN_ID": admin_raw})

        bonus_raw = os.getenv("REFERRAL_BONUS", "5").strip()
        try:
            referral_bonus = Decimal(bonus_raw)
        except InvalidOperation:
            raise ConfigError("REFERRAL_BONUS must be a number", details={"REFERRAL_BONUS": bonus_raw})
        if referral_bonus < 0:
            raise ConfigError("REFERRAL_BONUS cannot be negative", details={"REFERRAL_BONUS": bonus_raw})

        return Settings(
            port=port,
            telegram_token=os.getenv("TELEGRAM_TOKEN", "").strip(),
            admin_id=admin_id,
            admin_pass=os.getenv("ADMIN_PASS", "adminpass"),
            bot_username=os.getenv("BOT_USERNAME", "YOUR_BOT_USERNAME").strip() or "YOUR_BOT_USERNAME",
            referral_bonus=referral_bonus,
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
