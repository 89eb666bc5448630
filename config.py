import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

@dataclass(frozen=True)
class Settings:
    bot_token: str
    starting_balance: int
    stake: int
    roll_delay: float
    broke_grace: float
    log_level: str

def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

def get_settings(require_token: bool = True) -> Settings:
    token = os.getenv("TELEGRAM_BOT_TOKEN") or os.getenv("BOT_TOKEN") or ""
    if require_token and not token:
        raise ValueError(
            "TELEGRAM_BOT_TOKEN (or BOT_TOKEN) is not set. Create a .env file based on .env.example."
        )

    return Settings(
        bot_token=token,
        starting_balance=_get_int("STARTING_BALANCE", 100),
        stake=_get_int("STAKE", 10),
        roll_delay=_get_float("ROLL_DELAY_SECONDS", 1.5),
        broke_grace=_get_float("BROKE_GRACE_SECONDS", 1.5),
        log_level=os.getenv("LOG_LEVEL") or "INFO",
    )
