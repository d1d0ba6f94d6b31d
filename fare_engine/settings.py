from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).parent / "data"

class Settings(BaseSettings):
    # reference tables
    depots_path: Path = DATA_DIR / "depots.json"
    rate_card_path: Path = DATA_DIR / "rate_card.json"

    # AI-assisted estimate
    estimate_provider: Literal["hf", "rules"] = "hf"
    base_model: str = "Qwen/Qwen2.5-3B-Instruct"
    adapter_id: str | None = None
    hf_token: str | None = None
    estimate_timeout_s: float = 20.0
    estimate_max_new_tokens: int = 160

    # proximity search
    nearby_radius_km: float = 50.0
    nearby_limit: int = 5

    log_level: str = "INFO"

    # NOTE: extra="ignore" avoids validation errors if stray keys appear in .env
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
