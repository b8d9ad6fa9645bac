"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

import re
import warnings
from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./data/cafe_costing.db"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # Day boundaries for daily snapshots are computed in this zone
    business_timezone: str = "Asia/Riyadh"
    currency: str = "SAR"

    # ==========================================================================
    # Tax invoices
    # ==========================================================================
    vat_rate: Decimal = Decimal("0.15")
    seller_name: str = "CLUNY CAFE"
    seller_name_en: str = "CLUNY CAFE"
    seller_vat_number: str = "311234567890003"
    seller_address: str = "الرياض، المملكة العربية السعودية"
    seller_city: str = "الرياض"
    seller_country: str = "SA"
    seller_cr_number: str = ""
    seller_building_number: str = ""
    seller_postal_code: str = ""
    seller_district: str = ""

    # Bounded retry for unique-constraint collisions
    invoice_max_retries: int = 3
    recipe_max_retries: int = 3

    # Exports
    export_dir: str = "./data/exports"

    # ==========================================================================
    # Accounting snapshot scheduler
    # ==========================================================================
    snapshot_scheduler_enabled: bool = False
    snapshot_interval_seconds: int = 86400
    snapshot_tenant_id: str = "default"
    snapshot_branch_ids: str = ""

    @field_validator("vat_rate")
    @classmethod
    def validate_vat_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v >= 1:
            raise ValueError("VAT_RATE must be a fraction in [0, 1), e.g. 0.15")
        return v

    @field_validator("seller_vat_number")
    @classmethod
    def validate_seller_vat_number(cls, v: str) -> str:
        if not re.fullmatch(r"3\d{13}3", v.replace(" ", "")):
            warnings.warn(
                f"SELLER_VAT_NUMBER '{v}' is not a valid 15-digit Saudi VAT number.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @property
    def snapshot_branch_list(self) -> List[str]:
        """Parse the configured snapshot branches into a list."""
        return [b.strip() for b in self.snapshot_branch_ids.split(",") if b.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
