"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from sku_vault import DEFAULT_KEYSET


class Settings(BaseSettings):
    """Settings read from ``CATALOG_*`` variables or a ``.env`` file."""

    model_config = SettingsConfigDict(env_prefix="CATALOG_", env_file=".env", env_ignore_empty=True, extra="ignore")

    database_url: str = "sqlite:///./catalog.db"
    sku_keyset: Optional[SecretStr] = None
    sku_keyset_path: Optional[str] = None
    sku_keyset_cleartext: bool = True
    require_key_at_startup: bool = True
    seed_sample_data: bool = False
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost:5173"]
    log_level: str = "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def keyset_config(self) -> dict[str, dict[str, Any]]:
        """Keyset registry configuration; empty when no key is supplied."""
        if self.sku_keyset is not None:
            return {
                DEFAULT_KEYSET: {
                    "keyset_json": self.sku_keyset.get_secret_value(),
                    "cleartext": self.sku_keyset_cleartext,
                }
            }
        if self.sku_keyset_path is not None:
            return {DEFAULT_KEYSET: {"path": self.sku_keyset_path, "cleartext": self.sku_keyset_cleartext}}
        return {}
