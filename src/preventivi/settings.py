"""
@file settings.py
@brief Configurazione applicativa (variabili d'ambiente PREVENTIVI_*).
@ingroup config_module
"""

from __future__ import annotations
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PREVENTIVI_", env_file=".env", extra="ignore")

    db_path: str = "data/preventivi.sqlite"
    template_name: str = "preventivo_template"

    # unica default per preventivi senza validità esplicita
    default_validity_days: int = 30

    # False: tag sconosciuti sostituiti con stringa vuota
    strict_tags: bool = True

    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
