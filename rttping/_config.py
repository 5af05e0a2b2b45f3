from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


class Settings(BaseSettings):
    # Set by mackerel-agent when it asks the plugin for graph definitions
    mackerel_agent_plugin_meta: str = Field(default="")
    mackerel_plugin_workdir: Optional[str] = Field(default=None)
    ping_log_level: str = Field(default="WARNING")

    model_config = SettingsConfigDict(extra="ignore")

    @field_validator("mackerel_plugin_workdir", mode="before")
    @classmethod
    def empty_workdir(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("ping_log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value):
        if isinstance(value, str):
            value = value.strip().upper()
        if value not in LOG_LEVELS:
            return "WARNING"
        return value

    @property
    def meta(self) -> bool:
        return self.mackerel_agent_plugin_meta != ""


@lru_cache()
def get_settings() -> Settings:
    return Settings()
