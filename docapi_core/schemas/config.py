"""
Special schemas for the configuration file and its properties
"""

import secrets
from typing import Dict, List, Optional, Union

import pydantic


class GeneralConfig(pydantic.BaseModel):
    default_page_size: pydantic.PositiveInt = 100
    max_page_size: pydantic.PositiveInt = 250
    default_cache_lifespan: pydantic.NonNegativeFloat = 1.0
    callbacks: List[str] = []

    @pydantic.model_validator(mode="after")
    def enforce_page_size_bounds(self):
        if self.default_page_size > self.max_page_size:
            raise ValueError("Field 'default_page_size' must not exceed 'max_page_size'")
        return self


class ServerConfig(pydantic.BaseModel):
    host: str = "127.0.0.1"
    port: pydantic.conint(gt=0, lt=65536) = 8000
    public_base_url: Optional[str] = None


class AuthConfig(pydantic.BaseModel):
    secret: str = pydantic.Field(default_factory=lambda: secrets.token_hex(32))
    algorithm: str = "HS256"
    token_lifetime: pydantic.PositiveInt = 120


class DatabaseConfig(pydantic.BaseModel):
    connection: str = "memory://"
    debug_sql: bool = False


class CacheConfig(pydantic.BaseModel):
    enable: bool = True
    lifespan: Optional[pydantic.NonNegativeFloat] = None
    invalidate_on_write: bool = False


class ResourceConfig(pydantic.BaseModel):
    root: pydantic.constr(min_length=1, max_length=255)
    collection_name: pydantic.constr(min_length=1, max_length=255)
    schema_name: Optional[pydantic.constr(max_length=255)] = None
    schema_path: Optional[str] = pydantic.Field(None, alias="schema")
    permissions_scope: Optional[str] = None
    cache: CacheConfig = pydantic.Field(default_factory=CacheConfig)

    model_config = pydantic.ConfigDict(populate_by_name=True)

    @pydantic.field_validator("root")
    def enforce_leading_slash(cls, value: str) -> str:  # noqa
        if not value.startswith("/"):
            value = "/" + value
        return value.rstrip("/") or "/"


class LoggingConfig(pydantic.BaseModel):
    version: pydantic.conint(ge=1, le=1) = 1
    disable_existing_loggers: bool = False
    incremental: bool = False
    filters: Dict[str, Dict[str, Union[str, list]]] = {
        "sqlalchemy_no_debug": {
            "()": "docapi_core.misc.logger.NoDebugFilter",
            "name": "sqlalchemy.engine"
        }
    }
    formatters: Dict[str, Dict[str, str]] = {
        "default": {
            "style": "{",
            "format": "{asctime}: docapi {process}: [{levelname}] {name}: {message}",
            "datefmt": "%d.%m.%Y %H:%M:%S"
        },
        "file": {
            "style": "{",
            "format": "{asctime} ({process}): [{levelname}] {name}: {message}",
            "datefmt": "%d.%m.%Y %H:%M"
        }
    }
    loggers: Dict[str, dict] = {}
    handlers: Dict[str, Dict[str, Union[str, list]]] = {
        "default": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "default",
            "filters": ["sqlalchemy_no_debug"]
        }
    }
    root: dict = {
        "level": "INFO",
        "handlers": ["default"]
    }


class CoreConfig(pydantic.BaseModel):
    general: GeneralConfig = pydantic.Field(default_factory=GeneralConfig)
    server: ServerConfig = pydantic.Field(default_factory=ServerConfig)
    auth: AuthConfig = pydantic.Field(default_factory=AuthConfig)
    database: DatabaseConfig = pydantic.Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = pydantic.Field(default_factory=LoggingConfig)
    resources: List[ResourceConfig] = []

    @pydantic.field_validator("resources")
    def enforce_resource_constraints(
            cls,  # noqa
            value: List[ResourceConfig]
    ):
        if len({v.root.lower() for v in value}) != len(value):
            raise ValueError("Field 'root' must be unique")
        return value
