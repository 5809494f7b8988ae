"""
docapi core settings provider
"""

import os
import sys
import json
import functools
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import pydantic_settings
from pydantic.fields import FieldInfo

from .schemas import config


SETTINGS_CREATE_NONEXISTENT: bool = False
"""
switch to create a new configuration file if no existing file has been found
"""

SETTINGS_EXIT_ON_ERROR: bool = False
"""
switch to call ``exit(1)`` if no config file has been found (use all defaults otherwise)
"""

SETTINGS_LOG_ERROR_FUNCTION: Optional[Callable[[str], Any]] = functools.partial(print, file=sys.stderr)
"""
optional function to accept log messages on failure
"""

SETTINGS_LOG_INFO_FUNCTION: Optional[Callable[[str], Any]] = None
"""
optional function to accept log messages when creating a new configuration file
"""

CONFIG_PATHS: List[str] = ["config.json", os.path.join("..", "config.json")]
"""
list of search paths for the config file, can be overwritten by the env variable ``CONFIG_PATH``
"""

if os.environ.get("CONFIG_PATH"):
    CONFIG_PATHS = [os.environ.get("CONFIG_PATH")]


def get_db_from_env(db_override: Optional[str] = None) -> Optional[str]:
    if db_override:
        return db_override
    return os.environ.get("DATABASE_CONNECTION", os.environ.get("DATABASE__CONNECTION", None))


class ConfigFileSettingsSource(pydantic_settings.PydanticBaseSettingsSource):
    """
    Settings source reading the first existing JSON file of ``CONFIG_PATHS``
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        return read_settings_from_file()


class Settings(pydantic_settings.BaseSettings, config.CoreConfig):
    """
    docapi core settings

    Do not change most of the settings at runtime, since this might lead to unspecified
    behavior. Always restart the server after changing the config file. Values are read
    from the init arguments, the environment (nested keys delimited by ``__``, e.g.
    ``GENERAL__MAX_PAGE_SIZE``), the ``.env`` file and the JSON config file, in this order.
    """

    model_config = pydantic_settings.SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
            cls,
            settings_cls: Type[pydantic_settings.BaseSettings],
            init_settings: pydantic_settings.PydanticBaseSettingsSource,
            env_settings: pydantic_settings.PydanticBaseSettingsSource,
            dotenv_settings: pydantic_settings.PydanticBaseSettingsSource,
            file_secret_settings: pydantic_settings.PydanticBaseSettingsSource
    ) -> Tuple[pydantic_settings.PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, dotenv_settings, ConfigFileSettingsSource(settings_cls)


def store_configuration(conf: Optional[config.CoreConfig] = None, path: Optional[str] = None) -> config.CoreConfig:
    p = path or os.path.abspath(CONFIG_PATHS[0])
    conf = conf or get_default_core_config(get_db_from_env())
    with open(p, "w") as f:
        json.dump(conf.model_dump(mode="json", by_alias=True), f, indent=4)
    SETTINGS_LOG_INFO_FUNCTION and SETTINGS_LOG_INFO_FUNCTION(f"A new config file has been created as {p!r}.")
    return conf


def read_settings_from_file() -> Dict[str, Any]:
    for path in CONFIG_PATHS:
        if os.path.exists(path):
            with open(path, "r", encoding="UTF-8") as file:
                return json.load(file)

    if SETTINGS_CREATE_NONEXISTENT:
        return store_configuration().model_dump(mode="json", by_alias=True)

    if SETTINGS_EXIT_ON_ERROR:
        if SETTINGS_LOG_ERROR_FUNCTION:
            SETTINGS_LOG_ERROR_FUNCTION(
                "No config file found! Use the 'init' command to create a basic configuration file."
            )
        sys.exit(1)
    return {}


def get_default_core_config(database_override: Optional[str] = None) -> config.CoreConfig:
    c = config.CoreConfig(
        general=config.GeneralConfig(),
        server=config.ServerConfig(),
        auth=config.AuthConfig(),
        logging=config.LoggingConfig(),
        database=config.DatabaseConfig()
    )
    if database_override:
        c.database.connection = database_override
    return c
