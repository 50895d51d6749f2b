from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class EndpointsConfig(BaseModel):
    """Paths of the record store API, relative to ``ApiConfig.base_url``."""

    pending: str = "/cte-documentos/pendentes"
    update_status: str = "/cte-documentos/{id}/status"
    stats: str = "/cte-documentos/stats"
    setup: str = "/cte-documentos/setup"
    test_insert: str = "/cte-documentos/teste"


class ApiConfig(BaseModel):
    """Record store connection settings."""

    base_url: str = "http://localhost:3000/api"
    endpoints: EndpointsConfig = EndpointsConfig()
    check_interval: int = 60000
    fetch_limit: int = 10
    request_timeout: float = 30.0


class TasksConfig(BaseModel):
    retry_attempts: int = 3
    retry_delay: int = 2000


class XmlProcessingConfig(BaseModel):
    """Folders and timers for the XML artifact lifecycle."""

    source_folder: str = "./xml/gerados"
    cnpj_base_path: str = "./xml/cnpj"
    processed_folder: str = "processados"
    check_processed_interval: int = 30000
    processing_timeout: int = 600000


class MonitorConfig(BaseModel):
    restart_delay: int = 2000
    shutdown_timeout: int = 30000
    min_interval: int = 10000
    max_interval: int = 3600000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: Optional[str] = "./logs/app.log"
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class StoreConfig(BaseModel):
    backend: Literal["http", "inmemory"] = "http"


class CteMonitorConfig(BaseModel):
    """Top-level configuration model."""

    api: ApiConfig = ApiConfig()
    tasks: TasksConfig = TasksConfig()
    xml_processing: XmlProcessingConfig = XmlProcessingConfig()
    monitor: MonitorConfig = MonitorConfig()
    logging: LoggingConfig = LoggingConfig()
    store: StoreConfig = StoreConfig()


def load_config(path: Optional[str] = None) -> CteMonitorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CTEMONITOR_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CTEMONITOR_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CteMonitorConfig(**data)
    else:
        config = CteMonitorConfig()

    env_api_url = os.getenv("CTEMONITOR_API_URL")
    if env_api_url:
        config.api.base_url = env_api_url
    env_store = os.getenv("CTEMONITOR_STORE")
    if env_store:
        config.store.backend = env_store.lower()
    env_level = os.getenv("CTEMONITOR_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level.upper()
    return config
