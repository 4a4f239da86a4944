"""Configuration management using Pydantic Settings"""

import os
from typing import Optional
from pathlib import Path
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Server configuration"""
    host: str = "0.0.0.0"
    port: int = 10000
    public_url: str = Field(default="http://localhost:10000")


class OAuthConfig(BaseSettings):
    """OAuth2 client configuration for the camera provider"""
    client_id: str = Field(default="")
    client_secret: str = Field(default="")
    redirect_uri: str = Field(default="http://localhost:10000/auth/callback")
    scope: str = "https://www.googleapis.com/auth/sdm.service"
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"
    timeout_seconds: int = 30
    safety_margin_seconds: int = 60
    refresh_max_attempts: int = 3
    refresh_initial_delay: float = 0.5


class CameraApiConfig(BaseSettings):
    """Upstream camera API configuration"""
    base_url: str = "https://smartdevicemanagement.googleapis.com/v1"
    project_id: str = Field(default="")
    timeout_seconds: int = 30


class PollingConfig(BaseSettings):
    """Poll scheduler configuration"""
    default_interval_seconds: float = 30.0
    max_interval_seconds: float = 300.0
    empty_polls_before_backoff: int = 2
    rate_limit_per_second: float = 1.0
    rate_limit_burst: int = 5
    max_workers: int = Field(default_factory=lambda: (os.cpu_count() or 1) * 4)
    tick_seconds: float = 1.0


class ClassifierConfig(BaseSettings):
    """Dishwasher cycle detection thresholds"""
    min_activity_seconds: int = 10
    quiet_threshold_seconds: int = 300
    confirm_threshold_seconds: int = 900
    dedup_window: int = 20


class BusConfig(BaseSettings):
    """Transition bus delivery configuration"""
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0


class NotifierConfig(BaseSettings):
    """Webhook notifier configuration"""
    webhook_url: str = Field(default="")
    timeout_seconds: int = 30
    rate_limit_per_second: int = 20


class StorageConfig(BaseSettings):
    """State store configuration"""
    state_file: str = "./data/dishwatch.json"


class ErrorLoggingConfig(BaseSettings):
    """Error logging configuration"""
    send_to_webhook: bool = False
    keep_in_memory: int = 100


class LoggingConfig(BaseSettings):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = "./logs/dishwatch.log"
    max_size_mb: int = 100
    backup_count: int = 5


class AppConfig(BaseSettings):
    """Main application configuration"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    camera_api: CameraApiConfig = Field(default_factory=CameraApiConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    error_logging: ErrorLoggingConfig = Field(default_factory=ErrorLoggingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


_SECTIONS = {
    "server": ServerConfig,
    "oauth": OAuthConfig,
    "camera_api": CameraApiConfig,
    "polling": PollingConfig,
    "classifier": ClassifierConfig,
    "bus": BusConfig,
    "notifier": NotifierConfig,
    "storage": StorageConfig,
    "error_logging": ErrorLoggingConfig,
    "logging": LoggingConfig,
}


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML file and environment variables

    Environment variables take precedence over YAML config

    Args:
        config_path: Path to YAML config file (default: config/config.yaml)

    Returns:
        AppConfig instance
    """
    if config_path is None:
        config_path = os.getenv("CONFIG_PATH", "config/config.yaml")

    config_file = Path(config_path)

    if not config_file.exists():
        # Return default config if file doesn't exist
        return AppConfig()

    with open(config_file, "r") as f:
        yaml_config = yaml.safe_load(f) or {}

    # Expand environment variables in YAML
    yaml_config = _expand_env_vars(yaml_config)

    config_dict = {
        name: section(**(yaml_config.get(name) or {}))
        for name, section in _SECTIONS.items()
    }

    return AppConfig(**config_dict)


def _expand_env_vars(config: dict) -> dict:
    """Recursively expand environment variables in config dict"""
    if isinstance(config, dict):
        return {k: _expand_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_expand_env_vars(item) for item in config]
    elif isinstance(config, str):
        # Expand ${VAR_NAME:default_value} or ${VAR_NAME}
        if config.startswith("${") and config.endswith("}"):
            var_expr = config[2:-1]
            if ":" in var_expr:
                var_name, default = var_expr.split(":", 1)
                return os.getenv(var_name, default)
            else:
                return os.getenv(var_expr, config)
    return config
