"""
Sidecar runtime settings using Pydantic Settings with safe access wrapper
"""
from pydantic_settings import BaseSettings
from typing import Any


class Settings(BaseSettings):
    # Application settings
    app_name: str = "InfluxDB Metrics Sidecar"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 9100

    # Reporter configuration file
    config_dir: str = "conf"
    config_filename: str = "influxdb.properties"

    # Hot reload cadence
    reload_initial_delay_seconds: int = 10
    reload_interval_seconds: int = 3
    reload_history_size: int = 100

    # Logging settings
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "influxdb_sidecar.log"
    log_file_max_bytes: int = 10485760
    log_file_backup_count: int = 10

    # Monitoring
    enable_metrics: bool = True

    class Config:
        env_prefix = "SIDECAR_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"   # allow unknown env vars without error

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.validate_settings()

    def validate_settings(self):
        """Validate critical settings on startup"""
        errors = []

        if self.environment not in ["development", "testing", "production"]:
            errors.append(f"Invalid environment: {self.environment}")

        if self.reload_initial_delay_seconds < 0:
            errors.append("Reload initial delay must not be negative")

        if self.reload_interval_seconds <= 0:
            errors.append("Reload interval must be positive")

        if not self.config_filename:
            errors.append("Configuration file name is required")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")


class SafeSettings:
    """Safe wrapper for settings with fallback defaults"""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._defaults = {
            "config_dir": "conf",
            "config_filename": "influxdb.properties",
            "reload_initial_delay_seconds": 10,
            "reload_interval_seconds": 3,
            "reload_history_size": 100,
            "log_level": "INFO",
            "log_dir": "logs",
            "environment": "production",
            "debug": False,
            "enable_metrics": True,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Safely get setting value with fallback"""
        try:
            value = getattr(self._settings, key, None)
            if value is None:
                value = self._defaults.get(key, default)
            return value
        except Exception:
            return self._defaults.get(key, default)

    def __getattr__(self, key: str) -> Any:
        """Proxy attribute access with safety"""
        return self.get(key)

    @property
    def raw(self) -> Settings:
        """Get raw settings object"""
        return self._settings


# Initialize settings with safety wrapper
_raw_settings = Settings()
settings = SafeSettings(_raw_settings)
