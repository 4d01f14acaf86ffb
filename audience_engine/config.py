"""
Configuration management for the Audience Engine
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, ValidationError
from loguru import logger

from .exceptions import ConfigurationError


ENV_PREFIX = "AUDIENCE_ENGINE_"


class AudienceEngineConfig(BaseModel):
    """Configuration model for the Audience Engine"""

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="<green>{time:HH:mm:ss}</green> | <level>{level}</level> | {message}",
        description="Console log format"
    )
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    log_rotation: str = Field(default="10 MB", description="Log rotation size")
    log_retention: str = Field(default="30 days", description="Log retention period")
    configure_logging: bool = Field(default=True, description="Install log sinks when the engine starts")

    # Compilation settings
    enable_caching: bool = Field(default=True, description="Cache compiled expressions")
    cache_size: int = Field(default=256, gt=0, description="Maximum number of cached expressions")
    strict_gates: bool = Field(default=True, description="Reject a missing gate between two rules")
    allow_relative_dates: bool = Field(default=True, description="Accept values such as '90 days ago'")

    # Evaluation settings
    case_sensitive_contains: bool = Field(default=False, description="Match 'contains' case-sensitively")

    # Output settings
    empty_summary_text: str = Field(default="All customers", description="Summary of an empty rule sequence")


class ConfigManager:
    """Configuration manager for the Audience Engine"""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Path to configuration file
        """
        self.config_file = config_file or "audience_engine_config.json"
        self._config = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file, then environment, then defaults"""
        try:
            if Path(self.config_file).exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                self._config = AudienceEngineConfig(**config_data)
            else:
                self._config = AudienceEngineConfig(**self.get_environment_config())

        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load configuration: {e}")
            self._config = AudienceEngineConfig()

    def get_config(self) -> AudienceEngineConfig:
        """Get current configuration"""
        return self._config

    def update_config(self, **kwargs) -> None:
        """Update configuration with new values"""
        unknown = [key for key in kwargs if key not in AudienceEngineConfig.model_fields]
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")

        data = self._config.model_dump()
        data.update(kwargs)
        try:
            self._config = AudienceEngineConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def save_config(self) -> None:
        """Save current configuration to file"""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self._config.model_dump(), f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save configuration: {e}")

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults"""
        self._config = AudienceEngineConfig()

    def validate_config(self) -> Dict[str, Any]:
        """Validate current configuration"""
        validation_results = {
            'valid': True,
            'warnings': [],
            'errors': []
        }

        valid_log_levels = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        if self._config.log_level.upper() not in valid_log_levels:
            validation_results['errors'].append(f"Invalid log level: {self._config.log_level}")
            validation_results['valid'] = False

        if not self._config.empty_summary_text.strip():
            validation_results['warnings'].append("empty_summary_text is blank")

        if self._config.log_file:
            log_dir = Path(self._config.log_file).parent
            if not log_dir.exists():
                validation_results['warnings'].append(f"Log directory does not exist: {log_dir}")

        if not self._config.strict_gates:
            validation_results['warnings'].append("strict_gates disabled: missing gates default to AND")

        return validation_results

    def get_environment_config(self) -> Dict[str, str]:
        """Get configuration from environment variables"""
        env_config = {}

        for field_name in AudienceEngineConfig.model_fields:
            env_var_name = f"{ENV_PREFIX}{field_name.upper()}"
            env_value = os.getenv(env_var_name)

            if env_value is not None:
                env_config[field_name] = env_value

        return env_config


# Global configuration instance
config_manager = ConfigManager()


def get_config() -> AudienceEngineConfig:
    """Get the global configuration instance"""
    return config_manager.get_config()


def update_config(**kwargs) -> None:
    """Update the global configuration"""
    config_manager.update_config(**kwargs)


def save_config() -> None:
    """Save the global configuration"""
    config_manager.save_config()
