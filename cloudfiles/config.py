"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .transfer.options import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_PARALLEL_OPERATION_THREAD_COUNT,
    TransferOptions,
)

ENV_PREFIX = 'CLOUDFILES_'


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Config:
    """
    Client Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (CLOUDFILES_*, including a .env file)
    2. Config file (JSON)
    3. Default values
    """
    # Service
    account_url: str = ''
    sas_token: Optional[str] = None

    # Transfers
    parallel_operation_thread_count: int = DEFAULT_PARALLEL_OPERATION_THREAD_COUNT
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Integrity
    store_content_md5: bool = False
    use_transactional_md5: bool = False
    disable_md5_validation: bool = False

    # Timeouts (seconds)
    request_timeout: float = 30.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, base: Optional['Config'] = None) -> 'Config':
        """Load configuration from environment variables, on top of `base`."""
        load_dotenv()

        config = base if base is not None else cls()

        # Service
        config.account_url = os.getenv(f'{ENV_PREFIX}ACCOUNT_URL', config.account_url)
        config.sas_token = os.getenv(f'{ENV_PREFIX}SAS_TOKEN', config.sas_token)

        # Transfers
        config.parallel_operation_thread_count = int(
            os.getenv(f'{ENV_PREFIX}PARALLEL', config.parallel_operation_thread_count)
        )
        config.chunk_size = int(os.getenv(f'{ENV_PREFIX}CHUNK_SIZE', config.chunk_size))

        # Integrity
        config.store_content_md5 = _env_flag(
            f'{ENV_PREFIX}STORE_CONTENT_MD5', config.store_content_md5)
        config.use_transactional_md5 = _env_flag(
            f'{ENV_PREFIX}USE_TRANSACTIONAL_MD5', config.use_transactional_md5)
        config.disable_md5_validation = _env_flag(
            f'{ENV_PREFIX}DISABLE_MD5_VALIDATION', config.disable_md5_validation)

        config.request_timeout = float(
            os.getenv(f'{ENV_PREFIX}REQUEST_TIMEOUT', config.request_timeout)
        )

        # Logging
        config.log_level = os.getenv(f'{ENV_PREFIX}LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
        return config

    def to_dict(self, redact: bool = False) -> dict:
        """Convert to dictionary. `redact` hides the SAS token."""
        sas_token = self.sas_token
        if redact and sas_token:
            sas_token = '***'
        return {
            'account_url': self.account_url,
            'sas_token': sas_token,
            'parallel_operation_thread_count': self.parallel_operation_thread_count,
            'chunk_size': self.chunk_size,
            'store_content_md5': self.store_content_md5,
            'use_transactional_md5': self.use_transactional_md5,
            'disable_md5_validation': self.disable_md5_validation,
            'request_timeout': self.request_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def transfer_options(self, **overrides) -> TransferOptions:
        """Snapshot the transfer settings. None-valued overrides are ignored."""
        options = TransferOptions(
            parallel_operation_thread_count=self.parallel_operation_thread_count,
            chunk_size=self.chunk_size,
            store_content_md5=self.store_content_md5,
            use_transactional_md5=self.use_transactional_md5,
            disable_md5_validation=self.disable_md5_validation,
        )
        return options.with_changes(**overrides)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and Path(config_path).exists():
        config = Config.from_file(config_path)

    return Config.from_env(base=config)


# Example config file template
EXAMPLE_CONFIG = """
{
  "account_url": "https://myaccount.file.core.windows.net",
  "sas_token": "sv=2014-02-14&sr=s&sig=...",
  "parallel_operation_thread_count": 4,
  "chunk_size": 4194304,
  "store_content_md5": true,
  "use_transactional_md5": false,
  "disable_md5_validation": false,
  "request_timeout": 30.0,
  "log_level": "INFO"
}
"""
