"""
Upload Configuration Loader
Loads S3 client, transfer and retry settings from configs/upload.yaml

Environment variables override the YAML where noted; a missing file falls
back to built-in defaults.
"""
import os
import yaml
from pathlib import Path
from typing import Dict, Any

from logship.exceptions import ConfigurationError
from logship.storage.retry import RetryPolicy

DEFAULT_API_ENDPOINT = 'https://api.hycos.ai'
DEFAULT_PATH_PREFIX = 'logs'

_DEFAULTS: Dict[str, Dict[str, Any]] = {
    'client': {
        'region_name': 'us-east-1',
        'max_pool_connections': 10,
        'retries': {'mode': 'adaptive', 'total_max_attempts': 3},
    },
    'transfer': {
        'part_size_mb': 5,
        'queue_size': 4,
    },
    'retry': {
        'max_attempts': 3,
        'initial_delay_ms': 1000,
        'max_delay_ms': 10000,
        'backoff_factor': 2,
    },
    'upload': {
        'path_prefix': DEFAULT_PATH_PREFIX,
        'slice_pause_ms': 100,
    },
}


class UploadConfig:

    def __init__(self, config_path: str = "configs/upload.yaml"):
        """
        Initialize the config loader.

        :param config_path: Path to upload.yaml
        """
        self.config_path = Path(config_path)
        self._config = None

    def load(self):
        """Load configuration from upload.yaml, or defaults when the file is absent"""
        if not self.config_path.exists():
            self._config = {}
            return
        try:
            with open(self.config_path, 'r') as f:
                self._config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
        if not isinstance(self._config, dict):
            raise ConfigurationError(f"{self.config_path} must contain a mapping")

    def _section(self, name: str) -> Dict[str, Any]:
        if self._config is None:
            self.load()
        loaded = (self._config or {}).get(name) or {}
        return {**_DEFAULTS[name], **loaded}

    @property
    def client(self) -> Dict[str, Any]:
        """Get boto3 client config"""
        return self._section('client')

    @property
    def transfer(self) -> Dict[str, Any]:
        """Get multi-part transfer config"""
        return self._section('transfer')

    @property
    def part_size(self) -> int:
        return int(self.transfer['part_size_mb']) * 1024 * 1024

    @property
    def queue_size(self) -> int:
        return int(self.transfer['queue_size'])

    @property
    def retry(self) -> Dict[str, Any]:
        """Get retry config"""
        return self._section('retry')

    def retry_policy(self) -> RetryPolicy:
        cfg = self.retry
        try:
            return RetryPolicy(
                max_attempts=int(cfg['max_attempts']),
                initial_delay_ms=float(cfg['initial_delay_ms']),
                max_delay_ms=float(cfg['max_delay_ms']),
                backoff_factor=float(cfg['backoff_factor']),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid retry configuration: {e}") from e

    @property
    def path_prefix(self) -> str:
        """Get object key prefix from environment or config"""
        return os.getenv('LOGSHIP_PATH_PREFIX') or self._section('upload')['path_prefix']

    @property
    def slice_pause(self) -> float:
        """Pause between concurrency slices, in seconds"""
        return float(self._section('upload')['slice_pause_ms']) / 1000.0

    @property
    def api_endpoint(self) -> str:
        return os.getenv('LOGSHIP_API_ENDPOINT', DEFAULT_API_ENDPOINT)
