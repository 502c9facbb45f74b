"""Configuration management for the repository backup job."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = 'backup_config.json'
BUCKET_ENV_VAR = 'BACKUP_BUCKET_NAME'

logger = logging.getLogger(__name__)


class BucketConfig(BaseModel):
    """Backup bucket."""
    name: str = Field("repository-backups", min_length=3, max_length=3600,
                      pattern=r'^[a-z0-9][a-z0-9/.-]*[a-z0-9]$')
    region: Optional[str] = None


class TriggerConfig(BaseModel):
    """Which branch updates start a backup."""
    branches_to_monitor: List[str] = ["develop", "master", "main"]
    event_bus_name: str = Field("default", min_length=1)

    @field_validator('branches_to_monitor', mode='before')
    @classmethod
    def split_branches(cls, v):
        """Accept a comma-delimited string; an empty list means all branches."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(',')
        return [b.strip() for b in v if b and b.strip()]


class RetentionConfig(BaseModel):
    """Backup retention. 0 keeps backups forever."""
    retention_days: int = Field(10, ge=0)


class SourceConfig(BaseModel):
    """How repositories are cloned."""
    clone_url_template: str = "codecommit::{region}://{repository}"
    git_executable: str = "git"
    timeout_seconds: Optional[int] = Field(None, gt=0)
    pin_commit: bool = False


class ArchiveConfig(BaseModel):
    """Archive packaging settings."""
    temp_dir: Optional[str] = None
    compression_level: int = Field(6, ge=0, le=9)
    cleanup: bool = True

    @field_validator('temp_dir')
    @classmethod
    def expand_path(cls, v):
        """Expand environment variables and user home directory."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))


class UploadConfig(BaseModel):
    """S3 transfer settings."""
    multipart_threshold_mb: int = Field(100, gt=0)
    multipart_chunksize_mb: int = Field(25, gt=0)
    max_concurrency: int = Field(4, gt=0)
    use_threads: bool = True
    verify_after_upload: bool = True
    show_progress: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None


class Config(BaseModel):
    """Main configuration model."""
    bucket: BucketConfig = Field(default_factory=BucketConfig)
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from a JSON file.

    With no path, backup_config.json is used when present and defaults
    otherwise. The BACKUP_BUCKET_NAME environment variable overrides the
    configured bucket name.

    Raises:
        FileNotFoundError: if an explicit config_path does not exist
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_PATH)
        explicit = False
    else:
        config_file = Path(config_path)
        explicit = True

    if config_file.exists():
        with open(config_file, 'r') as f:
            config_data = json.load(f)
        # Drop comment keys
        config_data = {k: v for k, v in config_data.items() if not k.startswith('_')}
        config = Config(**config_data)
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    else:
        logger.debug(f"No config file at {config_file}, using defaults")
        config = Config()

    bucket_override = os.environ.get(BUCKET_ENV_VAR, '').strip()
    if bucket_override:
        config.bucket = BucketConfig(name=bucket_override, region=config.bucket.region)

    return config


def create_default_config(config_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Write a configuration file holding the defaults."""
    default_config = {
        "_comment": "Repository backup settings. Empty branches_to_monitor = all branches, "
                    "retention_days 0 = retain forever.",
        **Config().model_dump()
    }
    with open(config_path, 'w') as f:
        json.dump(default_config, f, indent=2)
    logger.info(f"Created default configuration at {config_path}")


def setup_logging(config: Config, verbose: bool = False):
    """Setup logging based on configuration.

    Logs go to stdout, which is the build log when running as a job.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.logging.file:
        log_file = Path(config.logging.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    # Quiet the AWS SDK
    for name in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)
