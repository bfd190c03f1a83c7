"""
Configuration Management for dockwarden
Centralizes all environment-based configuration and logging setup
"""

import os
import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional, Tuple


class DockerTransportFilter(logging.Filter):
    """Filter out per-request connection chatter from the docker SDK transport"""
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG:
            return True
        message = record.getMessage()
        # urllib3 logs every socket request at DEBUG, e.g.
        # 'http://localhost:None "GET /v1.44/containers/json?all=1 HTTP/1.1" 200 None'
        if '"GET /v1.' in message or '"POST /v1.' in message or 'Starting new HTTP' in message:
            return False
        return True


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers so repeated runs don't leak file descriptors
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = getattr(logging, (level or 'INFO').upper(), logging.INFO)
    root_logger.setLevel(log_level)

    # Console handler for stdout
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'dockwarden.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    logging.getLogger("urllib3.connectionpool").addFilter(DockerTransportFilter())


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(',') if item.strip())


@dataclass
class UpdaterConfig:
    """Process-level tunables for the auto-update orchestrator"""

    # Image pull: idle timer resets on every progress event, total timer does not
    pull_idle_timeout: float = 60.0
    pull_total_timeout: float = 600.0

    # Health gate for freshly started containers
    health_check_timeout: float = 60.0
    health_check_interval: float = 2.0

    # Seconds the daemon waits before killing a stopping container
    stop_timeout: int = 10

    # Max image IDs remembered per image name
    history_max_len: int = 50

    # Containers whose image or name contains one of these are never touched
    protected_patterns: Tuple[str, ...] = ('dockwarden',)

    # Tags for which an unchanged registry digest skips the pull
    digest_check_tags: Tuple[str, ...] = ('latest',)

    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'UpdaterConfig':
        """Build configuration from DOCKWARDEN_* environment variables"""
        defaults = cls()
        return cls(
            pull_idle_timeout=_env_float('DOCKWARDEN_PULL_IDLE_TIMEOUT', defaults.pull_idle_timeout),
            pull_total_timeout=_env_float('DOCKWARDEN_PULL_TOTAL_TIMEOUT', defaults.pull_total_timeout),
            health_check_timeout=_env_float('DOCKWARDEN_HEALTH_TIMEOUT', defaults.health_check_timeout),
            health_check_interval=_env_float('DOCKWARDEN_HEALTH_INTERVAL', defaults.health_check_interval),
            stop_timeout=_env_int('DOCKWARDEN_STOP_TIMEOUT', defaults.stop_timeout),
            history_max_len=_env_int('DOCKWARDEN_HISTORY_MAX_LEN', defaults.history_max_len),
            protected_patterns=_env_list('DOCKWARDEN_PROTECTED_PATTERNS', defaults.protected_patterns),
            digest_check_tags=_env_list('DOCKWARDEN_DIGEST_CHECK_TAGS', defaults.digest_check_tags),
            log_level=os.getenv('DOCKWARDEN_LOG_LEVEL', defaults.log_level),
        )

    def validate(self) -> bool:
        """Validate configuration"""
        if self.pull_idle_timeout <= 0 or self.pull_total_timeout <= 0:
            raise ValueError(
                f"Pull timeouts must be positive: idle={self.pull_idle_timeout} total={self.pull_total_timeout}"
            )

        if self.health_check_timeout <= 0 or self.health_check_interval <= 0:
            raise ValueError(
                f"Health check timing must be positive: timeout={self.health_check_timeout} "
                f"interval={self.health_check_interval}"
            )

        if self.stop_timeout < 0:
            raise ValueError(f"Stop timeout cannot be negative: {self.stop_timeout}")

        if self.history_max_len < 1:
            raise ValueError(f"History length must be at least 1: {self.history_max_len}")

        return True
