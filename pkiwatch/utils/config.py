"""
Configuration management for pkiwatch.
Handles loading and validation of environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CRL_WARNING_HOURS = 3

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class Config:
    """Monitoring configuration"""
    # Endpoints, each list in display order
    urls: List[str] = field(default_factory=list)
    dns_hosts: List[str] = field(default_factory=list)
    crl_urls: List[str] = field(default_factory=list)

    # Alert thresholds
    crl_warning_threshold_hours: int = DEFAULT_CRL_WARNING_HOURS

    # Probe timeouts (seconds)
    url_timeout: float = 5
    crl_timeout: float = 10
    dns_timeout: float = 5
    ping_timeout: float = 3

    # Concurrency and scheduling
    max_workers: int = 8
    check_interval: int = 300  # 5 minutes

    # Logging
    log_level: str = 'INFO'


def _split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated variable, dropping empty items"""
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


def _read_number(name: str, default: str, convert=int):
    raw = os.getenv(name, default)
    try:
        return convert(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw!r}")


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Optional:
        MONITOR_URLS: Comma-separated URLs to probe
        MONITOR_DNS_HOSTS: Comma-separated hostnames to resolve
        MONITOR_CRL_URLS: Comma-separated CRL distribution points
        CRL_WARNING_HOURS: Warn when a CRL's nextUpdate is closer than this
        URL_TIMEOUT, CRL_TIMEOUT, DNS_TIMEOUT, PING_TIMEOUT: Timeouts in seconds
        MAX_WORKERS: Maximum concurrent checks
        CHECK_INTERVAL: Seconds between full runs when watching
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Config object

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    config = Config(
        urls=_split_list(os.getenv('MONITOR_URLS')),
        dns_hosts=_split_list(os.getenv('MONITOR_DNS_HOSTS')),
        crl_urls=_split_list(os.getenv('MONITOR_CRL_URLS')),
        crl_warning_threshold_hours=_read_number('CRL_WARNING_HOURS', str(DEFAULT_CRL_WARNING_HOURS)),
        url_timeout=_read_number('URL_TIMEOUT', '5', float),
        crl_timeout=_read_number('CRL_TIMEOUT', '10', float),
        dns_timeout=_read_number('DNS_TIMEOUT', '5', float),
        ping_timeout=_read_number('PING_TIMEOUT', '3', float),
        max_workers=_read_number('MAX_WORKERS', '8'),
        check_interval=_read_number('CHECK_INTERVAL', '300'),
        log_level=os.getenv('LOG_LEVEL', 'INFO')
    )

    logger.info(
        f"Configuration loaded: {len(config.urls)} URLs, "
        f"{len(config.dns_hosts)} DNS hosts, {len(config.crl_urls)} CRLs"
    )

    return config


def validate_config(config: Config) -> bool:
    """
    Validate configuration values.

    Args:
        config: Config object

    Returns:
        True if valid, False otherwise
    """
    if config.crl_warning_threshold_hours < 0:
        logger.error("crl_warning_threshold_hours must not be negative")
        return False

    for name in ('url_timeout', 'crl_timeout', 'dns_timeout', 'ping_timeout'):
        if getattr(config, name) <= 0:
            logger.error(f"{name} must be positive")
            return False

    if config.max_workers < 1:
        logger.error("max_workers must be at least 1")
        return False

    if config.check_interval <= 0:
        logger.error("check_interval must be positive")
        return False

    if not (config.urls or config.dns_hosts or config.crl_urls):
        logger.warning("No endpoints configured, runs will produce empty reports")

    # Check log level is valid
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config.log_level.upper() not in valid_log_levels:
        logger.error(f"Invalid log level: {config.log_level}")
        return False

    logger.info("Configuration validation passed")
    return True


def configure_logging(level: str = 'INFO'):
    """Apply the standard log format at the given level"""
    logging.basicConfig(format=LOG_FORMAT, level=level.upper())
    logging.getLogger().setLevel(level.upper())
