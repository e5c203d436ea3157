"""
pkiwatch - endpoint health monitoring for URLs, DNS hosts and CRLs.
"""

from .engine import MonitoringEngine, classify_identity, create_engine
from .models import (
    CheckResult,
    CrlEndpoint,
    CrlValidity,
    CrlVerification,
    DnsEndpoint,
    DnsResolution,
    Endpoint,
    EndpointKind,
    MonitoringReport,
    PingResult,
    UrlEndpoint,
)
from .utils.config import Config, load_config, validate_config

__version__ = '0.1.0'

__all__ = [
    'MonitoringEngine',
    'create_engine',
    'classify_identity',
    'Config',
    'load_config',
    'validate_config',
    'Endpoint',
    'EndpointKind',
    'UrlEndpoint',
    'DnsEndpoint',
    'CrlEndpoint',
    'CheckResult',
    'PingResult',
    'DnsResolution',
    'CrlValidity',
    'CrlVerification',
    'MonitoringReport',
]
