"""
pkiwatch Monitoring Modules

This package contains the probers for URLs (with certificate capture),
CRL distribution points and DNS hostnames (with per-IP reachability).
"""

from .crl_monitor import crl_check_result, verify_crl
from .dns_monitor import resolve, resolve_with_ping
from .reachability import (
    PingCommandProbe,
    ReachabilityProbe,
    TcpReachabilityProbe,
    probe_reachability,
)
from .trust_capture import TrustCapture
from .url_monitor import certificate_warning, check_url

__all__ = [
    'TrustCapture',
    'check_url',
    'certificate_warning',
    'verify_crl',
    'crl_check_result',
    'resolve',
    'resolve_with_ping',
    'ReachabilityProbe',
    'PingCommandProbe',
    'TcpReachabilityProbe',
    'probe_reachability',
]
