"""
Data models for pkiwatch.

Endpoints to monitor, per-endpoint check results and the report that
collects the latest result for every configured endpoint.
"""

from dataclasses import dataclass, field, replace as dataclass_replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class EndpointKind(str, Enum):
    """Kind of monitored endpoint"""
    URL = 'url'
    DNS = 'dns'
    CRL = 'crl'


@dataclass(frozen=True)
class Endpoint:
    """Base class for a monitored target"""

    kind = None  # set by subclasses

    @property
    def identity(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class UrlEndpoint(Endpoint):
    url: str

    kind = EndpointKind.URL

    @property
    def identity(self) -> str:
        return self.url


@dataclass(frozen=True)
class DnsEndpoint(Endpoint):
    hostname: str

    kind = EndpointKind.DNS

    @property
    def identity(self) -> str:
        return self.hostname


@dataclass(frozen=True)
class CrlEndpoint(Endpoint):
    url: str

    kind = EndpointKind.CRL

    @property
    def identity(self) -> str:
        return self.url


@dataclass(frozen=True)
class CheckResult:
    """
    Result of probing one endpoint.

    is_up=True does not mean "nothing to report": a reachable URL or CRL can
    still carry an expiry warning in message. A result that is down always
    has a message.
    """
    is_up: bool
    message: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    extra: Optional[Dict[str, Any]] = None

    @classmethod
    def down(cls, message: Optional[str], **kwargs) -> 'CheckResult':
        """Build a failed result, making sure it explains itself"""
        return cls(is_up=False, message=message or 'Check failed', **kwargs)


@dataclass(frozen=True)
class PingResult:
    """Reachability outcome for a single resolved IP"""
    ip_address: str
    success: bool
    latency_ms: Optional[int]
    raw_output: str = ''


@dataclass(frozen=True)
class DnsResolution:
    """Resolution of one hostname plus per-IP reachability"""
    is_up: bool
    error_message: Optional[str]
    ip_addresses: List[str] = field(default_factory=list)
    ping_results: List[PingResult] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)


class CrlValidity(str, Enum):
    """Where the current time falls in a CRL's thisUpdate/nextUpdate window"""
    CURRENT = 'current'
    NOT_YET_VALID = 'not_yet_valid'
    EXPIRED = 'expired'


@dataclass(frozen=True)
class CrlVerification:
    """Download, parse and validity outcome of one CRL"""
    can_download: bool
    is_valid: bool
    warning_message: Optional[str]
    this_update: Optional[datetime] = None
    next_update: Optional[datetime] = None
    revoked_certificate_count: Optional[int] = None
    validity: Optional[CrlValidity] = None


@dataclass(frozen=True)
class MonitoringReport:
    """
    Ordered (endpoint, result) pairs from the latest run.

    Reports are immutable: a retest produces a new report through replace().
    """
    entries: Tuple[Tuple[Endpoint, CheckResult], ...] = ()
    generated_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Tuple[Endpoint, CheckResult]]:
        return iter(self.entries)

    @property
    def results(self) -> Dict[str, CheckResult]:
        """Results keyed by endpoint identity"""
        return {endpoint.identity: result for endpoint, result in self.entries}

    def index_of(self, identity: str) -> int:
        """Position of the entry for identity, or -1"""
        for index, (endpoint, _) in enumerate(self.entries):
            if endpoint.identity == identity:
                return index
        return -1

    def get(self, identity: str) -> Optional[CheckResult]:
        index = self.index_of(identity)
        return self.entries[index][1] if index >= 0 else None

    def replace(
        self,
        endpoint: Endpoint,
        result: CheckResult,
        generated_at: datetime
    ) -> 'MonitoringReport':
        """
        Return a copy with the entry for endpoint swapped for result.

        Order and all other entries are preserved. If the endpoint is not in
        the report, the report is returned unchanged.
        """
        index = self.index_of(endpoint.identity)
        if index < 0:
            return self

        entries = list(self.entries)
        entries[index] = (endpoint, result)
        return dataclass_replace(self, entries=tuple(entries), generated_at=generated_at)
