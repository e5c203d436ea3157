"""
pkiwatch Engine - Monitoring Orchestrator
Runs the URL, DNS and CRL probers over the configured endpoints and keeps
the latest report in memory for the host application.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from .models import (
    CheckResult,
    CrlEndpoint,
    DnsEndpoint,
    DnsResolution,
    Endpoint,
    EndpointKind,
    MonitoringReport,
    UrlEndpoint,
)
from .monitors.crl_monitor import crl_check_result, verify_crl
from .monitors.dns_monitor import resolve_with_ping
from .monitors.reachability import default_probes
from .monitors.url_monitor import check_url
from .utils.config import Config, configure_logging, load_config, validate_config
from .utils.formatters import format_report, format_report_summary
from .utils.retry import describe_error

logger = logging.getLogger(__name__)

ReportCallback = Callable[[MonitoringReport], Optional[Awaitable[None]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def classify_identity(identity: str, config: Config) -> Optional[Endpoint]:
    """
    Work out which kind of endpoint an identity string refers to.

    Configured membership decides first. Otherwise the shape does: a URL
    ending in .crl is a CRL, any other URL is a URL, and a bare name is
    only a DNS host if it is configured as one.

    Returns:
        The endpoint, or None for an unknown identity
    """
    if identity in config.crl_urls:
        return CrlEndpoint(identity)
    if identity in config.urls:
        return UrlEndpoint(identity)
    if identity in config.dns_hosts:
        return DnsEndpoint(identity)

    lowered = identity.lower()
    if lowered.startswith(('http://', 'https://')):
        if lowered.endswith('.crl'):
            return CrlEndpoint(identity)
        return UrlEndpoint(identity)

    return None


def dns_check_result(resolution: DnsResolution) -> CheckResult:
    """Summarize a DNS resolution, keeping per-IP ping detail in extra"""
    extra = {
        'ip_addresses': list(resolution.ip_addresses),
        'ping_results': [
            (ping.ip_address, ping.success, ping.latency_ms)
            for ping in resolution.ping_results
        ],
        'logs': list(resolution.logs),
    }

    if not resolution.is_up:
        return CheckResult.down(resolution.error_message, extra=extra)

    return CheckResult(is_up=True, message=resolution.error_message, extra=extra)


class MonitoringEngine:
    """
    Owns the endpoint lists, the CRL warning threshold and the current report.

    The probers are injectable so a host can substitute its own
    implementations (tests do the same).
    """

    def __init__(
        self,
        config: Config,
        url_checker=check_url,
        crl_verifier=verify_crl,
        dns_resolver=resolve_with_ping
    ):
        self.config = config
        self._url_checker = url_checker
        self._crl_verifier = crl_verifier
        self._dns_resolver = dns_resolver

        self._warning_threshold_hours = 0
        self.warning_threshold_hours = config.crl_warning_threshold_hours

        self._report = MonitoringReport()
        self._report_lock = asyncio.Lock()

    @property
    def report(self) -> MonitoringReport:
        """Latest report (empty before the first run)"""
        return self._report

    @property
    def warning_threshold_hours(self) -> int:
        return self._warning_threshold_hours

    @warning_threshold_hours.setter
    def warning_threshold_hours(self, hours: int):
        if isinstance(hours, bool) or not isinstance(hours, int) or hours < 0:
            raise ValueError(f"Warning threshold must be a non-negative integer, got: {hours!r}")

        self._warning_threshold_hours = hours
        logger.info(f"CRL warning threshold set to {hours} hours")

    def endpoints(self) -> List[Endpoint]:
        """Configured endpoints in report order: URLs, DNS hosts, CRLs"""
        return (
            [UrlEndpoint(url) for url in self.config.urls]
            + [DnsEndpoint(host) for host in self.config.dns_hosts]
            + [CrlEndpoint(url) for url in self.config.crl_urls]
        )

    async def check_endpoint(self, endpoint: Endpoint) -> CheckResult:
        """
        Run the prober matching the endpoint kind

        Raises whatever the prober raises; run_all() and retest() turn that
        into a failed result.
        """
        if endpoint.kind == EndpointKind.URL:
            return await self._url_checker(endpoint.url, timeout=self.config.url_timeout)

        if endpoint.kind == EndpointKind.DNS:
            resolution = await self._dns_resolver(
                endpoint.hostname,
                timeout=self.config.dns_timeout,
                probes=default_probes(self.config.ping_timeout)
            )
            return dns_check_result(resolution)

        if endpoint.kind == EndpointKind.CRL:
            # Threshold is read when the check starts
            threshold = self.warning_threshold_hours
            verification = await self._crl_verifier(
                endpoint.url,
                warning_threshold_hours=threshold,
                timeout=self.config.crl_timeout
            )
            return crl_check_result(verification)

        raise ValueError(f"Unsupported endpoint: {endpoint!r}")

    async def _guarded_check(
        self,
        endpoint: Endpoint,
        semaphore: Optional[asyncio.Semaphore] = None
    ) -> CheckResult:
        try:
            if semaphore is None:
                return await self.check_endpoint(endpoint)
            async with semaphore:
                return await self.check_endpoint(endpoint)

        except Exception as e:
            logger.error(f"Error processing {endpoint.kind.value} {endpoint.identity}: {e}")
            return CheckResult.down(describe_error(e))

    async def run_all(self) -> MonitoringReport:
        """
        Check every configured endpoint concurrently

        Returns:
            A new report, ordered URLs, DNS hosts, CRLs as configured.
            Failures of individual endpoints are recorded as results.
        """
        endpoints = self.endpoints()
        logger.info(f"Starting monitoring run for {len(endpoints)} endpoints")

        semaphore = asyncio.Semaphore(max(1, self.config.max_workers))
        results = await asyncio.gather(
            *(self._guarded_check(endpoint, semaphore) for endpoint in endpoints)
        )

        report = MonitoringReport(
            entries=tuple(zip(endpoints, results)),
            generated_at=_now()
        )

        async with self._report_lock:
            self._report = report

        logger.info(f"Monitoring run complete: {format_report_summary(report)}")
        logger.debug(format_report(report))

        return report

    async def retest(self, identity: str) -> MonitoringReport:
        """
        Re-run the check for one endpoint and update it in the report

        Unknown identities, and identities that are not in the current
        report, leave the report untouched.

        Args:
            identity: Endpoint URL or hostname as configured

        Returns:
            The current report after the update
        """
        endpoint = classify_identity(identity, self.config)
        if endpoint is None:
            logger.warning(f"Unknown item type for retest: {identity}")
            return self._report

        if self._report.index_of(identity) < 0:
            logger.warning(f"Item not found for retest: {identity}")
            return self._report

        logger.info(f"Retesting {endpoint.kind.value} {identity}")
        result = await self._guarded_check(endpoint)

        async with self._report_lock:
            self._report = self._report.replace(endpoint, result, _now())
            return self._report

    async def watch(
        self,
        interval: Optional[float] = None,
        on_report: Optional[ReportCallback] = None,
        stop_event: Optional[asyncio.Event] = None
    ):
        """
        Run all checks repeatedly until stop_event is set

        Args:
            interval: Seconds between runs, defaults to config.check_interval
            on_report: Called with each new report, may be a coroutine function
            stop_event: Event that ends the loop
        """
        interval = interval if interval is not None else self.config.check_interval
        stop_event = stop_event or asyncio.Event()

        while not stop_event.is_set():
            report = await self.run_all()

            if on_report is not None:
                try:
                    outcome = on_report(report)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.error(f"Error in report callback: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Monitoring stopped")


def create_engine(config: Optional[Config] = None) -> MonitoringEngine:
    """
    Build an engine from config, or from the environment when omitted

    Raises:
        ValueError: If the configuration is invalid
    """
    config = config or load_config()

    if not validate_config(config):
        raise ValueError("Invalid configuration")

    configure_logging(config.log_level)

    return MonitoringEngine(config)
