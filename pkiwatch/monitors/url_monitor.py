"""
URL Monitoring Module

Checks HTTP(S) endpoint availability using async HTTP requests.
A URL is up only on HTTP 200. For HTTPS the server certificate is captured
without being trusted, and its validity window is reported alongside the
HTTP outcome.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

from ..models import CheckResult
from ..utils.formatters import format_date, join_messages
from ..utils.retry import describe_error, with_tls_retry
from .trust_capture import TrustCapture

logger = logging.getLogger(__name__)

# Certificates closer than this to notAfter get an expiry warning
CERT_EXPIRY_WARNING_DAYS = 30


def _whole_days(delta: timedelta) -> int:
    # Less than a day still counts as one
    return max(1, round(delta.total_seconds() / 86400))


def _days(count: int) -> str:
    return f"{count} day" if count == 1 else f"{count} days"


def certificate_warning(
    not_before: datetime,
    not_after: datetime,
    now: Optional[datetime] = None
) -> Optional[str]:
    """
    Describe a certificate validity problem, if there is one.

    Args:
        not_before: Certificate notBefore (UTC)
        not_after: Certificate notAfter (UTC)
        now: Reference time, defaults to the current time

    Returns:
        Warning text, or None when the certificate is valid for more than
        CERT_EXPIRY_WARNING_DAYS
    """
    now = now or datetime.now(timezone.utc)

    if now > not_after:
        days = _whole_days(now - not_after)
        return f"Certificate EXPIRED {_days(days)} ago (expired {format_date(not_after)})"

    if not_after - now <= timedelta(days=CERT_EXPIRY_WARNING_DAYS):
        days = _whole_days(not_after - now)
        return f"Certificate expires in {_days(days)} ({format_date(not_after)})"

    if now < not_before:
        return f"Certificate not yet valid (valid from {format_date(not_before)})"

    return None


async def _fetch_status(url: str, capture: TrustCapture, timeout: float) -> int:
    client_timeout = aiohttp.ClientTimeout(
        total=timeout * 3,
        sock_connect=timeout,
        sock_read=timeout
    )

    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        async with session.get(
            url,
            ssl=capture.ssl_for(url),
            allow_redirects=True
        ) as response:
            return response.status


async def check_url(url: str, timeout: float = 5) -> CheckResult:
    """
    Check a URL and the certificate it is served with

    Args:
        url: URL to check
        timeout: Connect and read timeout in seconds (default 5)

    Returns:
        CheckResult with is_up (HTTP 200), message (HTTP error and/or
        certificate warning), validity window from the certificate and
        extra={"status_code": int} when a response arrived
    """
    parsed = urlsplit(url)
    is_https = parsed.scheme.lower() == 'https'
    capture = TrustCapture()

    status_code = None
    error_message = None

    try:
        status_code = await with_tls_retry(
            lambda: _fetch_status(url, capture, timeout),
            url
        )
        if status_code != 200:
            error_message = f"HTTP Error: {status_code}"
            logger.warning(f"URL: {url}, Result: down, Error: {error_message}")
        else:
            logger.info(f"URL: {url}, Response Code: {status_code}, Result: up")

    except Exception as e:
        error_message = describe_error(e)
        logger.error(f"Error checking URL {url}: {error_message}")

    certificate = None
    if is_https and parsed.hostname:
        certificate = capture.take(parsed.hostname)
    capture.clear()

    cert_warning = None
    valid_from = None
    valid_until = None

    if certificate is not None:
        valid_from = certificate.not_valid_before_utc
        valid_until = certificate.not_valid_after_utc
        cert_warning = certificate_warning(valid_from, valid_until)
        if cert_warning:
            logger.warning(f"URL: {url}, {cert_warning}")

    message = join_messages(error_message, cert_warning)

    return CheckResult(
        is_up=error_message is None,
        message=message,
        valid_from=valid_from,
        valid_until=valid_until,
        extra={'status_code': status_code} if status_code is not None else None
    )
