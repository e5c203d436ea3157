"""
CRL Monitoring Module

Downloads Certificate Revocation Lists from their distribution points,
parses them and checks the current time against the thisUpdate/nextUpdate
window. Warns when nextUpdate is closer than a configurable number of hours.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

import aiohttp
from cryptography import x509

from ..models import CheckResult, CrlValidity, CrlVerification
from ..utils.formatters import format_date
from ..utils.retry import describe_error, with_tls_retry
from .trust_capture import TrustCapture

logger = logging.getLogger(__name__)

DEFAULT_WARNING_THRESHOLD_HOURS = 3


def parse_crl(data: bytes) -> x509.CertificateRevocationList:
    """
    Parse a CRL, DER first and PEM as a fallback

    Raises:
        ValueError: If the data is neither
    """
    try:
        return x509.load_der_x509_crl(data)
    except ValueError as der_error:
        if b'-----BEGIN X509 CRL-----' not in data:
            raise der_error
        return x509.load_pem_x509_crl(data)


def evaluate_crl(
    crl: x509.CertificateRevocationList,
    warning_threshold_hours: int,
    now: Optional[datetime] = None
) -> CrlVerification:
    """
    Apply the validity window rules to a parsed CRL.

    - now < thisUpdate: not yet valid
    - now >= nextUpdate: expired
    - otherwise current, with a warning if fewer than
      warning_threshold_hours remain until nextUpdate

    Args:
        crl: Parsed CRL
        warning_threshold_hours: Hours before nextUpdate to start warning
        now: Reference time, defaults to the current time

    Returns:
        CrlVerification with can_download=True
    """
    now = now or datetime.now(timezone.utc)
    this_update = crl.last_update_utc
    next_update = crl.next_update_utc
    revoked_count = len(crl)

    logger.debug(f"CRL thisUpdate: {this_update}, nextUpdate: {next_update}, now: {now}")
    logger.info(f"CRL contains {revoked_count} revoked certificates")

    if now < this_update:
        warning = (
            f"CRL not yet valid. thisUpdate: {format_date(this_update)}, "
            f"Current: {format_date(now)}"
        )
        validity = CrlValidity.NOT_YET_VALID
        is_valid = False

    elif next_update is not None and now >= next_update:
        warning = (
            f"CRL has expired. nextUpdate: {format_date(next_update)}, "
            f"Current: {format_date(now)}"
        )
        validity = CrlValidity.EXPIRED
        is_valid = False

    else:
        validity = CrlValidity.CURRENT
        is_valid = True
        warning = None

        if next_update is None:
            warning = "CRL has no nextUpdate"
        else:
            hours_remaining = (next_update - now).total_seconds() / 3600
            if hours_remaining < warning_threshold_hours:
                warning = (
                    f"CRL nextUpdate is within {hours_remaining:.1f}h "
                    f"(threshold: {warning_threshold_hours}h). "
                    f"Next update: {format_date(next_update)}"
                )

    if warning:
        logger.warning(warning)

    return CrlVerification(
        can_download=True,
        is_valid=is_valid,
        warning_message=warning,
        this_update=this_update,
        next_update=next_update,
        revoked_certificate_count=revoked_count,
        validity=validity
    )


async def _download(url: str, capture: TrustCapture, timeout: float) -> Tuple[int, bytes]:
    client_timeout = aiohttp.ClientTimeout(
        total=timeout * 3,
        sock_connect=timeout,
        sock_read=timeout
    )

    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        async with session.get(url, ssl=capture.ssl_for(url)) as response:
            if response.status != 200:
                return response.status, b''
            return response.status, await response.read()


async def verify_crl(
    crl_url: str,
    warning_threshold_hours: int = DEFAULT_WARNING_THRESHOLD_HOURS,
    timeout: float = 10
) -> CrlVerification:
    """
    Download a CRL and check its validity window

    Args:
        crl_url: CRL distribution point URL
        warning_threshold_hours: Warn when nextUpdate is closer than this
        timeout: Connect and read timeout in seconds (default 10)

    Returns:
        CrlVerification; can_download tells "unreachable" apart from
        "reachable but malformed or out of date"
    """
    logger.info(f"Starting CRL verification: {crl_url}")

    capture = TrustCapture()

    try:
        status_code, body = await with_tls_retry(
            lambda: _download(crl_url, capture, timeout),
            crl_url
        )
    except Exception as e:
        message = describe_error(e)
        logger.error(f"Error downloading CRL {crl_url}: {message}")
        return CrlVerification(can_download=False, is_valid=False, warning_message=message)
    finally:
        # Peer certificate problems are logged during the handshake
        capture.clear()

    if status_code != 200:
        logger.warning(f"Failed to download CRL from {crl_url}, Response Code: {status_code}")
        return CrlVerification(
            can_download=False,
            is_valid=False,
            warning_message=f"HTTP Error: {status_code}"
        )

    logger.info(f"Downloaded CRL from {crl_url} ({len(body)} bytes)")

    try:
        crl = parse_crl(body)
    except ValueError as e:
        logger.error(f"Error parsing CRL from {crl_url}: {e}")
        return CrlVerification(
            can_download=True,
            is_valid=False,
            warning_message=f"Parse error: {describe_error(e)}"
        )

    result = evaluate_crl(crl, warning_threshold_hours)
    logger.info(
        f"CRL verification complete for {crl_url}: valid={result.is_valid}, "
        f"warning={result.warning_message is not None}"
    )
    return result


def crl_check_result(verification: CrlVerification) -> CheckResult:
    """
    Fold a CRL verification into the common result shape

    The CRL counts as up only when it was downloaded and is valid.
    """
    if not verification.can_download:
        reason = verification.warning_message
        message = f"Failed to download CRL: {reason}" if reason else "Failed to download CRL"
    elif not verification.is_valid:
        message = verification.warning_message or "CRL validation failed"
    elif verification.warning_message:
        message = f"Warning: {verification.warning_message}"
    else:
        message = None

    extra = {
        'can_download': verification.can_download,
        'is_valid': verification.is_valid,
        'revoked_certificate_count': verification.revoked_certificate_count,
        'validity': verification.validity.value if verification.validity else None,
    }

    return CheckResult(
        is_up=verification.can_download and verification.is_valid,
        message=message,
        valid_from=verification.this_update,
        valid_until=verification.next_update,
        extra=extra
    )
