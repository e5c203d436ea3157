"""
Error classification and the one-shot TLS retry used by the HTTP probers.
"""

import logging
import ssl
from typing import Awaitable, Callable, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar('T')

# A TLS failure gets exactly one more attempt
TLS_MAX_ATTEMPTS = 2


def describe_error(error: BaseException) -> str:
    """Message for an exception, falling back to its class name"""
    if isinstance(error, aiohttp.ClientConnectorError):
        return _describe_connector_error(error)

    message = str(error).strip()
    return message or type(error).__name__


def _describe_connector_error(error: aiohttp.ClientConnectorError) -> str:
    """
    aiohttp's own text embeds the repr of the request's SSL context, which
    differs per connection; render host, port and the underlying reason only.
    """
    cause = getattr(error, 'certificate_error', None) or getattr(error, 'os_error', None)

    if cause is None:
        reason = type(error).__name__
    else:
        reason = (getattr(cause, 'strerror', None) or describe_error(cause)).strip()

    return f"Cannot connect to host {error.host}:{error.port} [{reason}]"


def is_tls_error(error: BaseException) -> bool:
    """
    Check whether an exception comes from the TLS layer

    aiohttp wraps handshake failures in ClientSSLError subclasses; a bare
    ssl.SSLError may also surface directly or as the cause of an OSError.
    """
    if isinstance(error, (aiohttp.ClientSSLError, ssl.SSLError)):
        return True

    if isinstance(error.__cause__, ssl.SSLError):
        return True

    os_error = getattr(error, 'os_error', None)
    return isinstance(os_error, ssl.SSLError)


async def with_tls_retry(
    operation: Callable[[], Awaitable[T]],
    target: str,
    max_attempts: int = TLS_MAX_ATTEMPTS
) -> T:
    """
    Run operation, repeating it once if it fails with a TLS error.

    Args:
        operation: Zero-argument coroutine function performing the request
        target: URL or host, for logging
        max_attempts: Total number of attempts

    Returns:
        Whatever operation returns

    Raises:
        The last exception when attempts are exhausted, or any non-TLS
        exception immediately
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_tls_error(e) or attempt >= max_attempts:
                raise

            logger.warning(
                f"TLS error for {target} (attempt {attempt}/{max_attempts}): "
                f"{describe_error(e)}, retrying with trust capture"
            )

    raise RuntimeError(f"No attempt made for {target}")
