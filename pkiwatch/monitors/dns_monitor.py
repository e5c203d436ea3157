"""
DNS Monitoring Module

Resolves hostnames to all of their IP addresses with a bounded wait, then
probes each address for reachability. A hostname counts as up as soon as it
resolves to at least one address; ping outcomes are reported per IP but do
not change the verdict.
"""

import asyncio
import logging
import socket
from typing import List, Optional, Sequence, Tuple

from ..models import DnsResolution
from ..utils.hostnames import normalize_hostname
from ..utils.retry import describe_error
from .reachability import ReachabilityProbe, default_probes, probe_reachability

logger = logging.getLogger(__name__)

DNS_TIMEOUT = 5


def _lookup_addresses(hostname: str) -> List[str]:
    """
    Blocking lookup of every address for hostname, in resolver order
    This is run in executor to avoid blocking the event loop
    """
    infos = socket.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)

    addresses = []
    for _, _, _, _, sockaddr in infos:
        address = sockaddr[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


async def resolve_with_ping(
    hostname: str,
    timeout: float = DNS_TIMEOUT,
    probes: Optional[Sequence[ReachabilityProbe]] = None
) -> DnsResolution:
    """
    Resolve a hostname and probe every address it resolves to

    Args:
        hostname: Hostname, or a URL whose host should be resolved
        timeout: Seconds to wait for resolution (default 5)
        probes: Reachability probes to try per IP, defaults to ping then TCP

    Returns:
        DnsResolution with per-IP ping results and a step-by-step log
    """
    logs: List[str] = []
    normalized = normalize_hostname(hostname)
    logs.append(f"Resolving hostname: '{hostname}' -> '{normalized}'")

    loop = asyncio.get_running_loop()

    try:
        # The executor thread may outlive the wait; the result is then ignored
        addresses = await asyncio.wait_for(
            loop.run_in_executor(None, _lookup_addresses, normalized),
            timeout=timeout
        )

    except asyncio.TimeoutError:
        logs.append(f"DNS resolution timeout after {int(timeout * 1000)}ms for '{normalized}'")
        logger.error(f"DNS resolution timeout for {normalized}")
        return DnsResolution(
            is_up=False,
            error_message="DNS resolution timeout",
            logs=logs
        )

    except Exception as e:
        message = describe_error(e)
        logs.append(f"DNS resolution failed for '{normalized}': {message}")
        logger.error(f"Error resolving hostname: {normalized} (original: {hostname}): {message}")
        return DnsResolution(
            is_up=False,
            error_message=message,
            logs=logs
        )

    logs.append(f"Resolved {len(addresses)} IP(s): {', '.join(addresses)}")

    if not addresses:
        message = f"No IP addresses returned for {normalized}"
        logger.warning(message)
        return DnsResolution(
            is_up=False,
            error_message=message,
            logs=logs
        )

    probes = probes if probes is not None else default_probes()

    # Addresses of one host are probed one after another
    ping_results = []
    for address in addresses:
        ping_results.append(await probe_reachability(address, logs, probes))

    reachable = sum(1 for result in ping_results if result.success)
    logger.info(f"DNS: {normalized} resolved to {len(addresses)} IP(s), {reachable} reachable")

    return DnsResolution(
        is_up=True,
        error_message=None,
        ip_addresses=addresses,
        ping_results=ping_results,
        logs=logs
    )


async def resolve(hostname: str, timeout: float = DNS_TIMEOUT) -> Tuple[bool, Optional[str]]:
    """
    Resolve a hostname, keeping only the up/down verdict and message

    Kept for host applications that need nothing else. The engine calls
    resolve_with_ping() directly so the per-IP detail can go into the
    result's extra; its is_up and message are the same as this pair.
    """
    resolution = await resolve_with_ping(hostname, timeout=timeout)
    return resolution.is_up, resolution.error_message
