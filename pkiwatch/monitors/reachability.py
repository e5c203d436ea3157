"""
Reachability Probes

Checks whether a resolved IP answers, trying a list of probes in order:
the platform ping binary first, then a TCP-level check for hosts or
sandboxes where ICMP is unavailable. The first probe that reports success
wins.
"""

import asyncio
import logging
import sys
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..models import PingResult
from ..utils.retry import describe_error

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 3


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def ping_commands(ip: str, timeout: float = DEFAULT_PROBE_TIMEOUT, platform: Optional[str] = None) -> List[List[str]]:
    """
    Ping command lines for the current platform, single echo request.

    The first spelling sets an explicit deadline; the second leaves it out
    for ping builds that reject the flag.
    """
    platform = platform or sys.platform
    seconds = str(max(1, int(timeout)))

    if platform.startswith('win'):
        return [
            ['ping', '-n', '1', '-w', str(int(timeout * 1000)), ip],
            ['ping', '-n', '1', ip],
        ]

    if platform == 'darwin':
        return [
            ['ping', '-c', '1', '-t', seconds, ip],
            ['ping', '-c', '1', ip],
        ]

    return [
        ['ping', '-c', '1', '-w', seconds, ip],
        ['ping', '-c', '1', ip],
    ]


class ReachabilityProbe(ABC):
    """One way of finding out whether an IP answers"""

    name = 'probe'

    @abstractmethod
    async def probe(self, ip: str, logs: List[str]) -> PingResult:
        """Probe ip, appending narrative lines to logs"""


class PingCommandProbe(ReachabilityProbe):
    """Runs the system ping binary, trying each command spelling in turn"""

    name = 'ping'

    def __init__(self, timeout: float = DEFAULT_PROBE_TIMEOUT, command_builder=None):
        self.timeout = timeout
        self.command_builder = command_builder or ping_commands

    async def probe(self, ip: str, logs: List[str]) -> PingResult:
        last_result = PingResult(ip, False, None, 'Ping not attempted')

        for command in self.command_builder(ip, self.timeout):
            logs.append(f"Pinging {ip} with: {' '.join(command)}")
            result = await self._run(ip, command, logs)
            if result.success:
                return result
            last_result = result

        return last_result

    async def _run(self, ip: str, command: List[str], logs: List[str]) -> PingResult:
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except OSError as e:
            logs.append(f"Ping command error for {ip}: {describe_error(e)}")
            return PingResult(ip, False, None, describe_error(e))

        try:
            # Small grace period over the ping's own deadline
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout + 1)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            elapsed = _elapsed_ms(start)
            logs.append(f"Ping timed out for {ip} ({elapsed}ms)")
            return PingResult(ip, False, elapsed, 'Ping timed out')

        elapsed = _elapsed_ms(start)
        success = process.returncode == 0
        logs.append(
            f"Ping {'succeeded' if success else 'failed'} for {ip} "
            f"(exit={process.returncode}, {elapsed}ms)"
        )

        return PingResult(
            ip,
            success,
            elapsed,
            output.decode('utf-8', errors='replace') if output else ''
        )


class TcpReachabilityProbe(ReachabilityProbe):
    """
    Protocol-level check: the host is reachable if any port accepts or
    actively refuses a TCP connection within the timeout.
    """

    name = 'tcp'

    def __init__(self, timeout: float = DEFAULT_PROBE_TIMEOUT, ports: Sequence[int] = (443, 80)):
        self.timeout = timeout
        self.ports = tuple(ports)

    async def _connect(self, ip: str, port: int) -> bool:
        try:
            _, writer = await asyncio.open_connection(ip, port)
        except ConnectionRefusedError:
            # A reset still proves the host is there
            return True
        except OSError:
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def probe(self, ip: str, logs: List[str]) -> PingResult:
        logs.append(f"Fallback TCP reachability for {ip} on ports {list(self.ports)} ({self.timeout}s)...")
        start = time.monotonic()

        tasks = [asyncio.ensure_future(self._connect(ip, port)) for port in self.ports]
        reachable = False

        try:
            for next_done in asyncio.as_completed(tasks, timeout=self.timeout):
                if await next_done:
                    reachable = True
                    break
        except asyncio.TimeoutError:
            reachable = False
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        elapsed = _elapsed_ms(start)
        logs.append(f"TCP reachability result for {ip}: {reachable} ({elapsed}ms)")

        return PingResult(ip, reachable, elapsed, f"tcp_reachable={reachable}")


def default_probes(timeout: float = DEFAULT_PROBE_TIMEOUT) -> List[ReachabilityProbe]:
    return [PingCommandProbe(timeout), TcpReachabilityProbe(timeout)]


async def probe_reachability(
    ip: str,
    logs: List[str],
    probes: Optional[Sequence[ReachabilityProbe]] = None
) -> PingResult:
    """
    Try each probe in order, stopping at the first success

    Args:
        ip: IP address to probe
        logs: Narrative log to append to
        probes: Probes to try, defaults to ping then TCP

    Returns:
        The first successful PingResult, or the last failure
    """
    probes = probes if probes is not None else default_probes()
    result = PingResult(ip, False, None, 'No reachability probes configured')

    for probe in probes:
        try:
            result = await probe.probe(ip, logs)
        except Exception as e:
            logs.append(f"{probe.name} error for {ip}: {describe_error(e)}")
            logger.error(f"Reachability probe {probe.name} failed for {ip}: {e}")
            result = PingResult(ip, False, None, describe_error(e))
            continue

        if result.success:
            return result

    return result
