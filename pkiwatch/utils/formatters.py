"""
Message formatters for pkiwatch.
Builds the diagnostic texts attached to check results and the run summary
written to the log.
"""

from datetime import datetime
from typing import Dict, List, Optional

from ..models import CheckResult, EndpointKind, MonitoringReport

MESSAGE_SEPARATOR = ' | '

SECTION_TITLES = {
    EndpointKind.URL: 'URLs',
    EndpointKind.DNS: 'DNS Hosts',
    EndpointKind.CRL: 'CRLs',
}


def format_date(value: Optional[datetime]) -> str:
    """Render a timestamp as 'YYYY-MM-DD HH:MM:SS UTC'"""
    if value is None:
        return 'Unknown'
    return value.strftime('%Y-%m-%d %H:%M:%S UTC')


def join_messages(*parts: Optional[str]) -> Optional[str]:
    """
    Join the non-empty message parts.

    Returns:
        Combined message, or None when every part is empty
    """
    present = [part for part in parts if part]
    return MESSAGE_SEPARATOR.join(present) if present else None


def format_check_result(identity: str, result: CheckResult) -> str:
    """
    Format one result as a single line.

    Args:
        identity: Endpoint URL or hostname
        result: Check result

    Returns:
        Formatted line
    """
    if not result.is_up:
        status_emoji = "🔴"
    elif result.message:
        status_emoji = "⚠️"
    else:
        status_emoji = "🟢"

    line = f"{status_emoji} {identity}"

    if result.message:
        line += f": {result.message}"

    if result.valid_from and result.valid_until:
        line += f" (valid {format_date(result.valid_from)} - {format_date(result.valid_until)})"

    return line


def format_report(report: MonitoringReport) -> str:
    """
    Format a whole report grouped into URL, DNS and CRL sections.

    Args:
        report: Monitoring report

    Returns:
        Multi-line text
    """
    if not report.entries:
        return "📊 No monitoring data available"

    sections: Dict[EndpointKind, List[str]] = {}
    for endpoint, result in report:
        sections.setdefault(endpoint.kind, []).append(format_check_result(endpoint.identity, result))

    response = f"📊 Monitoring Report ({format_date(report.generated_at)})\n"

    for kind in (EndpointKind.URL, EndpointKind.DNS, EndpointKind.CRL):
        lines = sections.get(kind)
        if not lines:
            continue
        response += f"\n{SECTION_TITLES[kind]}:\n"
        for line in lines:
            response += f"  {line}\n"

    return response


def format_report_summary(report: MonitoringReport) -> str:
    """One-line up/warning/down count for a report"""
    total = len(report)
    down = sum(1 for _, result in report if not result.is_up)
    warnings = sum(1 for _, result in report if result.is_up and result.message)
    up = total - down - warnings

    return f"{total} endpoints: {up} up, {warnings} with warnings, {down} down"
