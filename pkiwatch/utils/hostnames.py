"""
Hostname helpers shared by the DNS resolver and the TLS trust capture.
"""

import logging
from urllib.parse import urlsplit

import idna

logger = logging.getLogger(__name__)


def to_ascii(host: str) -> str:
    """
    Convert a hostname to its ASCII (punycode) form.

    ASCII input is only lower-cased. Raises idna.IDNAError if the name cannot
    be encoded.
    """
    if host.isascii():
        return host.lower()
    return idna.encode(host, uts46=True).decode('ascii')


def normalize_hostname(value: str) -> str:
    """
    Normalize user input into a resolvable hostname.

    - URLs are reduced to their host component
    - surrounding whitespace and a trailing dot are removed
    - internationalized labels are converted to punycode

    Args:
        value: Hostname or URL

    Returns:
        Normalized hostname (the trimmed input if IDNA conversion fails)
    """
    host = value.strip()

    if '://' in host:
        try:
            parsed_host = urlsplit(host).hostname
        except ValueError:
            parsed_host = None
        if parsed_host:
            host = parsed_host

    if host.endswith('.'):
        host = host[:-1]

    try:
        return to_ascii(host)
    except idna.IDNAError as e:
        logger.debug(f"IDNA conversion failed for '{host}': {e}")
        return host
