"""
TLS Trust Capture

A client TLS configuration that accepts any certificate chain and hostname,
while recording the leaf certificate each peer presents so callers can
still report on its validity window.

Create one TrustCapture per check. Certificates are kept on the instance,
never in module state, so concurrent checks cannot see each other's peers.
"""

import logging
import ssl
from datetime import datetime, timezone
from typing import Dict, Optional, Union
from urllib.parse import urlsplit

from cryptography import x509

from ..utils.hostnames import to_ascii

logger = logging.getLogger(__name__)


def _target_key(target: Optional[str]) -> str:
    if not target:
        return ''
    try:
        return to_ascii(target.strip().rstrip('.'))
    except ValueError:
        return target.lower()


class TrustCapture:
    """Permissive TLS context that remembers peer leaf certificates"""

    def __init__(self):
        self._certificates: Dict[str, x509.Certificate] = {}
        self.ssl_context = self._create_context()

    def _create_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        capture = self

        class _RecordingSSLObject(ssl.SSLObject):
            """Stores the peer certificate once the handshake completes"""

            def do_handshake(self):
                super().do_handshake()
                capture._record(self.server_hostname, self.getpeercert(binary_form=True))

        # asyncio builds its TLS objects through wrap_bio(), which
        # instantiates this class
        context.sslobject_class = _RecordingSSLObject
        return context

    def _record(self, server_hostname: Optional[str], der_cert: Optional[bytes]):
        if not der_cert:
            logger.debug(f"No peer certificate presented by {server_hostname}")
            return

        try:
            certificate = x509.load_der_x509_certificate(der_cert)
        except ValueError as e:
            logger.warning(f"Unparseable certificate from {server_hostname}: {e}")
            return

        self._certificates[_target_key(server_hostname)] = certificate
        _log_certificate_state(server_hostname, certificate)

    def ssl_for(self, url: str) -> Union[ssl.SSLContext, bool]:
        """
        SSL argument for a request to url: the capturing context for https,
        aiohttp's default for anything else.
        """
        if urlsplit(url).scheme.lower() == 'https':
            return self.ssl_context
        return True

    def take(self, target: str) -> Optional[x509.Certificate]:
        """
        Return and forget the certificate captured for target.

        Args:
            target: Hostname the connection was made to

        Returns:
            The peer leaf certificate, or None if no handshake completed
        """
        return self._certificates.pop(_target_key(target), None)

    def clear(self):
        self._certificates.clear()


def _log_certificate_state(server_hostname: Optional[str], certificate: x509.Certificate):
    now = datetime.now(timezone.utc)
    subject = certificate.subject.rfc4514_string()

    if certificate.not_valid_after_utc < now:
        logger.warning(
            f"Certificate expired: {subject} from {server_hostname}, "
            f"expired {certificate.not_valid_after_utc.isoformat()}"
        )
    elif certificate.not_valid_before_utc > now:
        logger.warning(
            f"Certificate not yet valid: {subject} from {server_hostname}, "
            f"valid from {certificate.not_valid_before_utc.isoformat()}"
        )
    else:
        logger.debug(f"Captured certificate {subject} from {server_hostname}")
