"""
Shared fixtures: local HTTP(S) servers, self-signed certificates and CRLs.
"""

import itertools
import socket
import ssl
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import web
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


@pytest.fixture
def make_certificate(tmp_path):
    """
    Factory for self-signed server certificates.

    Returns (server_ssl_context, certificate).
    """
    counter = itertools.count()

    def factory(not_before=None, not_after=None, common_name='localhost'):
        now = datetime.now(timezone.utc)
        not_before = not_before or now - timedelta(days=1)
        not_after = not_after or now + timedelta(days=365)

        key = ec.generate_private_key(ec.SECP256R1())
        certificate = (
            x509.CertificateBuilder()
            .subject_name(_name(common_name))
            .issuer_name(_name(common_name))
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .sign(key, hashes.SHA256())
        )

        index = next(counter)
        cert_path = tmp_path / f'server{index}.pem'
        key_path = tmp_path / f'server{index}.key'
        cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption()
        ))

        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(str(cert_path), str(key_path))
        return context, certificate

    return factory


@pytest.fixture
def make_crl():
    """Factory for signed CRLs, DER encoded unless asked otherwise"""

    def factory(this_update, next_update, revoked=0, encoding=serialization.Encoding.DER):
        key = ec.generate_private_key(ec.SECP256R1())
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(_name('pkiwatch Test CA'))
            .last_update(this_update)
            .next_update(next_update)
        )

        for serial in range(1, revoked + 1):
            builder = builder.add_revoked_certificate(
                x509.RevokedCertificateBuilder()
                .serial_number(serial)
                .revocation_date(this_update)
                .build()
            )

        return builder.sign(key, hashes.SHA256()).public_bytes(encoding)

    return factory


@pytest.fixture
def serve():
    """
    Async context manager running an aiohttp app on 127.0.0.1.

    Usage:
        async with serve({'/': handler}, ssl_context) as base_url:
            ...
    """

    @asynccontextmanager
    async def _serve(routes, ssl_context=None):
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_get(path, handler)

        runner = web.AppRunner(app)
        await runner.setup()

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        port = sock.getsockname()[1]

        site = web.SockSite(runner, sock, ssl_context=ssl_context)
        await site.start()

        scheme = 'https' if ssl_context is not None else 'http'
        try:
            yield f'{scheme}://127.0.0.1:{port}'
        finally:
            await runner.cleanup()

    return _serve


@pytest.fixture
def free_port():
    """A local port nothing is listening on"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


@pytest.fixture
def respond():
    """Factory for handlers returning a fixed response"""

    def factory(status=200, body=b'ok', content_type='text/plain'):
        async def handler(request):
            return web.Response(status=status, body=body, content_type=content_type)
        return handler

    return factory
