"""
Tests for the monitoring engine

Covers ordering and concurrency of full runs, retests, the CRL warning
threshold and an end-to-end run against local HTTPS and CRL servers.
Run with: pytest pkiwatch/test_engine_functionality.py
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pkiwatch import engine as engine_module
from pkiwatch.engine import MonitoringEngine, classify_identity, create_engine, dns_check_result
from pkiwatch.models import (
    CheckResult,
    CrlEndpoint,
    CrlValidity,
    CrlVerification,
    DnsEndpoint,
    DnsResolution,
    EndpointKind,
    PingResult,
    UrlEndpoint,
)
from pkiwatch.monitors import dns_monitor
from pkiwatch.monitors.dns_monitor import resolve
from pkiwatch.utils.config import Config

URLS = ['https://slow.example/', 'https://fast.example/', 'https://broken.example/']
DNS_HOSTS = ['a.example', 'b.example']
CRL_URLS = ['http://pki.example/root.crl', 'http://pki.example/issuing.crl']


class FakeProbers:
    """Stand-ins for the URL, DNS and CRL probers with controllable outcomes"""

    def __init__(self):
        self.url_results = {}
        self.url_delays = {}
        self.url_errors = {}
        self.thresholds = []
        self.calls = []

    async def check_url(self, url, **kwargs):
        self.calls.append(url)
        await asyncio.sleep(self.url_delays.get(url, 0))
        if url in self.url_errors:
            raise self.url_errors[url]
        return self.url_results.get(url, CheckResult(is_up=True))

    async def resolve(self, hostname, **kwargs):
        self.calls.append(hostname)
        return DnsResolution(
            is_up=True,
            error_message=None,
            ip_addresses=['192.0.2.1'],
            ping_results=[PingResult('192.0.2.1', True, 3)],
            logs=[f"Resolving hostname: '{hostname}'"]
        )

    async def verify_crl(self, url, warning_threshold_hours=3, **kwargs):
        self.calls.append(url)
        self.thresholds.append(warning_threshold_hours)
        return CrlVerification(True, True, None, validity=CrlValidity.CURRENT)

    def engine(self, **config_overrides):
        config = Config(
            urls=list(URLS),
            dns_hosts=list(DNS_HOSTS),
            crl_urls=list(CRL_URLS),
            **config_overrides
        )
        return MonitoringEngine(
            config,
            url_checker=self.check_url,
            crl_verifier=self.verify_crl,
            dns_resolver=self.resolve
        )


@pytest.fixture
def probers():
    return FakeProbers()


def _identities(report):
    return [endpoint.identity for endpoint, _ in report]


# ============================================================
# Full runs
# ============================================================

async def test_run_all_preserves_configured_order(probers):
    """Test that completion order does not change report order"""
    probers.url_delays['https://slow.example/'] = 0.1
    engine = probers.engine()

    report = await engine.run_all()

    assert _identities(report) == URLS + DNS_HOSTS + CRL_URLS
    assert [endpoint.kind for endpoint, _ in report] == (
        [EndpointKind.URL] * 3 + [EndpointKind.DNS] * 2 + [EndpointKind.CRL] * 2
    )
    assert report.generated_at is not None
    assert engine.report is report


async def test_run_all_records_prober_exception_as_failure(probers):
    """Test that one failing endpoint does not affect the others"""
    probers.url_errors['https://broken.example/'] = RuntimeError('prober crashed')
    engine = probers.engine()

    report = await engine.run_all()

    broken = report.get('https://broken.example/')
    assert broken.is_up is False
    assert broken.message == 'prober crashed'
    assert all(
        result.is_up for endpoint, result in report
        if endpoint.identity != 'https://broken.example/'
    )


async def test_run_all_bounds_concurrency(probers):
    active = 0
    peak = 0

    async def tracking_check(url, **kwargs):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.05)
        active -= 1
        return CheckResult(is_up=True)

    engine = MonitoringEngine(
        Config(urls=[f'https://host{i}.example/' for i in range(6)], max_workers=2),
        url_checker=tracking_check
    )

    report = await engine.run_all()

    assert len(report) == 6
    assert peak == 2


async def test_run_all_with_no_endpoints():
    engine = MonitoringEngine(Config())

    report = await engine.run_all()

    assert len(report) == 0
    assert report.generated_at is not None


async def test_dns_results_carry_ping_detail(probers):
    engine = probers.engine()

    report = await engine.run_all()

    result = report.get('a.example')
    assert result.is_up is True
    assert result.message is None
    assert result.extra['ip_addresses'] == ['192.0.2.1']
    assert result.extra['ping_results'] == [('192.0.2.1', True, 3)]


# ============================================================
# Retest
# ============================================================

async def test_retest_replaces_only_that_entry(probers):
    engine = probers.engine()
    before = await engine.run_all()

    probers.url_results['https://fast.example/'] = CheckResult.down('HTTP Error: 503')
    after = await engine.retest('https://fast.example/')

    assert _identities(after) == _identities(before)
    assert after.get('https://fast.example/').message == 'HTTP Error: 503'
    for identity in URLS + DNS_HOSTS + CRL_URLS:
        if identity != 'https://fast.example/':
            assert after.get(identity) is before.get(identity)
    assert engine.report is after


async def test_retest_is_idempotent(probers):
    engine = probers.engine()
    await engine.run_all()

    first = await engine.retest('a.example')
    second = await engine.retest('a.example')

    assert first.entries == second.entries


async def test_retest_crl_uses_crl_prober(probers):
    engine = probers.engine()
    await engine.run_all()
    probers.calls.clear()

    await engine.retest('http://pki.example/issuing.crl')

    assert probers.calls == ['http://pki.example/issuing.crl']


async def test_retest_unknown_identity_is_noop(probers):
    engine = probers.engine()
    before = await engine.run_all()
    probers.calls.clear()

    assert await engine.retest('not-configured.example') is before
    assert await engine.retest('https://elsewhere.example/') is before
    assert probers.calls == []


async def test_retest_before_first_run_is_noop(probers):
    engine = probers.engine()

    report = await engine.retest('https://fast.example/')

    assert len(report) == 0
    assert probers.calls == []


async def test_retest_records_prober_exception(probers):
    engine = probers.engine()
    await engine.run_all()

    probers.url_errors['https://slow.example/'] = ConnectionResetError('reset by peer')
    report = await engine.retest('https://slow.example/')

    assert report.get('https://slow.example/') == CheckResult(is_up=False, message='reset by peer')


async def test_retest_during_full_run(probers):
    """Test that a retest neither waits for nor blocks a full run in progress"""
    engine = probers.engine()
    await engine.run_all()

    probers.url_delays['https://slow.example/'] = 0.5
    probers.url_results['https://fast.example/'] = CheckResult.down('HTTP Error: 503')
    full_run = asyncio.create_task(engine.run_all())
    await asyncio.sleep(0.05)

    retested = await asyncio.wait_for(engine.retest('https://fast.example/'), timeout=0.3)

    assert not full_run.done()
    assert retested.get('https://fast.example/').message == 'HTTP Error: 503'
    assert _identities(retested) == URLS + DNS_HOSTS + CRL_URLS

    # The full run finishes last and its report wins
    final = await full_run
    assert engine.report is final
    assert _identities(final) == URLS + DNS_HOSTS + CRL_URLS
    assert final.get('https://fast.example/').message == 'HTTP Error: 503'


async def test_dns_summary_matches_plain_resolve(monkeypatch):
    """Test that DNS entries carry the same verdict and message as resolve()"""
    monkeypatch.setattr(
        dns_monitor, '_lookup_addresses',
        lambda hostname: [] if hostname == 'gone.example' else ['192.0.2.9']
    )
    monkeypatch.setattr(dns_monitor, 'default_probes', lambda *args: [])
    monkeypatch.setattr(engine_module, 'default_probes', lambda *args: [])

    engine = MonitoringEngine(Config(dns_hosts=['up.example', 'gone.example']))
    report = await engine.run_all()

    for hostname in ('up.example', 'gone.example'):
        result = report.get(hostname)
        assert (result.is_up, result.message) == await resolve(hostname)


# ============================================================
# Warning threshold
# ============================================================

async def test_threshold_is_passed_to_crl_checks(probers):
    engine = probers.engine(crl_warning_threshold_hours=6)
    assert engine.warning_threshold_hours == 6

    await engine.run_all()
    engine.warning_threshold_hours = 24
    await engine.retest('http://pki.example/root.crl')

    assert probers.thresholds == [6, 6, 24]


@pytest.mark.parametrize('value', [-1, 1.5, '3', True, None])
def test_threshold_rejects_invalid_values(probers, value):
    engine = probers.engine()

    with pytest.raises(ValueError):
        engine.warning_threshold_hours = value

    assert engine.warning_threshold_hours == 3


def test_threshold_accepts_zero(probers):
    engine = probers.engine()
    engine.warning_threshold_hours = 0

    assert engine.warning_threshold_hours == 0


# ============================================================
# Helpers
# ============================================================

def test_classify_identity():
    config = Config(urls=URLS, dns_hosts=DNS_HOSTS, crl_urls=CRL_URLS)

    assert classify_identity('https://fast.example/', config) == UrlEndpoint('https://fast.example/')
    assert classify_identity('a.example', config) == DnsEndpoint('a.example')
    assert classify_identity('http://pki.example/root.crl', config) == CrlEndpoint('http://pki.example/root.crl')

    # Unconfigured identities are classified by shape
    assert classify_identity('https://other.example/ca.CRL', config) == CrlEndpoint('https://other.example/ca.CRL')
    assert classify_identity('http://other.example/', config) == UrlEndpoint('http://other.example/')
    assert classify_identity('other.example', config) is None


def test_dns_check_result_for_failure():
    result = dns_check_result(DnsResolution(
        is_up=False,
        error_message='DNS resolution timeout',
        logs=['timeout']
    ))

    assert result.is_up is False
    assert result.message == 'DNS resolution timeout'
    assert result.extra == {'ip_addresses': [], 'ping_results': [], 'logs': ['timeout']}


async def test_watch_runs_until_stopped(probers):
    engine = probers.engine()
    stop_event = asyncio.Event()
    reports = []

    async def on_report(report):
        reports.append(report)
        if len(reports) == 2:
            stop_event.set()

    await asyncio.wait_for(
        engine.watch(interval=0.01, on_report=on_report, stop_event=stop_event),
        timeout=5
    )

    assert len(reports) == 2
    assert engine.report is reports[-1]


async def test_watch_survives_callback_errors(probers):
    engine = probers.engine()
    stop_event = asyncio.Event()
    runs = []

    def on_report(report):
        runs.append(report)
        if len(runs) == 2:
            stop_event.set()
        raise RuntimeError('callback failed')

    await asyncio.wait_for(
        engine.watch(interval=0.01, on_report=on_report, stop_event=stop_event),
        timeout=5
    )

    assert len(runs) == 2


def test_create_engine_from_environment(monkeypatch):
    monkeypatch.setenv('MONITOR_URLS', 'https://a.example/')
    monkeypatch.setenv('MONITOR_DNS_HOSTS', '')
    monkeypatch.setenv('MONITOR_CRL_URLS', 'http://pki.example/ca.crl')
    monkeypatch.setenv('CRL_WARNING_HOURS', '8')
    monkeypatch.setenv('MAX_WORKERS', '3')
    monkeypatch.setenv('LOG_LEVEL', 'INFO')

    engine = create_engine()

    assert [endpoint.identity for endpoint in engine.endpoints()] == [
        'https://a.example/', 'http://pki.example/ca.crl'
    ]
    assert engine.warning_threshold_hours == 8
    assert engine.config.max_workers == 3


def test_create_engine_rejects_invalid_config():
    with pytest.raises(ValueError, match='Invalid configuration'):
        create_engine(Config(max_workers=0))


# ============================================================
# End to end
# ============================================================

async def test_end_to_end_https_and_crl(serve, respond, make_certificate, make_crl):
    """Test a full run against a real HTTPS site and CRL distribution point"""
    now = datetime.now(timezone.utc)
    server_context, certificate = make_certificate(not_after=now + timedelta(days=10))
    crl_body = make_crl(now - timedelta(days=1), now + timedelta(hours=1), revoked=2)

    async with serve({'/': respond()}, server_context) as site_url, \
            serve({'/ca.crl': respond(body=crl_body)}) as pki_url:
        engine = MonitoringEngine(Config(
            urls=[site_url + '/'],
            crl_urls=[pki_url + '/ca.crl'],
            crl_warning_threshold_hours=3
        ))
        report = await engine.run_all()

        url_result = report.get(site_url + '/')
        crl_result = report.get(pki_url + '/ca.crl')

        assert url_result.is_up is True
        assert url_result.message.startswith('Certificate expires in 10 days')
        assert url_result.valid_until == certificate.not_valid_after_utc

        assert crl_result.is_up is True
        assert crl_result.message.startswith('Warning: CRL nextUpdate is within')
        assert crl_result.extra['revoked_certificate_count'] == 2

        # A zero threshold turns the nextUpdate warning off
        engine.warning_threshold_hours = 0
        report = await engine.retest(pki_url + '/ca.crl')

        assert report.get(pki_url + '/ca.crl').message is None
        assert report.get(site_url + '/') is url_result


async def test_retest_of_unreachable_endpoints_is_stable(free_port):
    """Test that repeated retests of a refused URL and CRL give equal results"""
    url = f'https://127.0.0.1:{free_port}/'
    crl_url = f'http://127.0.0.1:{free_port}/ca.crl'
    engine = MonitoringEngine(Config(
        urls=[url],
        crl_urls=[crl_url],
        url_timeout=2,
        crl_timeout=2
    ))
    await engine.run_all()

    for identity in (url, crl_url):
        first = (await engine.retest(identity)).get(identity)
        second = (await engine.retest(identity)).get(identity)

        assert first.is_up is False
        assert 'SSLContext' not in first.message
        assert first == second
