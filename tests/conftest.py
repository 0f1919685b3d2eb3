"""Pytest configuration for mixproxy tests."""

import pytest

from mixproxy.crypto.end_to_end import CryptoConfig, HybridCrypto
from mixproxy.pop3.pop3_server import Pop3Server
from mixproxy.repository import AssembledMessage, InMemoryMessageRepository

USERNAME = "proxyuser"
PASSWORD = "12345"


def pytest_configure(config):
    """Register markers for the test tiers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "crypto: mark test as end-to-end crypto test")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        test_path = str(item.fspath)
        if "unit_tests" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "integration_tests" in test_path:
            item.add_marker(pytest.mark.integration)
        if "crypto" in test_path:
            item.add_marker(pytest.mark.crypto)


@pytest.fixture
def two_messages():
    """The hello/bye maildrop: 7 + 5 octets."""
    return [
        AssembledMessage("1", b"hello\r\n"),
        AssembledMessage("2", b"bye\r\n"),
    ]


@pytest.fixture(scope="session")
def fast_crypto():
    """HybridCrypto with 2048-bit RSA so keygen stays quick."""
    return HybridCrypto(CryptoConfig(asymmetric_key_bits=2048))


@pytest.fixture(scope="session")
def keypair(fast_crypto):
    return fast_crypto.generate_asymmetric_keypair()


@pytest.fixture
def pop3_server_factory():
    """Start Pop3Servers on ephemeral ports and stop them after the test."""
    servers = []

    def _start(repository=None, **kwargs):
        if repository is None:
            repository = InMemoryMessageRepository()
        server = Pop3Server(0, USERNAME, PASSWORD, repository, host="127.0.0.1", **kwargs)
        server.start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        server.stop()
