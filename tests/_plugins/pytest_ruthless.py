import contextlib
import ipaddress
import random
import socket
import time

import pytest


def pytest_addoption(parser):
    grp = parser.getgroup("ruthless")
    grp.addoption(
        "--allow-network",
        action="store_true",
        help="Allow non-loopback connections in tests (default: blocked)",
    )
    grp.addoption(
        "--allow-sleep", action="store_true", help="Allow time.sleep in tests (default: blocked)"
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "allow_network: permit network access for this test")
    config.addinivalue_line("markers", "allow_sleep: permit time.sleep in this test")


def _is_loopback(address) -> bool:
    if isinstance(address, (str, bytes)):
        return True  # AF_UNIX path
    host = address[0] if address else ""
    if host in ("localhost", ""):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


@contextlib.contextmanager
def _guarded_connect():
    orig_connect = socket.socket.connect
    orig_connect_ex = socket.socket.connect_ex

    def _deny(address):
        raise RuntimeError(
            f"Connection to {address!r} blocked by pytest_ruthless. "
            "Use --allow-network or @pytest.mark.allow_network"
        )

    def connect(self, address):
        if not _is_loopback(address):
            _deny(address)
        return orig_connect(self, address)

    def connect_ex(self, address):
        if not _is_loopback(address):
            _deny(address)
        return orig_connect_ex(self, address)

    socket.socket.connect = connect
    socket.socket.connect_ex = connect_ex
    try:
        yield
    finally:
        socket.socket.connect = orig_connect
        socket.socket.connect_ex = orig_connect_ex


@contextlib.contextmanager
def _patched_sleep():
    orig = time.sleep

    def _deny_sleep(secs):
        raise RuntimeError(
            "time.sleep blocked by pytest_ruthless. Use --allow-sleep or @pytest.mark.allow_sleep"
        )

    time.sleep = _deny_sleep
    try:
        yield
    finally:
        time.sleep = orig


def pytest_runtest_setup(item):
    # Seed randomness per test for determinism
    random.seed(1337)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_call(item):
    allow_net = item.config.getoption("--allow-network") or bool(
        item.get_closest_marker("allow_network")
    )
    allow_sleep = item.config.getoption("--allow-sleep") or bool(
        item.get_closest_marker("allow_sleep")
    )

    with contextlib.ExitStack() as stack:
        if not allow_net:
            stack.enter_context(_guarded_connect())
        if not allow_sleep:
            stack.enter_context(_patched_sleep())
        yield
