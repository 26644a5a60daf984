"""Tests for the platform providers."""

import socket
from types import SimpleNamespace

import pytest

from nut_scanner import providers
from nut_scanner._types import AddressRange
from nut_scanner.exceptions import InterfaceEnumerationError
from nut_scanner.providers import (
    FileLimits,
    NullInterfaceProvider,
    NullResourceLimitProvider,
    PsutilInterfaceProvider,
    RlimitProvider,
)
from nut_scanner.ranges import IPRangeRegistry
from nut_scanner.subnets import SubnetExpander

AF_LINK = getattr(socket, "AF_PACKET", 17)


def snicaddr(family, address, netmask=None):
    return SimpleNamespace(family=family, address=address, netmask=netmask, broadcast=None, ptp=None)


def snicstats(isup=True, flags="up,broadcast,running,multicast"):
    return SimpleNamespace(isup=isup, duplex=0, speed=1000, mtu=1500, flags=flags)


@pytest.fixture
def fake_psutil(monkeypatch):
    """Replace psutil's interface listing with fixed tables."""
    tables = {"addrs": {}, "stats": {}}
    monkeypatch.setattr(providers.psutil, "net_if_addrs", lambda: tables["addrs"])
    monkeypatch.setattr(providers.psutil, "net_if_stats", lambda: tables["stats"])
    return tables


class TestPsutilInterfaceProvider:
    """Tests for PsutilInterfaceProvider."""

    def test_flags_mapped(self, fake_psutil):
        fake_psutil["addrs"] = {
            "eth0": [
                snicaddr(AF_LINK, "52:54:00:12:34:56"),
                snicaddr(socket.AF_INET, "192.168.1.20", "255.255.255.0"),
            ],
        }
        fake_psutil["stats"] = {"eth0": snicstats()}

        [address] = PsutilInterfaceProvider().addresses()

        assert address.interface == "eth0"
        assert address.family == socket.AF_INET
        assert address.address == "192.168.1.20"
        assert address.netmask == "255.255.255.0"
        assert address.up and address.running and address.broadcast
        assert not address.loopback

    def test_loopback(self, fake_psutil):
        fake_psutil["addrs"] = {"lo": [snicaddr(socket.AF_INET, "127.0.0.1", "255.0.0.0")]}
        fake_psutil["stats"] = {"lo": snicstats(flags="up,loopback,running")}

        [address] = PsutilInterfaceProvider().addresses()

        assert address.loopback
        assert not address.broadcast

    def test_down_interface(self, fake_psutil):
        fake_psutil["addrs"] = {"eth1": [snicaddr(socket.AF_INET, "10.1.0.5", "255.255.0.0")]}
        fake_psutil["stats"] = {"eth1": snicstats(isup=False, flags="broadcast,multicast")}

        [address] = PsutilInterfaceProvider().addresses()

        assert not address.up
        assert not address.running

    def test_ipv6_zone_suffix_stripped(self, fake_psutil):
        fake_psutil["addrs"] = {
            "eth0": [snicaddr(socket.AF_INET6, "fe80::1%eth0", "ffff:ffff:ffff:ffff::")],
        }
        fake_psutil["stats"] = {"eth0": snicstats()}

        [address] = PsutilInterfaceProvider().addresses()

        assert address.address == "fe80::1"
        assert address.family == socket.AF_INET6

    def test_missing_stats(self, fake_psutil):
        """An interface psutil has no stats for gets no flags."""
        fake_psutil["addrs"] = {"tun0": [snicaddr(socket.AF_INET, "10.8.0.2", "255.255.255.0")]}

        [address] = PsutilInterfaceProvider().addresses()

        assert not (address.up or address.running or address.broadcast or address.loopback)

    def test_os_error_wrapped(self, monkeypatch):
        def broken():
            raise OSError("netlink socket refused")

        monkeypatch.setattr(providers.psutil, "net_if_addrs", broken)

        with pytest.raises(InterfaceEnumerationError, match="netlink socket refused"):
            PsutilInterfaceProvider().addresses()

    def test_auto_expansion_uses_broadcast_interfaces(self, fake_psutil):
        fake_psutil["addrs"] = {
            "lo": [snicaddr(socket.AF_INET, "127.0.0.1", "255.0.0.0")],
            "eth0": [snicaddr(socket.AF_INET, "192.168.7.10", "255.255.255.0")],
            "eth1": [snicaddr(socket.AF_INET, "10.1.0.5", "255.255.0.0")],
        }
        fake_psutil["stats"] = {
            "lo": snicstats(flags="up,loopback,running"),
            "eth0": snicstats(),
            "eth1": snicstats(isup=False, flags="broadcast"),
        }
        registry = IPRangeRegistry()

        SubnetExpander(registry, PsutilInterfaceProvider()).expand("auto4")

        assert registry.ranges == (AddressRange("192.168.7.1", "192.168.7.254"),)


class TestNullInterfaceProvider:

    def test_unavailable_and_empty(self):
        provider = NullInterfaceProvider()
        assert not provider.available
        assert provider.addresses() == []


@pytest.mark.skipif(providers.resource is None, reason="no rlimit support")
class TestRlimitProvider:
    """Tests for RlimitProvider."""

    def test_finite_limits(self, monkeypatch):
        monkeypatch.setattr(providers.resource, "getrlimit", lambda which: (1024, 4096))
        assert RlimitProvider().nofile_limits() == FileLimits(soft=1024, hard=4096)

    def test_infinite_hard_limit(self, monkeypatch):
        infinity = providers.resource.RLIM_INFINITY
        monkeypatch.setattr(providers.resource, "getrlimit", lambda which: (1024, infinity))
        assert RlimitProvider().nofile_limits() == FileLimits(soft=1024, hard=None)

    def test_infinite_soft_limit(self, monkeypatch):
        infinity = providers.resource.RLIM_INFINITY
        monkeypatch.setattr(providers.resource, "getrlimit", lambda which: (infinity, infinity))
        assert RlimitProvider().nofile_limits() is None

    def test_getrlimit_failure(self, monkeypatch, caplog):
        def broken(which):
            raise OSError("not permitted")

        monkeypatch.setattr(providers.resource, "getrlimit", broken)

        assert RlimitProvider().nofile_limits() is None
        assert "getrlimit() failed" in caplog.text


class TestNullResourceLimitProvider:

    def test_unknown(self):
        assert NullResourceLimitProvider().nofile_limits() is None
