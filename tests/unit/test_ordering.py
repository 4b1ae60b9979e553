"""Unit tests for IP ordering of device records."""

from __future__ import annotations

from firewalla_ha_sync.devices.ordering import ip_sort_key, sort_devices
from firewalla_ha_sync.models import DeviceRecord


def _dev(ip: str, name: str | None = None) -> DeviceRecord:
    return DeviceRecord(id=None, ip=ip, display_name=name)


class TestIpSortKey:
    def test_numeric_octets(self) -> None:
        assert ip_sort_key("1.2.3.10") > ip_sort_key("1.2.3.4")

    def test_unresolved_after_any_address(self) -> None:
        assert ip_sort_key("-") > ip_sort_key("255.255.255.255")

    def test_non_ipv4_is_unresolved(self) -> None:
        for value in ("fe80::1", "1.2.3", "1.2.3.4.5", "a.b.c.d", "1.2.3.256", "", None):
            assert ip_sort_key(value) == (1, ())

    def test_unicode_digits_are_unresolved(self) -> None:
        for value in ("192.168.1.²", "١.٢.٣.٤"):
            assert ip_sort_key(value) == (1, ())


class TestSortDevices:
    def test_octets_compared_numerically(self) -> None:
        ordered = sort_devices([_dev("1.2.3.4"), _dev("10.0.0.1"), _dev("1.2.3.10")])
        assert [d.ip for d in ordered] == ["1.2.3.4", "1.2.3.10", "10.0.0.1"]

    def test_first_mismatching_octet_decides(self) -> None:
        ordered = sort_devices([_dev("192.168.2.1"), _dev("192.168.10.1"), _dev("192.168.1.200")])
        assert [d.ip for d in ordered] == ["192.168.1.200", "192.168.2.1", "192.168.10.1"]

    def test_unresolved_last_in_input_order(self) -> None:
        ordered = sort_devices([
            _dev("-", "first"),
            _dev("10.0.0.1"),
            _dev("-", "second"),
            _dev("1.1.1.1"),
            _dev("-", "third"),
        ])
        assert [d.ip for d in ordered[:2]] == ["1.1.1.1", "10.0.0.1"]
        assert [d.display_name for d in ordered[2:]] == ["first", "second", "third"]

    def test_equal_ips_keep_input_order(self) -> None:
        ordered = sort_devices([_dev("10.0.0.1", "x"), _dev("10.0.0.1", "y")])
        assert [d.display_name for d in ordered] == ["x", "y"]

    def test_odd_address_sorts_last_without_error(self) -> None:
        ordered = sort_devices([_dev("192.168.1.²", "weird"), _dev("192.168.1.5", "ok")])
        assert [d.display_name for d in ordered] == ["ok", "weird"]
