"""Unit tests for the set differ (diff_addresses, address_set)."""

import itertools

import pytest

from ipwatch_dns.cli import DiffResult, address_set, diff_addresses

SAMPLES = [
    [],
    ["1.2.3.4"],
    ["1.2.3.4", "1.2.3.4"],
    ["5.6.7.8", "1.2.3.4", "5.6.7.8"],
    ["10.0.0.1", "9.0.0.1", "192.168.1.1"],
]


@pytest.mark.parametrize("addresses", SAMPLES)
def test_diff_of_same_set_is_unchanged(addresses) -> None:
    """diff(S, S) is unchanged for any ordering or duplication of S."""
    for permutation in itertools.permutations(addresses):
        result = diff_addresses(addresses, list(permutation) + list(permutation[:1]))
        assert result.changed is False
        assert result == DiffResult()


@pytest.mark.parametrize("a, b", list(itertools.product(SAMPLES, repeat=2)))
def test_changed_iff_sets_differ(a, b) -> None:
    assert diff_addresses(a, b).changed == (set(a) != set(b))
    assert diff_addresses(a, b).changed == diff_addresses(b, a).changed


def test_added_and_removed() -> None:
    result = diff_addresses(["1.2.3.4", "2.2.2.2"], ["2.2.2.2", "5.6.7.8", "3.3.3.3"])

    assert result.added == ("3.3.3.3", "5.6.7.8")
    assert result.removed == ("1.2.3.4",)
    assert result.changed is True


def test_diff_is_swapped_when_inputs_are_swapped() -> None:
    forward = diff_addresses(["1.1.1.1"], ["2.2.2.2"])
    backward = diff_addresses(["2.2.2.2"], ["1.1.1.1"])

    assert forward.added == backward.removed
    assert forward.removed == backward.added


def test_address_set_orders_numerically() -> None:
    assert address_set(["10.0.0.2", "9.0.0.1", "10.0.0.2", "10.0.0.10"]) == (
        "9.0.0.1",
        "10.0.0.2",
        "10.0.0.10",
    )


def test_address_set_puts_non_ip_values_last() -> None:
    """Published values are not always IPs; they still get a stable position."""
    assert address_set(["zeta", "1.1.1.1", "alpha"]) == ("1.1.1.1", "alpha", "zeta")
