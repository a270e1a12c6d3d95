import pytest

from kubevip.bgp import (
    BGPConfig,
    BGPConfigError,
    Peer,
    parse_bgp_peer_config,
    split_peer_address,
)


def test_parse_single_peer():
    password = "password"
    peers = parse_bgp_peer_config(f"10.0.0.1:65000:{password}:true")
    assert peers == [
        Peer(address="10.0.0.1", as_number=65000, password=password, multihop=True)
    ]


def test_parse_multiple_peers_keeps_order():
    peers = parse_bgp_peer_config("10.0.0.1:65000::false,10.0.0.2:65001::1")
    assert [p.address for p in peers] == ["10.0.0.1", "10.0.0.2"]
    assert [p.as_number for p in peers] == [65000, 65001]
    assert [p.multihop for p in peers] == [False, True]
    assert all(p.password == "" for p in peers)


@pytest.mark.parametrize("word,expected", [("T", True), ("FALSE", False), ("0", False)])
def test_parse_multihop_words(word, expected):
    assert parse_bgp_peer_config(f"10.0.0.1:1::{word}")[0].multihop is expected


@pytest.mark.parametrize(
    "text",
    ["10.0.0.1:65000:true", "", "10.0.0.1:65000:a:true:extra"],
)
def test_parse_wrong_field_count(text):
    with pytest.raises(BGPConfigError, match="format error"):
        parse_bgp_peer_config(text)


def test_parse_bad_as():
    with pytest.raises(BGPConfigError, match="AS format error"):
        parse_bgp_peer_config("10.0.0.1:abc::true")


def test_parse_bad_multihop():
    with pytest.raises(BGPConfigError, match="MultiHop"):
        parse_bgp_peer_config("10.0.0.1:65000::yes")


def test_split_peer_address_default_port():
    assert split_peer_address("10.0.0.1") == ("10.0.0.1", 179)


def test_split_peer_address_with_port():
    assert split_peer_address("10.0.0.1:1179") == ("10.0.0.1", 1179)


def test_split_peer_address_bad_port():
    with pytest.raises(BGPConfigError, match="Unable to parse port"):
        split_peer_address("10.0.0.1:bgp")


def test_next_hop_priority():
    config = BGPConfig(router_id="10.0.0.3", source_ip="10.0.0.2", next_hop="10.0.0.1")
    assert config.next_hop_for() == "10.0.0.1"
    config.next_hop = ""
    assert config.next_hop_for() == "10.0.0.2"
    config.source_ip = ""
    assert config.next_hop_for() == "10.0.0.3"


def test_prefix_length_ipv4():
    assert BGPConfig().prefix_length("192.168.0.1") == 32


def test_prefix_length_ipv6_disabled_and_enabled():
    assert BGPConfig().prefix_length("2001:db8::1") is None
    assert BGPConfig(ipv6=True).prefix_length("2001:db8::1") == 128


def test_prefix_length_ipv4_mapped_counts_as_ipv4():
    assert BGPConfig().prefix_length("::ffff:10.0.0.1") == 32