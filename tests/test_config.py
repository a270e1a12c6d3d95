import pytest
import yaml

from kubevip.config import (
    BackEnd,
    Config,
    ConfigError,
    LeaderElectionSettings,
    LoadBalancer,
    RaftPeer,
    open_config,
    parse_backend_config,
    parse_peer_config,
    reset_endpoint_index,
    sample_config,
    validate_backend_urls,
)


@pytest.fixture(autouse=True)
def _fresh_cursor():
    reset_endpoint_index()
    yield
    reset_endpoint_index()


def test_parse_backend_config():
    assert parse_backend_config("192.168.0.1:8080") == BackEnd(
        address="192.168.0.1", port=8080
    )


@pytest.mark.parametrize("text", ["192.168.0.1", "a:b:c"])
def test_parse_backend_config_format_error(text):
    with pytest.raises(ConfigError, match="address:port"):
        parse_backend_config(text)


def test_parse_backend_config_bad_port():
    with pytest.raises(ConfigError):
        parse_backend_config("192.168.0.1:http")


def test_parse_peer_config():
    assert parse_peer_config("server1:192.168.0.1:10000") == RaftPeer(
        id="server1", address="192.168.0.1", port=10000
    )


def test_parse_peer_config_errors():
    with pytest.raises(ConfigError, match="id:address:port"):
        parse_peer_config("192.168.0.1:10000")
    with pytest.raises(ConfigError):
        parse_peer_config("server1:192.168.0.1: 10")


def test_sample_config_values():
    config = sample_config()
    assert config.vip == "192.168.0.100"
    assert config.interface == "eth0"
    assert config.local_peer == RaftPeer("server1", "192.168.0.1", 10000)
    assert [p.id for p in config.remote_peers] == ["server2", "server3"]
    lb = config.load_balancers[0]
    assert lb.name == "Kubernetes Control Plane"
    assert lb.bind_to_vip is True
    assert [b.address for b in lb.backends] == [
        "192.168.0.100",
        "192.168.0.101",
        "192.168.0.102",
    ]


def test_to_dict_uses_field_names_and_flattens_leader_election():
    config = sample_config()
    config.leader_election = LeaderElectionSettings(lease_duration=15)
    data = config.to_dict()
    assert data["VIP"] == "192.168.0.100"
    assert data["LocalPeer"] == {"ID": "server1", "Address": "192.168.0.1", "Port": 10000}
    assert data["LeaseDuration"] == 15
    assert "LeaderElection" not in data


def test_dict_round_trip():
    config = sample_config()
    config.leader_election.enable_leader_election = True
    config.bgp_peers = ["10.0.0.1:65000::false"]
    assert Config.from_dict(config.to_dict()) == config


def test_from_dict_is_case_insensitive():
    config = Config.from_dict(
        {"vip": "10.0.0.9", "localpeer": {"id": "a", "address": "10.0.0.8", "port": 7}}
    )
    assert config.vip == "10.0.0.9"
    assert config.local_peer == RaftPeer(id="a", address="10.0.0.8", port=7)


def test_from_dict_rejects_wrong_types():
    with pytest.raises(ConfigError):
        Config.from_dict({"Port": "abc"})
    with pytest.raises(ConfigError):
        Config.from_dict({"RemotePeers": "server2"})


def test_from_dict_none_gives_defaults():
    assert Config.from_dict(None) == Config()


def test_yaml_file_round_trip(tmp_path):
    path = tmp_path / "config.yaml"
    config = sample_config()
    config.write_config(path)
    assert open_config(str(path)) == config


def test_print_config_outputs_yaml(capsys):
    config = sample_config()
    config.print_config()
    assert yaml.safe_load(capsys.readouterr().out) == config.to_dict()


def test_open_config_errors(tmp_path):
    with pytest.raises(ConfigError, match="Path cannot be blank"):
        open_config("")
    missing = str(tmp_path / "missing.yaml")
    with pytest.raises(ConfigError, match="Error reading"):
        open_config(missing)


def test_parse_flags():
    config = Config(load_balancers=[LoadBalancer()])
    config.parse_flags(
        "server1:192.168.0.1:10000",
        ["server2:192.168.0.2:10000", "server3:192.168.0.3:10000"],
        ["192.168.0.1:8080", "192.168.0.2:8080"],
    )
    assert config.local_peer == RaftPeer("server1", "192.168.0.1", 10000)
    assert [p.address for p in config.remote_peers] == ["192.168.0.2", "192.168.0.3"]
    assert [b.port for b in config.load_balancers[0].backends] == [8080, 8080]


def test_parse_flags_bad_peer():
    with pytest.raises(ConfigError):
        Config(load_balancers=[LoadBalancer()]).parse_flags("server1", [], [])


def test_parse_flags_needs_load_balancer_for_backends():
    with pytest.raises(ConfigError):
        Config().parse_flags("server1:192.168.0.1:10000", [], ["192.168.0.1:8080"])


def test_endpoint_round_robin():
    lb = LoadBalancer(
        backends=[BackEnd(address="10.0.0.1", port=80), BackEnd(address="10.0.0.2", port=80)]
    )
    results = [lb.return_endpoint_addr() for _ in range(3)]
    assert results == ["10.0.0.1:80", "10.0.0.2:80", "10.0.0.1:80"]


def test_endpoint_no_backends():
    with pytest.raises(ConfigError, match="No Backends configured"):
        LoadBalancer().return_endpoint_addr()


def test_validate_urls_and_url_rotation():
    backends = [
        BackEnd(raw_url="https://10.0.0.5:8443/api"),
        BackEnd(port=6443, raw_url="http://host.example.com"),
    ]
    validate_backend_urls(backends)
    assert (backends[0].address, backends[0].port) == ("10.0.0.5", 8443)
    assert backends[0].parsed_url.path == "/api"
    assert (backends[1].address, backends[1].port) == ("host.example.com", 6443)
    lb = LoadBalancer(backends=backends)
    assert lb.return_endpoint_url() is backends[0].parsed_url
    assert lb.return_endpoint_url() is backends[1].parsed_url


@pytest.mark.parametrize("raw", ["10.0.0.5:8443", "example.com/path"])
def test_validate_urls_requires_scheme(raw):
    with pytest.raises(ConfigError, match="prefixed with http"):
        validate_backend_urls([BackEnd(raw_url=raw)])


def test_validate_urls_bad_port():
    with pytest.raises(ConfigError):
        validate_backend_urls([BackEnd(raw_url="http://host.example.com:web")])