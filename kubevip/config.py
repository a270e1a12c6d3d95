"""Configuration model, parsing and persistence."""

from __future__ import annotations

import logging
import os
import re
import sys
import threading
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import SplitResult, urlsplit

import yaml

from kubevip.bgp import BGPConfig, Peer

log = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")


class ConfigError(ValueError):
    """Raised for invalid configuration input."""


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ConfigError(f'invalid integer "{text}"')
    return int(text)


@dataclass
class RaftPeer:
    """A peer of the cluster."""

    id: str = ""
    address: str = ""
    port: int = 0


@dataclass
class BackEnd:
    """A server behind a load balancer."""

    address: str = ""
    port: int = 0
    raw_url: str = ""
    parsed_url: SplitResult | None = None


class _EndpointCursor:
    """Shared round-robin position across load balancers."""

    def __init__(self) -> None:
        self.index = -1
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self.index = -1

    def advance(self, count: int) -> int:
        with self._lock:
            self.index = self.index + 1 if self.index < count - 1 else 0
            return self.index


_cursor = _EndpointCursor()


def reset_endpoint_index() -> None:
    """Restart the round-robin endpoint selection."""
    _cursor.reset()


@dataclass
class LoadBalancer:
    """A load balancing instance."""

    name: str = ""
    type: str = ""
    port: int = 0
    bind_to_vip: bool = False
    backend_port: int = 0
    backends: list[BackEnd] = field(default_factory=list)

    def _next_backend(self) -> BackEnd:
        if not self.backends:
            raise ConfigError("No Backends configured")
        return self.backends[_cursor.advance(len(self.backends))]

    def return_endpoint_addr(self) -> str:
        """Return the next backend as ``address:port``, round robin."""
        backend = self._next_backend()
        return f"{backend.address}:{backend.port}"

    def return_endpoint_url(self) -> SplitResult | None:
        """Return the parsed URL of the next backend, round robin."""
        return self._next_backend().parsed_url


@dataclass
class LeaderElectionSettings:
    """Kubernetes leader election settings."""

    enable_leader_election: bool = False
    lease_duration: int = 0
    renew_deadline: int = 0
    retry_period: int = 0


@dataclass
class Config:
    """All settings of a virtual IP instance."""

    enable_arp: bool = False
    enable_bgp: bool = False
    enable_control_pane: bool = False
    enable_services: bool = False
    annotations: str = ""
    leader_election: LeaderElectionSettings = field(default_factory=LeaderElectionSettings)
    local_peer: RaftPeer = field(default_factory=RaftPeer)
    remote_peers: list[RaftPeer] = field(default_factory=list)
    add_peers_as_backends: bool = False
    vip: str = ""
    vip_cidr: str = ""
    address: str = ""
    port: int = 0
    namespace: str = ""
    ddns: bool = False
    single_node: bool = False
    start_as_leader: bool = False
    interface: str = ""
    enable_load_balancer: bool = False
    bgp_config: BGPConfig = field(default_factory=BGPConfig)
    bgp_peer_config: Peer = field(default_factory=Peer)
    bgp_peers: list[str] = field(default_factory=list)
    enable_metal: bool = False
    metal_api_key: str = ""
    metal_project: str = ""
    metal_project_id: str = ""
    provider_config: str = ""
    load_balancers: list[LoadBalancer] = field(default_factory=list)
    prometheus_http_server: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from a mapping; keys match case-insensitively."""
        return _load(cls, data)

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration as a plain mapping."""
        return _dump(self)

    def to_yaml(self) -> str:
        """Return the configuration as YAML text."""
        return yaml.safe_dump(self.to_dict(), sort_keys=True, default_flow_style=False)

    def print_config(self) -> str:
        """Write the configuration as YAML to standard output and return the text."""
        text = self.to_yaml()
        sys.stdout.write(text)
        sys.stdout.flush()
        return text

    def parse_flags(self, local_peer: str, remote_peers, backends) -> None:
        """Fill peers and first load balancer backends from command line strings."""
        self.local_peer = parse_peer_config(local_peer)
        for peer in remote_peers:
            self.remote_peers.append(parse_peer_config(peer))
        parsed = [parse_backend_config(backend) for backend in backends]
        if parsed and not self.load_balancers:
            raise ConfigError("No load balancer configured to add backends to")
        if parsed:
            self.load_balancers[0].backends.extend(parsed)

    def write_config(self, path) -> None:
        """Write the configuration as YAML to ``path``."""
        data = self.to_yaml()
        with open(path, "w", encoding="utf-8") as handle:
            written = handle.write(data)
        log.debug("wrote %d bytes", written)


_EMBED = object()
_URL = object()

_SCHEMA: dict[type, tuple[tuple[str | None, str, Any], ...]] = {
    Peer: (
        ("Address", "address", None),
        ("AS", "as_number", None),
        ("Password", "password", None),
        ("MultiHop", "multihop", None),
    ),
    BGPConfig: (
        ("AS", "as_number", None),
        ("RouterID", "router_id", None),
        ("NextHop", "next_hop", None),
        ("SourceIP", "source_ip", None),
        ("SourceIF", "source_if", None),
        ("Peers", "peers", [Peer]),
        ("IPv6", "ipv6", None),
    ),
    RaftPeer: (
        ("ID", "id", None),
        ("Address", "address", None),
        ("Port", "port", None),
    ),
    BackEnd: (
        ("Port", "port", None),
        ("Address", "address", None),
        ("RawURL", "raw_url", None),
        ("ParsedURL", "parsed_url", _URL),
    ),
    LoadBalancer: (
        ("Name", "name", None),
        ("Type", "type", None),
        ("Port", "port", None),
        ("BindToVip", "bind_to_vip", None),
        ("BackendPort", "backend_port", None),
        ("Backends", "backends", [BackEnd]),
    ),
    LeaderElectionSettings: (
        ("EnableLeaderElection", "enable_leader_election", None),
        ("LeaseDuration", "lease_duration", None),
        ("RenewDeadline", "renew_deadline", None),
        ("RetryPeriod", "retry_period", None),
    ),
    Config: (
        ("EnableARP", "enable_arp", None),
        ("EnableBGP", "enable_bgp", None),
        ("EnableControlPane", "enable_control_pane", None),
        ("EnableServices", "enable_services", None),
        ("Annotations", "annotations", None),
        (None, "leader_election", _EMBED),
        ("LocalPeer", "local_peer", RaftPeer),
        ("RemotePeers", "remote_peers", [RaftPeer]),
        ("AddPeersAsBackends", "add_peers_as_backends", None),
        ("VIP", "vip", None),
        ("VIPCIDR", "vip_cidr", None),
        ("Address", "address", None),
        ("Port", "port", None),
        ("Namespace", "namespace", None),
        ("DDNS", "ddns", None),
        ("SingleNode", "single_node", None),
        ("StartAsLeader", "start_as_leader", None),
        ("Interface", "interface", None),
        ("EnableLoadBalancer", "enable_load_balancer", None),
        ("BGPConfig", "bgp_config", BGPConfig),
        ("BGPPeerConfig", "bgp_peer_config", Peer),
        ("BGPPeers", "bgp_peers", [str]),
        ("EnableMetal", "enable_metal", None),
        ("MetalAPIKey", "metal_api_key", None),
        ("MetalProject", "metal_project", None),
        ("MetalProjectID", "metal_project_id", None),
        ("ProviderConfig", "provider_config", None),
        ("LoadBalancers", "load_balancers", [LoadBalancer]),
        ("PrometheusHTTPServer", "prometheus_http_server", None),
    ),
}


def _dump(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, attr, kind in _SCHEMA[type(obj)]:
        value = getattr(obj, attr)
        if kind is _EMBED:
            out.update(_dump(value))
        elif kind is _URL:
            out[key] = value.geturl() if value is not None else None
        elif isinstance(kind, list):
            item = kind[0]
            out[key] = [_dump(v) if item in _SCHEMA else v for v in value]
        elif kind is not None:
            out[key] = _dump(value)
        else:
            out[key] = value
    return out


def _check_scalar(key: str, value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        ok = isinstance(value, bool)
    elif isinstance(default, int):
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ConfigError(
            f"Cannot read [{key}]: expected {type(default).__name__}, got {value!r}"
        )
    return value


def _load(cls: type, data: Any) -> Any:
    obj = cls()
    if data is None:
        return obj
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping for {cls.__name__}, got {data!r}")
    lowered = {str(k).lower(): v for k, v in data.items()}
    for key, attr, kind in _SCHEMA[cls]:
        if kind is _EMBED:
            setattr(obj, attr, _load(type(getattr(obj, attr)), data))
            continue
        value = lowered.get(key.lower())
        if value is None:
            continue
        if kind is _URL:
            try:
                setattr(obj, attr, urlsplit(str(value)))
            except ValueError as exc:
                raise ConfigError(f"Cannot read [{key}]: {exc}") from None
        elif isinstance(kind, list):
            if not isinstance(value, list):
                raise ConfigError(f"Cannot read [{key}]: expected a list")
            item = kind[0]
            if item in _SCHEMA:
                setattr(obj, attr, [_load(item, v) for v in value])
            else:
                setattr(obj, attr, [_check_scalar(key, v, "") for v in value])
        elif kind is not None:
            setattr(obj, attr, _load(kind, value))
        else:
            setattr(obj, attr, _check_scalar(key, value, getattr(obj, attr)))
    return obj


def parse_backend_config(endpoint: str) -> BackEnd:
    """Parse an ``address:port`` backend."""
    parts = endpoint.split(":")
    if len(parts) != 2:
        raise ConfigError(
            "Ensure a backend is in in the format address:port, e.g. 10.0.0.1:8080"
        )
    return BackEnd(address=parts[0], port=_atoi(parts[1]))


def parse_peer_config(endpoint: str) -> RaftPeer:
    """Parse an ``id:address:port`` peer."""
    parts = endpoint.split(":")
    if len(parts) != 3:
        raise ConfigError(
            "Ensure a peer is in in the format id:address:port, e.g. server1:10.0.0.1:8080"
        )
    return RaftPeer(id=parts[0], address=parts[1], port=_atoi(parts[2]))


def open_config(path) -> Config:
    """Read a YAML configuration file."""
    if not path:
        raise ConfigError("Path cannot be blank")
    log.info("Reading configuration from [%s]", path)
    if not os.path.exists(path):
        raise ConfigError(f"Error reading [{path}]")
    with open(path, encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Error parsing [{path}]: {exc}") from None
    return Config.from_dict(data)


def sample_config() -> Config:
    """Return an example configuration."""
    return Config(
        remote_peers=[
            RaftPeer(id="server2", address="192.168.0.2", port=10000),
            RaftPeer(id="server3", address="192.168.0.3", port=10000),
        ],
        local_peer=RaftPeer(id="server1", address="192.168.0.1", port=10000),
        vip="192.168.0.100",
        interface="eth0",
        load_balancers=[
            LoadBalancer(
                name="Kubernetes Control Plane",
                type="http",
                port=6443,
                bind_to_vip=True,
                backends=[
                    BackEnd(address="192.168.0.100", port=6443),
                    BackEnd(address="192.168.0.101", port=6443),
                    BackEnd(address="192.168.0.102", port=6443),
                ],
            )
        ],
    )


def _split_host(netloc: str) -> tuple[str, str]:
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            raise ConfigError(f"missing ']' in host [{host}]")
        rest = host[end + 1:]
        if rest and not rest.startswith(":"):
            raise ConfigError(f"invalid port in host [{host}]")
        return host[1:end], rest[1:]
    hostname, _, port_text = host.partition(":")
    return hostname, port_text


def validate_backend_urls(endpoints) -> None:
    """Parse each backend's raw URL, filling its address, port and parsed URL."""
    for backend in endpoints:
        log.debug("Parsing [%s]", backend.raw_url)
        try:
            parsed = urlsplit(backend.raw_url)
        except ValueError as exc:
            raise ConfigError(str(exc)) from None
        if not parsed.netloc:
            raise ConfigError(
                f"Unable to parse [{backend.raw_url}], ensure it's prefixed with http(s)://"
            )
        hostname, port_text = _split_host(parsed.netloc)
        backend.address = hostname
        if port_text:
            backend.port = _atoi(port_text)
        backend.parsed_url = parsed