# kubevip

A library for the configuration side of running a virtual IP in front of a
Kubernetes control plane:

- `kubevip.config` — the configuration model (`Config`, `RaftPeer`,
  `LoadBalancer`, `BackEnd`, `LeaderElectionSettings`), reading and writing
  YAML files, parsing peers (`id:address:port`) and backends
  (`address:port`), validating backend URLs, and round-robin backend
  selection;
- `kubevip.bgp` — BGP peer and speaker settings (`Peer`, `BGPConfig`) and
  parsing of peer lists;
- `kubevip.detector` — finding the address of a network interface;
- `kubevip.leaderelection` — a lease-based leader elector that works against
  any lock you supply;
- `kubevip.metrics` — pluggable leadership metrics;
- `kubevip.healthz` — a health-check adaptor for a running election.

## Installation

```
pip install .
```

Install the test extra to run the test suite:

```
pip install ".[test]"
pytest
```

## Configuration

```python
from kubevip.config import Config, LoadBalancer, parse_peer_config, open_config

config = Config(interface="eth0", vip="192.168.0.1", enable_arp=True)
config.load_balancers.append(LoadBalancer(name="api", type="tcp", port=6443))
config.parse_flags(
    "server1:192.168.0.1:10000",
    ["server2:192.168.0.2:10000", "server3:192.168.0.3:10000"],
    ["192.168.0.10:6443", "192.168.0.11:6443"],
)
config.write_config("kube-vip.yaml")

loaded = open_config("kube-vip.yaml")
print(loaded.to_yaml())
```

`Config.from_dict` and `Config.to_dict` convert to and from plain mappings;
keys are matched case-insensitively when reading. `sample_config()` returns an
example configuration, and `Config.print_config()` writes the YAML to standard
output. Malformed input raises `ConfigError`.

Backends are picked in turn with `LoadBalancer.return_endpoint_addr()` (or
`return_endpoint_url()` after `validate_backend_urls()` has parsed each
backend's `raw_url`). The position is shared between all load balancers;
`reset_endpoint_index()` starts it again from the first backend.

## BGP peers

```python
from kubevip.bgp import BGPConfig, parse_bgp_peer_config, split_peer_address

peers = parse_bgp_peer_config("10.0.0.2:65000::false,10.0.0.3:65000::true")
bgp = BGPConfig(as_number=65001, router_id="10.0.0.1", peers=peers)
bgp.next_hop_for()             # next_hop, else source_ip, else router_id
bgp.prefix_length("10.0.0.1")  # 32; 128 for IPv6 only when bgp.ipv6 is set
split_peer_address("10.0.0.2:1790")  # ("10.0.0.2", 1790); port defaults to 179
```

Each peer is `<host>:<AS>:<password>:<multihop>`; errors raise
`BGPConfigError`.

## Interface addresses

```python
from kubevip.detector import find_ip_address

name, address = find_ip_address("eth0")  # or "" for the first non-loopback address
```

`InterfaceNotFoundError` is raised when nothing matches.

## Leader election

The elector works against any `ResourceLock` subclass, which provides `get`,
`create`, `update`, `record_event`, `identity` and `describe`. `get` raises
`LockNotFoundError` when no record exists yet. Durations are in seconds.

```python
import threading
from kubevip.leaderelection import (
    LeaderCallbacks, LeaderElectionConfig, LockNotFoundError, ResourceLock, run_or_die,
)

class MemoryLock(ResourceLock):
    def __init__(self, name):
        self.name, self.record = name, None
    def get(self):
        if self.record is None:
            raise LockNotFoundError(self.name)
        return self.record, self.record.to_json()
    def create(self, record):
        self.record = record
    def update(self, record):
        self.record = record
    def record_event(self, message):
        print(message)
    def identity(self):
        return self.name
    def describe(self):
        return f"memory/{self.name}"

stop = threading.Event()
run_or_die(stop, LeaderElectionConfig(
    lock=MemoryLock("node-1"),
    lease_duration=15,
    renew_deadline=10,
    retry_period=2,
    callbacks=LeaderCallbacks(
        on_started_leading=lambda leading: print("leading"),
        on_stopped_leading=lambda: print("stopped"),
        on_new_leader=lambda identity: print("leader is", identity),
    ),
))
```

`run_or_die` blocks until `stop` is set or renewal fails; an invalid
configuration raises `ValueError`. `LeaderElector` can also be driven step by
step with `try_acquire_or_renew()`, and a `FakeClock` can stand in for the
system clock.

Metrics: pass a `MetricsProvider` subclass to `kubevip.metrics.set_provider`
before electors are created; only the first call takes effect.

Health checks: `new_leader_healthz_adaptor(timeout)` returns a
`HealthzAdaptor`; attach an elector with `set_leader_election`, then
`check()` raises `LeaseExpiredError` when this process holds the lease but has
not renewed it within the lease duration plus `timeout` seconds.

## What this package does not do

There is no command-line program: it does not generate Pod or DaemonSet
manifests, read settings from environment variables, or start anything. It
does not add or remove the virtual IP on an interface, send ARP or NDP
announcements, run a BGP speaker, proxy load-balanced traffic, or talk to a
Kubernetes API server; the leader elector only uses the lock object you give
it.