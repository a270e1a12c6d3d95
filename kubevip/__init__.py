"""Virtual IP configuration, BGP peer parsing, interface discovery and lease-based leader election."""

__version__ = "0.3.4"

__all__ = [
    "bgp",
    "config",
    "detector",
    "healthz",
    "leaderelection",
    "metrics",
]