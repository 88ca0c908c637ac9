"""TCP and UDP port mapping driven by a plain-text rules file."""

__version__ = "0.2.1"
__all__ = ["cli", "mapping_rule", "tcp_proxy", "udp_proxy"]