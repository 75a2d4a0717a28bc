"""DNS-01 challenge handling backed by Route53."""

from wildcert.dns.propagation import PropagationChecker
from wildcert.dns.route53 import Route53Zone
from wildcert.dns.solver import DnsChallengeSolver

__all__ = [
    "DnsChallengeSolver",
    "PropagationChecker",
    "Route53Zone",
]
