"""Check that a challenge TXT record is visible on the nameservers that matter."""

import logging

import dns.exception
import dns.resolver

from wildcert.models import ChallengeRecord

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = 5.0


class PropagationChecker:
    """
    Query name servers directly for a TXT record.

    A record counts as propagated only when every authoritative server of
    the zone, plus every configured public resolver, returns the expected
    value. Answers from the local stub resolver are never trusted since they
    may be cached.
    """

    def __init__(
        self,
        public_resolvers: list[str] | None = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ):
        """
        Initialize the checker.

        Args:
            public_resolvers: Extra resolver IPs that must see the record
            timeout: Lifetime of a single DNS query in seconds
        """
        self.public_resolvers = list(public_resolvers or [])
        self.timeout = timeout
        self._ns_addresses: dict[str, list[str]] = {}

    def resolve_name_servers(self, name_servers: list[str]) -> list[str]:
        """
        Resolve name server host names to IPv4 addresses.

        Host names that cannot be resolved are skipped with a warning.
        """
        addresses: list[str] = []
        for host in name_servers:
            if host not in self._ns_addresses:
                try:
                    answer = dns.resolver.resolve(host, "A", lifetime=self.timeout)
                    self._ns_addresses[host] = [rdata.address for rdata in answer]
                except dns.exception.DNSException as e:
                    logger.warning(f"Could not resolve name server {host}: {e}")
                    continue
            addresses.extend(self._ns_addresses[host])
        return addresses

    def query_txt(self, server: str, name: str) -> list[str]:
        """
        Query one server for the TXT values of a name.

        Returns:
            TXT values, or an empty list if the name has none or the
            server did not answer
        """
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [server]
        resolver.lifetime = self.timeout
        try:
            answer = resolver.resolve(name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except (dns.resolver.NoNameservers, dns.exception.Timeout) as e:
            logger.debug(f"No answer from {server} for {name}: {e}")
            return []
        except dns.exception.DNSException as e:
            logger.warning(f"DNS query to {server} for {name} failed: {e}")
            return []

        values = []
        for rdata in answer:
            values.append(b"".join(rdata.strings).decode("utf-8"))
        return values

    def servers_missing(
        self, record: ChallengeRecord, name_servers: list[str]
    ) -> list[str]:
        """
        Get the servers that do not yet return the record value.

        An empty result means the record is visible everywhere.
        """
        servers = self.resolve_name_servers(name_servers) + self.public_resolvers
        if not servers:
            # Nothing to query counts as not visible
            return ["<no servers>"]
        return [
            server
            for server in servers
            if record.value not in self.query_txt(server, record.name)
        ]

    def is_visible(self, record: ChallengeRecord, name_servers: list[str]) -> bool:
        """Check that all servers return the expected TXT value."""
        missing = self.servers_missing(record, name_servers)
        if missing:
            logger.debug(f"{record.name} not yet visible on {', '.join(missing)}")
            return False
        return True
