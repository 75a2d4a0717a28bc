"""Route53 hosted zone operations for DNS-01 TXT records."""

import logging
import time
from collections.abc import Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from wildcert.exceptions import DnsProvisionFailed
from wildcert.models import ChallengeRecord
from wildcert.retry import BackoffPolicy

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30
DEFAULT_CHANGE_POLICY = BackoffPolicy(max_attempts=60, base_delay=5.0, multiplier=1.0)


def quote_txt(value: str) -> str:
    """Quote a TXT value the way Route53 expects it."""
    return f'"{value}"'


def unquote_txt(value: str) -> str:
    """Join and unquote a Route53 TXT value ('"a" "b"' -> 'ab')."""
    parts = value.strip().split('" "')
    return "".join(part.strip('"') for part in parts)


class Route53Zone:
    """
    Create, delete and inspect challenge TXT records in Route53.

    Route53 reports a change as INSYNC once all of its authoritative
    servers have it; wait_for_change blocks on that with a bounded loop.
    """

    def __init__(
        self,
        route53_client=None,
        ttl: int = DEFAULT_TTL,
        change_policy: BackoffPolicy = DEFAULT_CHANGE_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the zone provider.

        Args:
            route53_client: Optional boto3 Route53 client (for testing)
            ttl: TTL for challenge records in seconds
            change_policy: Polling policy for change status
            sleep: Sleep function (for testing)
        """
        self.ttl = ttl
        self.change_policy = change_policy
        self._sleep = sleep
        self._route53_client = route53_client

    @property
    def route53_client(self):
        """Lazy-load Route53 client."""
        if self._route53_client is None:
            self._route53_client = boto3.client("route53")
        return self._route53_client

    def _change(self, action: str, record: ChallengeRecord) -> str:
        response = self.route53_client.change_resource_record_sets(
            HostedZoneId=record.zone_id,
            ChangeBatch={
                "Comment": f"wildcert DNS-01 validation {action}",
                "Changes": [
                    {
                        "Action": action,
                        "ResourceRecordSet": {
                            "Name": record.fqdn,
                            "Type": "TXT",
                            "TTL": self.ttl,
                            "ResourceRecords": [{"Value": quote_txt(record.value)}],
                        },
                    }
                ],
            },
        )
        return response["ChangeInfo"]["Id"]

    def upsert_txt(self, record: ChallengeRecord) -> str:
        """
        Create or replace the TXT record.

        Returns:
            Route53 change ID

        Raises:
            DnsProvisionFailed: If Route53 rejects the change
        """
        try:
            change_id = self._change("UPSERT", record)
        except (ClientError, BotoCoreError) as e:
            raise DnsProvisionFailed(
                f"Failed to write TXT record {record.name}: {e}"
            ) from e
        logger.info(f"Wrote TXT record {record.name} in zone {record.zone_id}")
        return change_id

    def delete_txt(self, record: ChallengeRecord) -> str | None:
        """
        Delete the TXT record.

        Returns:
            Route53 change ID, or None if the record did not exist

        Raises:
            ClientError: On any other Route53 error
        """
        try:
            change_id = self._change("DELETE", record)
        except ClientError as e:
            error = e.response["Error"]
            if error["Code"] == "InvalidChangeBatch" and "not found" in error.get(
                "Message", ""
            ):
                logger.debug(f"TXT record {record.name} already absent")
                return None
            raise
        logger.info(f"Deleted TXT record {record.name} in zone {record.zone_id}")
        return change_id

    def wait_for_change(self, change_id: str) -> None:
        """
        Wait for a change to be propagated to all Route53 DNS servers.

        Raises:
            DnsProvisionFailed: If the change is not INSYNC within the policy
        """
        status = "UNKNOWN"
        for attempt in range(self.change_policy.max_attempts):
            try:
                response = self.route53_client.get_change(Id=change_id)
            except (ClientError, BotoCoreError) as e:
                raise DnsProvisionFailed(
                    f"Failed to read Route53 change {change_id}: {e}"
                ) from e
            status = response["ChangeInfo"]["Status"]
            if status == "INSYNC":
                logger.debug(f"Route53 change {change_id} is INSYNC")
                return
            if self.change_policy.has_attempts_left(attempt):
                self._sleep(self.change_policy.delay(attempt))
        raise DnsProvisionFailed(
            f"Timed out waiting for Route53 change {change_id} (status: {status})"
        )

    def txt_values(self, record: ChallengeRecord) -> list[str]:
        """Get the TXT values currently stored in the zone for the record name."""
        response = self.route53_client.list_resource_record_sets(
            HostedZoneId=record.zone_id,
            StartRecordName=record.fqdn,
            StartRecordType="TXT",
            MaxItems="1",
        )
        for record_set in response.get("ResourceRecordSets", []):
            if (
                record_set["Name"].lower() == record.fqdn.lower()
                and record_set["Type"] == "TXT"
            ):
                return [
                    unquote_txt(rr["Value"])
                    for rr in record_set.get("ResourceRecords", [])
                ]
        return []

    def name_servers(self, zone_id: str) -> list[str]:
        """Get the authoritative name servers of a hosted zone."""
        response = self.route53_client.get_hosted_zone(Id=zone_id)
        return list(response.get("DelegationSet", {}).get("NameServers", []))
