"""Tests for the Route53 zone provider."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from wildcert.dns.route53 import Route53Zone, quote_txt, unquote_txt
from wildcert.exceptions import DnsProvisionFailed
from wildcert.retry import BackoffPolicy


def _zone(client, attempts=3):
    sleep = MagicMock()
    zone = Route53Zone(
        route53_client=client,
        ttl=30,
        change_policy=BackoffPolicy(
            max_attempts=attempts, base_delay=5.0, multiplier=1.0
        ),
        sleep=sleep,
    )
    return zone, sleep


class TestTxtQuoting:
    """Tests for TXT value quoting."""

    def test_quote(self):
        """Test values are wrapped in double quotes."""
        assert quote_txt("abc") == '"abc"'

    def test_unquote_split_value(self):
        """Test long values split in several strings are joined."""
        assert unquote_txt('"abc" "def"') == "abcdef"
        assert unquote_txt('"abc"') == "abc"


class TestRoute53Zone:
    """Tests for Route53Zone."""

    def test_upsert_txt(self, challenge_record):
        """Test the change batch sent to Route53."""
        client = MagicMock()
        client.change_resource_record_sets.return_value = {
            "ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}
        }
        zone, _ = _zone(client)

        change_id = zone.upsert_txt(challenge_record)

        assert change_id == "/change/C1"
        kwargs = client.change_resource_record_sets.call_args.kwargs
        assert kwargs["HostedZoneId"] == "Z0123456789ABC"
        change = kwargs["ChangeBatch"]["Changes"][0]
        assert change["Action"] == "UPSERT"
        assert change["ResourceRecordSet"]["Name"] == "_acme-challenge.example.com."
        assert change["ResourceRecordSet"]["Type"] == "TXT"
        assert change["ResourceRecordSet"]["TTL"] == 30
        assert change["ResourceRecordSet"]["ResourceRecords"] == [
            {"Value": f'"{challenge_record.value}"'}
        ]

    def test_upsert_failure(self, challenge_record):
        """Test Route53 errors become DnsProvisionFailed."""
        client = MagicMock()
        client.change_resource_record_sets.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}},
            "ChangeResourceRecordSets",
        )
        zone, _ = _zone(client)

        with pytest.raises(DnsProvisionFailed):
            zone.upsert_txt(challenge_record)

    def test_delete_txt(self, challenge_record):
        """Test a DELETE change is sent."""
        client = MagicMock()
        client.change_resource_record_sets.return_value = {
            "ChangeInfo": {"Id": "/change/C2", "Status": "PENDING"}
        }
        zone, _ = _zone(client)

        assert zone.delete_txt(challenge_record) == "/change/C2"
        change = client.change_resource_record_sets.call_args.kwargs["ChangeBatch"][
            "Changes"
        ][0]
        assert change["Action"] == "DELETE"

    def test_delete_missing_record(self, challenge_record):
        """Test deleting an absent record is not an error."""
        client = MagicMock()
        client.change_resource_record_sets.side_effect = ClientError(
            {
                "Error": {
                    "Code": "InvalidChangeBatch",
                    "Message": "Tried to delete resource record set "
                    "[name='_acme-challenge.example.com.', type='TXT'] "
                    "but it was not found",
                }
            },
            "ChangeResourceRecordSets",
        )
        zone, _ = _zone(client)

        assert zone.delete_txt(challenge_record) is None

    def test_delete_other_error(self, challenge_record):
        """Test other errors propagate from delete."""
        client = MagicMock()
        client.change_resource_record_sets.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}},
            "ChangeResourceRecordSets",
        )
        zone, _ = _zone(client)

        with pytest.raises(ClientError):
            zone.delete_txt(challenge_record)

    def test_wait_for_change(self):
        """Test polling until the change is INSYNC."""
        client = MagicMock()
        client.get_change.side_effect = [
            {"ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}},
            {"ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}},
            {"ChangeInfo": {"Id": "/change/C1", "Status": "INSYNC"}},
        ]
        zone, sleep = _zone(client, attempts=5)

        zone.wait_for_change("/change/C1")

        assert client.get_change.call_count == 3
        assert sleep.call_count == 2

    def test_wait_for_change_timeout(self):
        """Test a change that never syncs raises DnsProvisionFailed."""
        client = MagicMock()
        client.get_change.return_value = {
            "ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}
        }
        zone, sleep = _zone(client, attempts=3)

        with pytest.raises(DnsProvisionFailed, match="PENDING"):
            zone.wait_for_change("/change/C1")

        assert client.get_change.call_count == 3
        assert sleep.call_count == 2

    def test_txt_values(self, challenge_record):
        """Test stored TXT values are read back unquoted."""
        client = MagicMock()
        client.list_resource_record_sets.return_value = {
            "ResourceRecordSets": [
                {
                    "Name": "_acme-challenge.example.com.",
                    "Type": "TXT",
                    "TTL": 30,
                    "ResourceRecords": [{"Value": '"one"'}, {"Value": '"two"'}],
                }
            ]
        }
        zone, _ = _zone(client)

        assert zone.txt_values(challenge_record) == ["one", "two"]

    def test_txt_values_other_name(self, challenge_record):
        """Test the next record set in the zone is not mistaken for ours."""
        client = MagicMock()
        client.list_resource_record_sets.return_value = {
            "ResourceRecordSets": [
                {
                    "Name": "api.example.com.",
                    "Type": "A",
                    "ResourceRecords": [{"Value": "192.0.2.1"}],
                }
            ]
        }
        zone, _ = _zone(client)

        assert zone.txt_values(challenge_record) == []

    def test_name_servers(self):
        """Test name servers come from the delegation set."""
        client = MagicMock()
        client.get_hosted_zone.return_value = {
            "HostedZone": {"Id": "/hostedzone/Z1"},
            "DelegationSet": {
                "NameServers": ["ns-1.awsdns-01.org", "ns-2.awsdns-02.com"]
            },
        }
        zone, _ = _zone(client)

        assert zone.name_servers("Z1") == ["ns-1.awsdns-01.org", "ns-2.awsdns-02.com"]
