"""Pytest fixtures for wildcert tests."""

import io
from datetime import UTC, datetime, timedelta

import pytest
from botocore.exceptions import ClientError
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from wildcert.models import CertificateRequest, ChallengeRecord


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakePaginator:
    """list_objects_v2 paginator over a FakeS3Client, two keys per page."""

    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket, Prefix=""):  # noqa: N803
        keys = sorted(k for k in self.client.objects if k.startswith(Prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        for i in range(0, len(keys), 2):
            yield {"Contents": [{"Key": key} for key in keys[i : i + 2]]}


class FakeS3Client:
    """
    In-memory S3 client supporting conditional writes.

    Failures can be injected per operation and key fragment with fail().
    """

    def __init__(self, versioning: bool = False):
        self.versioning = versioning
        self.objects: dict[str, dict] = {}
        self.put_calls: list[dict] = []
        self._failures: list[tuple[str, str, str]] = []
        self._counter = 0

    def fail(self, operation: str, key_fragment: str, code: str = "InternalError"):
        """Make the next matching call raise a ClientError."""
        self._failures.append((operation, key_fragment, code))

    def _maybe_fail(self, operation: str, key: str) -> None:
        for i, (op, fragment, code) in enumerate(self._failures):
            if op == operation and fragment in key:
                del self._failures[i]
                raise _client_error(code, operation)

    def put_object(self, Bucket, Key, Body, **kwargs):  # noqa: N803
        self.put_calls.append({"Key": Key, **kwargs})
        self._maybe_fail("PutObject", Key)
        existing = self.objects.get(Key)
        if kwargs.get("IfNoneMatch") == "*" and existing is not None:
            raise _client_error("PreconditionFailed", "PutObject")
        if "IfMatch" in kwargs and (
            existing is None or existing["ETag"] != kwargs["IfMatch"]
        ):
            raise _client_error("PreconditionFailed", "PutObject")

        self._counter += 1
        body = Body.encode("utf-8") if isinstance(Body, str) else Body
        etag = f'"etag-{self._counter}"'
        self.objects[Key] = {"Body": body, "ETag": etag}
        response = {"ETag": etag}
        if self.versioning:
            response["VersionId"] = f"version-{self._counter}"
        return response

    def get_object(self, Bucket, Key):  # noqa: N803
        self._maybe_fail("GetObject", Key)
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        obj = self.objects[Key]
        return {"Body": io.BytesIO(obj["Body"]), "ETag": obj["ETag"]}

    def delete_object(self, Bucket, Key):  # noqa: N803
        self._maybe_fail("DeleteObject", Key)
        self.objects.pop(Key, None)
        return {}

    def delete_objects(self, Bucket, Delete):  # noqa: N803
        for obj in Delete["Objects"]:
            self.objects.pop(obj["Key"], None)
        return {"Deleted": Delete["Objects"]}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def keys(self, prefix: str = "") -> list[str]:
        """Stored keys under a prefix."""
        return sorted(k for k in self.objects if k.startswith(prefix))


class FakeZone:
    """In-memory stand-in for Route53Zone."""

    def __init__(self, name_servers: list[str] | None = None):
        self.records: dict[str, set[str]] = {}
        self.upserted: list[ChallengeRecord] = []
        self.deleted: list[ChallengeRecord] = []
        self._name_servers = name_servers or ["ns-1.awsdns-01.org"]

    def upsert_txt(self, record: ChallengeRecord) -> str:
        self.records[record.name] = {record.value}
        self.upserted.append(record)
        return f"/change/C{len(self.upserted)}"

    def delete_txt(self, record: ChallengeRecord) -> str | None:
        self.deleted.append(record)
        values = self.records.get(record.name, set())
        if record.value not in values:
            return None
        values.discard(record.value)
        if not values:
            del self.records[record.name]
        return f"/change/D{len(self.deleted)}"

    def wait_for_change(self, change_id: str) -> None:
        pass

    def txt_values(self, record: ChallengeRecord) -> list[str]:
        return sorted(self.records.get(record.name, set()))

    def name_servers(self, zone_id: str) -> list[str]:
        return list(self._name_servers)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    """In-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def versioned_s3() -> FakeS3Client:
    """In-memory S3 client with bucket versioning enabled."""
    return FakeS3Client(versioning=True)


@pytest.fixture
def fake_zone() -> FakeZone:
    """In-memory Route53 zone."""
    return FakeZone()


@pytest.fixture
def wildcard_request() -> CertificateRequest:
    """Wildcard certificate request."""
    return CertificateRequest(
        domain_pattern="*.example.com",
        contact_email="ops@example.com",
        zone_id="Z0123456789ABC",
    )


@pytest.fixture
def challenge_record() -> ChallengeRecord:
    """DNS-01 challenge record for example.com."""
    return ChallengeRecord(
        name="_acme-challenge.example.com",
        value="LoqXcYV8q5ONbJQxbmR7SCTNo3tiAXDfowyjxAjEuX0",
        zone_id="Z0123456789ABC",
    )


@pytest.fixture
def make_fullchain():
    """
    Factory for a leaf certificate signed by a throwaway CA.

    Returns (fullchain_pem, private_key_pem) with the leaf first.
    """

    def _make(
        names: tuple[str, ...] = ("*.example.com", "example.com"),
        expires_in: timedelta = timedelta(days=90),
        not_before: datetime | None = None,
    ) -> tuple[str, str]:
        not_before = (not_before or datetime.now(UTC)).replace(microsecond=0)

        issuer_key = ec.generate_private_key(ec.SECP256R1())
        issuer_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test CA")])
        issuer_cert = (
            x509.CertificateBuilder()
            .subject_name(issuer_name)
            .issuer_name(issuer_name)
            .public_key(issuer_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before - timedelta(days=1))
            .not_valid_after(not_before + timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), True)
            .sign(issuer_key, hashes.SHA256())
        )

        leaf_key = ec.generate_private_key(ec.SECP256R1())
        leaf_cert = (
            x509.CertificateBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
            )
            .issuer_name(issuer_name)
            .public_key(leaf_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + expires_in)
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
                False,
            )
            .sign(issuer_key, hashes.SHA256())
        )

        fullchain = (
            leaf_cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
            + issuer_cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
        )
        key_pem = leaf_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        return fullchain, key_pem

    return _make
