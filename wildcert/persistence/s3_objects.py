"""Shared S3 helpers for conditional JSON objects."""

import json

from botocore.exceptions import ClientError

# Returned by S3 when IfMatch / IfNoneMatch conditions do not hold
PRECONDITION_CODES = frozenset(
    {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}
)
MISSING_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


def error_code(error: ClientError) -> str:
    """Get the error code of a botocore ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


def is_precondition_failure(error: ClientError) -> bool:
    """Check if a conditional write lost against another writer."""
    return error_code(error) in PRECONDITION_CODES


def is_missing(error: ClientError) -> bool:
    """Check if the object does not exist."""
    return error_code(error) in MISSING_CODES


def read_json_object(
    s3_client, bucket: str, key: str
) -> tuple[dict | None, str | None]:
    """
    Read a JSON object together with its ETag.

    Returns:
        Tuple of (data, etag), or (None, None) if the object does not exist
    """
    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if is_missing(e):
            return None, None
        raise
    data = json.loads(response["Body"].read().decode("utf-8"))
    return data, response.get("ETag")


def dump_json(data: dict) -> str:
    """Serialize a JSON document the way all stored documents are written."""
    return json.dumps(data, indent=2, default=str)
