"""ACME account key storage in AWS Secrets Manager."""

import logging

import boto3
import josepy as jose
from botocore.exceptions import ClientError

from wildcert.issuer.keys import generate_account_key

logger = logging.getLogger(__name__)


class AccountKeyStore:
    """
    Loads the ACME account key, creating it on first use.

    The key is stored as a JWK JSON document in a Secrets Manager secret.
    Reusing one account key keeps issuance under the same ACME account and
    its rate limits.
    """

    def __init__(self, secret_id: str = "", secrets_client=None):
        """
        Initialize the key store.

        Args:
            secret_id: Secret name or ARN; empty for an ephemeral key
            secrets_client: Optional boto3 Secrets Manager client (for testing)
        """
        self.secret_id = secret_id
        self._secrets_client = secrets_client

    @property
    def secrets_client(self):
        """Lazy-load Secrets Manager client."""
        if self._secrets_client is None:
            self._secrets_client = boto3.client("secretsmanager")
        return self._secrets_client

    def load_or_create(self) -> jose.JWKRSA:
        """
        Get the account key.

        Returns:
            Account JWK

        Raises:
            ClientError: On Secrets Manager errors other than a missing secret
        """
        if not self.secret_id:
            logger.warning(
                "No account key secret configured, using an ephemeral ACME account"
            )
            return generate_account_key()

        try:
            response = self.secrets_client.get_secret_value(SecretId=self.secret_id)
            logger.debug(f"Loaded ACME account key from {self.secret_id}")
            return jose.JWKRSA.json_loads(response["SecretString"])
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

        logger.info(f"Creating ACME account key secret {self.secret_id}")
        key = generate_account_key()
        try:
            self.secrets_client.create_secret(
                Name=self.secret_id,
                Description="ACME account key for wildcert",
                SecretString=key.json_dumps(),
            )
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceExistsException":
                raise
            # Created concurrently by another invocation
            response = self.secrets_client.get_secret_value(SecretId=self.secret_id)
            return jose.JWKRSA.json_loads(response["SecretString"])
        return key
