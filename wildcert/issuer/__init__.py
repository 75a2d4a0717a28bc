"""ACME issuance: account keys, client wrapper and order coordination."""

from wildcert.issuer.account import AccountKeyStore
from wildcert.issuer.client import AcmeClient, translate_acme_errors
from wildcert.issuer.coordinator import IssuedCertificate, OrderCoordinator

__all__ = [
    "AccountKeyStore",
    "AcmeClient",
    "IssuedCertificate",
    "OrderCoordinator",
    "translate_acme_errors",
]
