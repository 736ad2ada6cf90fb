# Registry module
from certanchor.registry.abi import REGISTRY_ABI, REGISTRY_ABI_VERSION, decode_record
from certanchor.registry.classifier import classify
from certanchor.registry.client import (
    IssuanceRequest,
    RegistryClient,
    TransactionReceipt,
    classify_registry_failure,
    get_registry_client,
)
from certanchor.registry.session import LocalAccountSession, SigningSession

__all__ = [
    "REGISTRY_ABI",
    "REGISTRY_ABI_VERSION",
    "decode_record",
    "classify",
    "IssuanceRequest",
    "RegistryClient",
    "TransactionReceipt",
    "classify_registry_failure",
    "get_registry_client",
    "LocalAccountSession",
    "SigningSession",
]
