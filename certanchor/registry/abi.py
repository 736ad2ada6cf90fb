"""
Document registry contract ABI.

Only the two functions the service calls are declared. verifyDocument
returns a single struct; web3 hands it back as an 11-item tuple whose order
is fixed by RECORD_FIELDS.
"""
from typing import Sequence

from certanchor.exceptions import RegistryError, RegistryErrorKind
from certanchor.models import DocumentRecord

REGISTRY_ABI_VERSION = "1"

ISSUE_FUNCTION = "issueDocument"
VERIFY_FUNCTION = "verifyDocument"

# (abi name, abi type, DocumentRecord attribute), in tuple order
RECORD_FIELDS = (
    ("docHash", "bytes32", "doc_hash"),
    ("docType", "string", "doc_type"),
    ("issuer", "string", "issuer"),
    ("subject", "string", "subject"),
    ("metadataURI", "string", "metadata_uri"),
    ("issuedAt", "uint64", "issued_at"),
    ("validUntil", "uint64", "valid_until"),
    ("revoked", "bool", "revoked"),
    ("title", "string", "title"),
    ("roleOrProgram", "string", "role_or_program"),
    ("idNumber", "string", "id_number"),
)

ISSUE_ARGUMENTS = (
    ("_id", "string"),
    ("_docHash", "bytes32"),
    ("_docType", "string"),
    ("_issuer", "string"),
    ("_subject", "string"),
    ("_metadataURI", "string"),
    ("_validUntil", "uint64"),
    ("_title", "string"),
    ("_roleOrProgram", "string"),
    ("_idNumber", "string"),
)

REGISTRY_ABI = [
    {
        "inputs": [
            {"internalType": abi_type, "name": name, "type": abi_type}
            for name, abi_type in ISSUE_ARGUMENTS
        ],
        "name": ISSUE_FUNCTION,
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "string", "name": "_id", "type": "string"}],
        "name": VERIFY_FUNCTION,
        "outputs": [
            {
                "components": [
                    {"internalType": abi_type, "name": name, "type": abi_type}
                    for name, abi_type, _ in RECORD_FIELDS
                ],
                "internalType": "struct EnhancedDocumentVerifier.Document",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


def _hex32(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError(f"docHash is {len(value)} bytes, expected 32")
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    if not text.startswith("0x"):
        text = "0x" + text
    if len(text) != 66:
        raise ValueError(f"docHash has {len(text) - 2} hex digits, expected 64")
    return text


def decode_record(document_id: str, raw: Sequence) -> DocumentRecord:
    """
    Map a verifyDocument tuple onto a DocumentRecord.

    Raises:
        RegistryError(MALFORMED_RESPONSE): wrong arity or field types
    """
    if raw is None or len(raw) != len(RECORD_FIELDS):
        size = "None" if raw is None else len(raw)
        raise RegistryError(
            f"verifyDocument returned {size} fields, expected {len(RECORD_FIELDS)} "
            f"(ABI v{REGISTRY_ABI_VERSION})",
            kind=RegistryErrorKind.MALFORMED_RESPONSE,
        )

    values = dict(zip((attr for _, _, attr in RECORD_FIELDS), raw))
    try:
        return DocumentRecord(
            id=document_id,
            doc_hash=_hex32(values["doc_hash"]),
            doc_type=values["doc_type"],
            issuer=values["issuer"],
            subject=values["subject"],
            metadata_uri=values["metadata_uri"],
            issued_at=int(values["issued_at"]),
            valid_until=int(values["valid_until"]),
            revoked=bool(values["revoked"]),
            title=values["title"],
            role_or_program=values["role_or_program"],
            id_number=values["id_number"],
        )
    except (ValueError, TypeError) as e:
        raise RegistryError(
            f"Malformed registry record for '{document_id}': {e}",
            kind=RegistryErrorKind.MALFORMED_RESPONSE,
        ) from e
