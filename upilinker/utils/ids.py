"""Document and idempotency identifiers."""
import hashlib
import secrets
import string

_ALPHABET = string.ascii_letters + string.digits
AUTO_ID_LENGTH = 20


def generate_document_id() -> str:
    """Random 20-character id, the same shape Firestore auto-ids have."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(AUTO_ID_LENGTH))


def idempotent_document_id(collection: str, key: str) -> str:
    """Stable id for a client idempotency key, scoped to one collection."""
    digest = hashlib.sha256(f"{collection}\0{key}".encode("utf-8")).hexdigest()
    return digest[:AUTO_ID_LENGTH]
