"""
SignatureCapture -- validation of a submitted signature.

Pure function, no I/O.  Given the payload, the signing role and the
roles already present on the document, either returns a normalized
payload or raises.  Persistence is the caller's job (SignatureStore).
"""

import base64
import binascii
import re
from collections.abc import Mapping
from dataclasses import replace
from uuid import UUID

from crm_kernel.exceptions import AlreadySignedError, SignatureValidationError
from crm_modules.signatures.config import SignatureConfig
from crm_modules.signatures.models import DocumentType, SignaturePayload, SignatureRole

_DATA_URL = re.compile(r"^data:(?P<media>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


def _decoded_size(encoded: str) -> int:
    try:
        return len(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise SignatureValidationError("signature_data", "image is not valid base64") from exc


def validate_signature(
    payload: SignaturePayload,
    *,
    role: SignatureRole,
    document_type: DocumentType,
    document_id: UUID,
    existing: Mapping[SignatureRole, str],
    config: SignatureConfig | None = None,
) -> SignaturePayload:
    """
    Validate ``payload`` for ``role`` against the document's signatures.

    Args:
        existing: roles already signed on the document, mapped to the
            signer's name.

    Returns:
        The payload with signer name and email trimmed.

    Raises:
        AlreadySignedError: ``role`` has already signed this document.
        SignatureValidationError: missing name or image, unsupported
            media type, bad base64, or image over the size limit.
    """
    config = config or SignatureConfig.with_defaults()

    if role in existing:
        raise AlreadySignedError(
            document_type.value, document_id, role.value, existing[role]
        )

    name = (payload.signer_name or "").strip()
    if not name:
        raise SignatureValidationError("signer_name", "is required")
    if len(name) > config.max_name_length:
        raise SignatureValidationError(
            "signer_name", f"longer than {config.max_name_length} characters"
        )

    data = (payload.signature_data or "").strip()
    if not data:
        raise SignatureValidationError("signature_data", "is required")

    match = _DATA_URL.match(data)
    if match is None:
        raise SignatureValidationError("signature_data", "must be a base64 image data URL")
    media_type = match.group("media").lower()
    if media_type not in config.allowed_media_types:
        raise SignatureValidationError(
            "signature_data", f"unsupported image type {media_type}"
        )

    size = _decoded_size(match.group("data"))
    if size == 0:
        raise SignatureValidationError("signature_data", "image is empty")
    if size > config.max_image_bytes:
        raise SignatureValidationError(
            "signature_data",
            f"image is {size} bytes, limit is {config.max_image_bytes}",
        )

    email = payload.signer_email.strip() if payload.signer_email else None
    return replace(payload, signer_name=name, signature_data=data, signer_email=email or None)
