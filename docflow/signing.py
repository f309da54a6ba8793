import base64
import json
import logging
import os
import time
from datetime import datetime

import requests

from errors import SignatureServiceError
from models import DocumentSignature

logger = logging.getLogger(__name__)

SIGNER_API_URL = os.environ.get("SIGNER_API_URL", "http://signer.example.com/sign")
SIGNER_TIMEOUT_SECONDS = float(os.environ.get("SIGNER_TIMEOUT_SECONDS", "30"))
SIGNATURE_SUBJECT = os.environ.get("SIGNATURE_SUBJECT", "Signed by docflow")
SIGNATURE_ISSUER = os.environ.get("SIGNATURE_ISSUER", "docflow")


def create_signature_data(document_name: str, signature_image: bytes, user) -> dict:
    """Build the signer record stored with a document and sent to the signer."""
    return {
        "fileName": f"{document_name}.pdf",
        "dateTime": datetime.utcnow().isoformat(),
        "subject": SIGNATURE_SUBJECT,
        "issuer": SIGNATURE_ISSUER,
        "signerInfo": {
            "id": user.id,
            "name": user.name,
            "timestamp": int(time.time() * 1000),
            "signatureImage": base64.b64encode(signature_image).decode(),
        },
    }


def embed_signature(pdf_bytes: bytes, signatures: list[dict], document_id: int | None = None) -> bytes:
    """Send a PDF and its signer records to the signing service.

    Returns the signed PDF.  Any failure, including a timeout, raises
    :class:`SignatureServiceError` so the caller can abort before storing
    anything.
    """
    try:
        response = requests.post(
            SIGNER_API_URL,
            files={"document": ("document.pdf", pdf_bytes, "application/pdf")},
            data={"signatures": json.dumps(signatures), "document_id": document_id},
            timeout=SIGNER_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.exception("Signing service failed for document %s", document_id)
        raise SignatureServiceError(
            "Signature service failed", document_id=document_id
        ) from exc
    return response.content


def signatures_for(session, document_id: int) -> list[dict]:
    record = session.query(DocumentSignature).filter_by(document_id=document_id).first()
    if record is None or not isinstance(record.signature_data, list):
        return []
    return list(record.signature_data)


def record_signature(session, document_id: int, signature: dict) -> DocumentSignature:
    """Append ``signature`` to the document's signer records.

    Runs inside the caller's transaction.
    """
    record = session.query(DocumentSignature).filter_by(document_id=document_id).first()
    if record is None:
        record = DocumentSignature(document_id=document_id, signature_data=[signature])
        session.add(record)
    else:
        existing = record.signature_data if isinstance(record.signature_data, list) else []
        # reassign so the JSON column is flagged as modified
        record.signature_data = [*existing, signature]
    session.flush()
    return record
