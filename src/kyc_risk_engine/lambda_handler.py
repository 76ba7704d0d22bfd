import json
import logging
import os
from pathlib import Path
from urllib.parse import unquote_plus

from kyc_risk_engine.models import LegalBasis
from kyc_risk_engine.orchestrator import build_orchestrator

LOGGER = logging.getLogger(__name__)

_ORCHESTRATOR = None


def _orchestrator():
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = build_orchestrator()
    return _ORCHESTRATOR


def parse_object_key(key: str):
    """`<customer_id>/<DOCUMENT_TYPE>/<filename>` -> (customer_id, document_type, filename)."""
    parts = unquote_plus(key).strip("/").split("/")
    if len(parts) < 3 or not all(parts[:3]):
        raise ValueError(f"Object key must look like <customer_id>/<DOCUMENT_TYPE>/<filename>: {key}")
    return parts[0], parts[1].upper(), "/".join(parts[2:])


def _read_object(bucket: str, key: str) -> bytes:
    # Local path first, so the handler can be driven from a workstation
    local = Path(key)
    if local.exists():
        LOGGER.info("Local file detected: %s", key)
        return local.read_bytes()
    root = os.getenv("KYC_BUCKET_ROOT")
    if root and (Path(root) / bucket / key).exists():
        return (Path(root) / bucket / key).read_bytes()
    raise FileNotFoundError(f"s3://{bucket}/{key} is not available locally")


def lambda_handler(event, context):
    LOGGER.info("S3 event: %s", json.dumps(event))
    results = []
    for record in event.get("Records", []):
        bucket = record["s3"]["bucket"]["name"]
        key = record["s3"]["object"]["key"]
        try:
            customer_id, document_type, filename = parse_object_key(key)
            raw = _read_object(bucket, key)
        except (ValueError, OSError) as exc:
            LOGGER.error("Skipping %s: %s", key, exc)
            results.append({"key": key, "status": "ERROR", "message": str(exc)})
            continue

        result = _orchestrator().process_submission(
            customer_id=customer_id,
            document_type=document_type,
            legal_basis=LegalBasis.LEGAL_OBLIGATION,
            raw_document=raw,
            filename=filename,
        )
        results.append({"key": key, **result.model_dump(mode="json")})

    return {
        "statusCode": 200,
        "body": json.dumps({"message": "KYC submissions processed", "results": results}),
    }
