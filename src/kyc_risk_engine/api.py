from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional
import base64
import binascii
from dotenv import load_dotenv
from .models import DocumentType, KycStatus, LegalBasis, SubmissionResult
from .orchestrator import KycOrchestrator, build_orchestrator
from .tools.gdpr import KYC_PURPOSE

# Load environment variables
load_dotenv()


@lru_cache(maxsize=1)
def _orchestrator() -> KycOrchestrator:
    return build_orchestrator()


def get_orchestrator() -> KycOrchestrator:
    return _orchestrator()


def shutdown_orchestrator() -> None:
    """Stop the worker pools of the orchestrator, if one was ever built."""
    if _orchestrator.cache_info().currsize:
        _orchestrator().shutdown()
        _orchestrator.cache_clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_orchestrator()


app = FastAPI(title="KYC Risk Engine API", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    # Unknown enum values and malformed payloads are client errors
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


class SubmissionInput(BaseModel):
    customer_id: str = Field(min_length=1)
    document_type: DocumentType
    legal_basis: LegalBasis = LegalBasis.LEGAL_OBLIGATION
    document_b64: str = Field(min_length=1, description="Raw document bytes, base64 encoded")
    filename: Optional[str] = None
    country: str = "UNKNOWN"


class ConsentInput(BaseModel):
    purpose: str = KYC_PURPOSE
    legal_basis: LegalBasis = LegalBasis.CONSENT


@app.get("/ping")
def ping():
    return {"pong": True}


@app.post("/kyc/submissions", response_model=SubmissionResult)
def submit_document(payload: SubmissionInput):
    try:
        raw = base64.b64decode(payload.document_b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="document_b64 is not valid base64")
    if not raw:
        raise HTTPException(status_code=400, detail="Document is empty")

    return get_orchestrator().process_submission(
        customer_id=payload.customer_id,
        document_type=payload.document_type,
        legal_basis=payload.legal_basis,
        raw_document=raw,
        filename=payload.filename,
        country=payload.country,
    )


@app.get("/kyc/customers/{customer_id}/status", response_model=KycStatus)
def get_kyc_status(customer_id: str):
    return get_orchestrator().get_kyc_status(customer_id)


@app.get("/kyc/customers/{customer_id}/aggregate-status")
def get_aggregate_status(customer_id: str):
    status = get_orchestrator().get_aggregate_status(customer_id)
    return {"customer_id": customer_id, "aggregate_status": status.value}


@app.post("/kyc/customers/{customer_id}/consents", status_code=201)
def grant_consent(customer_id: str, payload: ConsentInput):
    get_orchestrator().grant_consent(customer_id, payload.purpose, payload.legal_basis)
    return {"customer_id": customer_id, "purpose": payload.purpose, "granted": True}


@app.delete("/kyc/customers/{customer_id}/consents")
def revoke_consent(customer_id: str, purpose: str = KYC_PURPOSE):
    revoked = get_orchestrator().revoke_consent(customer_id, purpose)
    if not revoked:
        raise HTTPException(status_code=404, detail=f"No active consent for purpose {purpose}")
    return {"customer_id": customer_id, "purpose": purpose, "revoked": revoked}
