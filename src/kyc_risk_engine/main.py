import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from kyc_risk_engine.models import DocumentType, LegalBasis, SubmissionStatus
from kyc_risk_engine.orchestrator import build_orchestrator


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("KYC_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run(argv=None) -> int:
    load_dotenv()
    configure_logging()

    parser = argparse.ArgumentParser(description="Submit a KYC document for verification and risk scoring")
    parser.add_argument("customer_id")
    parser.add_argument("document_type", choices=[t.value for t in DocumentType])
    parser.add_argument("path", type=Path)
    parser.add_argument("--legal-basis", default=LegalBasis.LEGAL_OBLIGATION.value,
                        choices=[b.value for b in LegalBasis])
    parser.add_argument("--country", default="UNKNOWN")
    parser.add_argument("--grant-consent", action="store_true",
                        help="record KYC consent for the customer before submitting")
    args = parser.parse_args(argv)

    orchestrator = build_orchestrator()
    try:
        if args.grant_consent:
            orchestrator.grant_consent(args.customer_id)
        result = orchestrator.process_submission(
            customer_id=args.customer_id,
            document_type=args.document_type,
            legal_basis=args.legal_basis,
            raw_document=args.path.read_bytes(),
            filename=args.path.name,
            country=args.country,
        )
    finally:
        orchestrator.shutdown()

    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.status is SubmissionStatus.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(run())
