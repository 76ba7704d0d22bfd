import json
from pathlib import Path

import pytest

import kyc_risk_engine.lambda_handler as lambda_mod
import kyc_risk_engine.main as main_mod

PNG = b"\x89PNG\r\n\x1a\nfake image payload"


def _event(key, bucket="kyc-input-bucket"):
    # Sample S3 event payload (simulating AWS Lambda trigger)
    return {"Records": [{"s3": {"bucket": {"name": bucket}, "object": {"key": key}}}]}


@pytest.mark.parametrize("key, expected", [
    ("CUST-1/PASSPORT/scan.png", ("CUST-1", "PASSPORT", "scan.png")),
    ("CUST-1/utility_bill/2025/jan.pdf", ("CUST-1", "UTILITY_BILL", "2025/jan.pdf")),
    ("CUST+7/ID_CARD/front+side.jpg", ("CUST 7", "ID_CARD", "front side.jpg")),
])
def test_parse_object_key(key, expected):
    assert lambda_mod.parse_object_key(key) == expected


@pytest.mark.parametrize("key", ["scan.png", "CUST-1/scan.png", "/PASSPORT/scan.png"])
def test_bad_object_keys(key):
    with pytest.raises(ValueError):
        lambda_mod.parse_object_key(key)


def test_local_event_is_processed(build_engine, monkeypatch, tmp_path: Path):
    engine = build_engine()
    engine.grant_consent("CUST-1")
    monkeypatch.setattr(lambda_mod, "_orchestrator", lambda: engine)
    monkeypatch.chdir(tmp_path)
    key = "CUST-1/PASSPORT/scan.png"
    (tmp_path / key).parent.mkdir(parents=True)
    (tmp_path / key).write_bytes(PNG)

    out = lambda_mod.lambda_handler(_event(key), None)

    assert out["statusCode"] == 200
    (result,) = json.loads(out["body"])["results"]
    assert result["key"] == key
    assert result["status"] == "SUCCESS"


def test_missing_object_is_reported(build_engine, monkeypatch, tmp_path: Path):
    monkeypatch.setattr(lambda_mod, "_orchestrator", lambda: build_engine())
    monkeypatch.chdir(tmp_path)
    out = lambda_mod.lambda_handler(_event("CUST-1/PASSPORT/absent.png"), None)
    (result,) = json.loads(out["body"])["results"]
    assert result["status"] == "ERROR"


def test_cli_run(build_engine, monkeypatch, tmp_path: Path, capsys):
    engine = build_engine()
    monkeypatch.setattr(main_mod, "build_orchestrator", lambda: engine)
    doc = tmp_path / "passport.png"
    doc.write_bytes(PNG)

    code = main_mod.run(["CUST-1", "PASSPORT", str(doc), "--grant-consent"])

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "SUCCESS"
