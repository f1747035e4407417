import pytest
from fastapi.testclient import TestClient

from app.main import app, get_registry, run
from invoice_extract.config import RegistryConfig
from invoice_extract.registry import ParserRegistry

from .conftest import DOCPARSER_INVOICE, MARKDOWN_INVOICE


@pytest.fixture
def client():
    app.dependency_overrides[get_registry] = lambda: ParserRegistry(RegistryConfig())
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "llm_enabled": False}


def test_detectors(client):
    res = client.get("/detectors")
    assert res.status_code == 200
    assert len(res.json()) == 4


def test_parse_markdown(client):
    res = client.post("/parse", json={"files": [{"name": "inv.md", "content": MARKDOWN_INVOICE}]})
    assert res.status_code == 200
    body = res.json()
    assert body["detector_used"] == "generic_markdown"
    assert body["invoices"][0]["calc_total"] == 30.0
    assert body["validation"][0]["valid"] is True


def test_parse_docparser_json_content(client):
    res = client.post(
        "/parse",
        json={"files": [{"name": "inv_res.json", "content": DOCPARSER_INVOICE}], "validate_invoices": False},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["detector_used"] == "doc_parser_json"
    assert body["validation"] is None


def test_parse_unrecognized(client):
    res = client.post("/parse", json={"files": [{"name": "notes.txt", "content": "hello world"}]})
    assert res.status_code == 422
    detail = res.json()["detail"]
    assert detail["scores"]["generic_markdown"] == 0.0


def test_parse_unknown_detector(client):
    res = client.post(
        "/parse",
        json={"files": [{"name": "inv.md", "content": MARKDOWN_INVOICE}], "detector": "nope"},
    )
    assert res.status_code == 404


def test_parse_llm_without_key(client):
    res = client.post(
        "/parse",
        json={"files": [{"name": "inv.md", "content": MARKDOWN_INVOICE}], "detector": "llm_assisted"},
    )
    assert res.status_code == 503


def test_validate_json(client):
    res = client.post("/validate-json", json=[{"source_file": "a", "items": [{"name": "Pen", "total": 5}]}])
    assert res.status_code == 200
    body = res.json()
    assert body["summary"]["valid_invoices"] == 1
    assert body["results"][0]["invoice"]["items"][0]["code"] == "PEN"


def test_run_serves_app_with_env_settings(monkeypatch):
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda target, **kw: calls.append((target, kw)))
    monkeypatch.setenv("INVOICE_API_PORT", "9001")
    monkeypatch.delenv("INVOICE_API_HOST", raising=False)

    run()

    target, kwargs = calls[0]
    assert target is app
    assert (kwargs["host"], kwargs["port"]) == ("127.0.0.1", 9001)
