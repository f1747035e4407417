# app/main.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from invoice_extract.config import RegistryConfig
from invoice_extract.errors import AllParsersFailed, DetectorNotFound, LlmUnavailable, NoSuitableParser
from invoice_extract.models import RawFile
from invoice_extract.registry import ParserRegistry


app = FastAPI(title="Invoice Extract Service")


class UploadedFile(BaseModel):
    name: str
    content: Any


class ParseRequest(BaseModel):
    files: List[UploadedFile]
    detector: Optional[str] = None
    validate_invoices: Optional[bool] = None
    fallback: bool = False


@lru_cache()
def get_registry() -> ParserRegistry:
    return ParserRegistry(RegistryConfig.from_env())


@app.get("/health")
def health(registry: ParserRegistry = Depends(get_registry)):
    return {"status": "ok", "llm_enabled": registry.config.llm.enabled}


@app.get("/detectors")
def detectors(registry: ParserRegistry = Depends(get_registry)):
    return [d.model_dump() for d in registry.list_detectors()]


@app.post("/parse")
def parse(req: ParseRequest, registry: ParserRegistry = Depends(get_registry)):
    # content only; never let a request name a server-side path
    files = [RawFile(name=f.name, content=f.content) for f in req.files]
    try:
        if req.fallback:
            result = registry.parse_with_fallback(files, validate=req.validate_invoices)
        else:
            result = registry.parse(files, forced_id=req.detector, validate=req.validate_invoices)
    except DetectorNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NoSuitableParser as e:
        scores: Dict[str, float] = {k: v.confidence for k, v in e.report.scores.items()}
        raise HTTPException(status_code=422, detail={"message": str(e), "scores": scores})
    except AllParsersFailed as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
    except LlmUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return result.model_dump()


@app.post("/validate-json")
def validate_json(invoices: List[Dict[str, Any]], registry: ParserRegistry = Depends(get_registry)):
    batch = registry.validator.validate_batch(invoices)
    return {
        "summary": batch.summary.model_dump(),
        "results": [r.model_dump() for r in batch.results],
    }


def run() -> None:
    """Serve the API; host and port come from INVOICE_API_HOST / INVOICE_API_PORT."""
    uvicorn.run(
        app,
        host=os.getenv("INVOICE_API_HOST", "127.0.0.1"),
        port=int(os.getenv("INVOICE_API_PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    run()
