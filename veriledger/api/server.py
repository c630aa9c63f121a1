"""
FastAPI server for the veriledger pipeline.

This provides REST API endpoints for:
- Pipeline status and statistics
- Processed claims (all, or one by content id)
- Processing a content id on demand
- Structuring text offline
- Uploading content to the local content store
- Recent pipeline events

Usage:
    veriledger serve --port 8000
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..errors import AllGatewaysFailedError
from ..orchestrator import Orchestrator


class ParseRequest(BaseModel):
    text: str = Field(..., description="Claim text to structure")


class ContentRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Raw claim content")


class ProcessRequest(BaseModel):
    topic_id: Optional[str] = Field(None, description="Ledger topic id for the evidence proof")
    transaction_id: Optional[str] = Field(None, description="Ledger transaction id for the evidence proof")


class SystemStatus(BaseModel):
    status: str
    uptime_seconds: float
    fetch_mode: str
    oracle_available: bool
    oracle_model: Optional[str] = None
    processed_count: int
    watcher: Optional[Dict[str, Any]] = None
    gateway_health: Dict[str, Any]


def create_app(orchestrator: Orchestrator) -> FastAPI:
    """Build the API around an orchestrator instance."""
    app = FastAPI(
        title="veriledger API",
        description="Claim ingestion and structuring pipeline",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/status", response_model=SystemStatus)
    async def get_status():
        """Get pipeline status."""
        return orchestrator.get_api_status()

    @app.get("/api/claims")
    async def list_claims() -> List[Dict[str, Any]]:
        """Get all processed claims."""
        return [claim.to_dict() for claim in orchestrator.get_all_processed_claims()]

    @app.get("/api/claims/{content_id}")
    async def get_claim(content_id: str):
        """Get one claim with its processing status."""
        status = orchestrator.get_status(content_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Unknown content id: {content_id}")

        claim = orchestrator.get_claim(content_id)
        return {
            "content_id": content_id,
            "status": status.value,
            "error": orchestrator.get_error(content_id),
            "claim": claim.to_dict() if claim is not None else None,
        }

    @app.get("/api/stats")
    async def get_stats():
        """Get aggregate statistics."""
        return orchestrator.get_statistics()

    @app.post("/api/claims/{content_id}/process")
    def process_claim(content_id: str, request: Optional[ProcessRequest] = None):
        """Process a content id now (blocking; runs in the threadpool)."""
        request = request or ProcessRequest()
        try:
            result = orchestrator.process_content_id(
                content_id,
                topic_id=request.topic_id,
                transaction_id=request.transaction_id,
            )
        except AllGatewaysFailedError as e:
            raise HTTPException(status_code=502, detail=str(e))

        if result is None:
            raise HTTPException(status_code=409, detail=f"{content_id} is already being processed")
        return result.to_dict()

    @app.put("/api/content/{content_id}")
    async def put_content(content_id: str, request: ContentRequest):
        """Store content locally so it can be processed before it reaches public gateways."""
        store = orchestrator.fetcher.content_store
        if store is None:
            raise HTTPException(status_code=503, detail="No local content store configured")
        record = store.store(content_id, request.content, metadata={"source": "api"})
        return {"content_id": content_id, "metadata": record["metadata"]}

    @app.post("/api/parse")
    def parse_text(request: ParseRequest):
        """Structure claim text without fetching anything."""
        return orchestrator.structurer.structure(request.text).to_dict()

    @app.get("/api/events")
    async def get_events(limit: int = 50):
        """Get recent pipeline events, oldest first."""
        return orchestrator.recent_events(limit)

    return app
