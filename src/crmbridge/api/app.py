"""
Main FastAPI application for the CRM bridge.

Hosts the event ingest used by the CMS adapter, the queue endpoint called
by Cloud Scheduler and the administrative operations.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Any, Optional
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..core.bridge import Bridge, create_bridge
from ..core.config import load_environment, setup_logging
from ..core.models import ConnectionCheck
from ..models.audit import AuditEntry, AuditLevel, AuditCategory
from ..models.config import FieldMapping
from ..models.sync import SyncEvent, SyncOutcome, QueueRunSummary, MigrationItemOutcome, MigrationSummary
from ..version import __version__
from ..exceptions import CRMBridgeError, ConfigurationError, RecordNotFoundError

logger = logging.getLogger(__name__)

# Global pipeline (initialized in lifespan)
bridge: Optional[Bridge] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global bridge

    load_environment()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        bridge = create_bridge()
        logger.info("Application startup complete")
    except Exception as e:
        logger.error(f"Failed to initialize sync pipeline: {e}")
        # Don't raise - let the app start, endpoints report the missing pipeline
        bridge = None

    yield

    # Cleanup on shutdown
    logger.info("Application shutdown")


app = FastAPI(
    title="CRM Bridge API",
    description="API for syncing CMS records to Salesforce",
    version=__version__,
    lifespan=lifespan
)

# Get allowed origins from environment variable
allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

if not allowed_origins:
    # Default to allowing all for local dev if not set
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection
def get_bridge() -> Bridge:
    if bridge is None:
        raise HTTPException(status_code=500, detail="Sync pipeline not initialized")
    return bridge


# Request/Response models

class MappingsUpdate(BaseModel):
    mappings: List[FieldMapping] = Field(..., description="Complete mapping list for the record type")


class MappingsResponse(BaseModel):
    record_type: str
    mappings: List[FieldMapping] = Field(..., description="Saved mappings, or the defaults")
    effective: List[FieldMapping] = Field(..., description="Mappings applied at sync time, overrides included")


class QueueProcessRequest(BaseModel):
    triggered_by: str = "api"
    limit: Optional[int] = Field(None, ge=1, description="Maximum entries to process")


class MigrationRunRequest(BaseModel):
    page_size: Optional[int] = Field(None, ge=1)
    max_records: Optional[int] = Field(50, ge=1, description="Records per call; the next call resumes")


class MigrationRunResponse(BaseModel):
    items: List[MigrationItemOutcome]
    summary: Optional[MigrationSummary] = None


# Health check endpoint
@app.get("/health")
async def health_check():
    """Check the health of the application and its services."""
    auth_failure = bridge.store.get_auth_failure() if bridge else None
    return {
        "status": "healthy",
        "version": __version__,
        "services": {
            "sync_pipeline": bridge is not None,
        },
        "salesforce_auth_failing": auth_failure is not None,
    }


@app.post("/api/v1/connection/test", response_model=ConnectionCheck)
async def test_connection(b: Bridge = Depends(get_bridge)):
    """Attempt authentication and a trivial Salesforce call."""
    try:
        return b.orchestrator.test_connection()
    except Exception as e:
        logger.error(f"An unexpected error occurred during the connection test: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


# =============================================================================
# SYNC ENDPOINTS
# =============================================================================

@app.post("/api/v1/events", response_model=SyncOutcome, status_code=202)
async def ingest_event(event: SyncEvent, b: Bridge = Depends(get_bridge)):
    """Accept a record event from the CMS; the sync is queued or ignored."""
    try:
        return b.orchestrator.handle_event(event)
    except CRMBridgeError as e:
        logger.error(f"Failed to handle {event.trigger_reason.value} event for record {event.record_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"An unexpected error occurred while handling event for record {event.record_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@app.post("/api/v1/records/{record_id}/sync", response_model=SyncOutcome)
async def sync_record(record_id: str, b: Bridge = Depends(get_bridge)):
    """Sync a single record now."""
    try:
        return b.orchestrator.manual_sync(record_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CRMBridgeError as e:
        logger.error(f"Failed to sync record {record_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"An unexpected error occurred while syncing record {record_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@app.get("/api/v1/records/{record_id}/status")
async def get_record_status(record_id: str, b: Bridge = Depends(get_bridge)) -> Dict[str, Any]:
    """Sync state of a record."""
    return b.orchestrator.get_sync_status(record_id)


@app.post("/api/v1/queue/process", response_model=QueueRunSummary)
async def process_queue(request: Optional[QueueProcessRequest] = None, b: Bridge = Depends(get_bridge)):
    """Sync due pending records. Called by Cloud Scheduler."""
    request = request or QueueProcessRequest()
    try:
        logger.info(f"Processing sync queue (triggered by {request.triggered_by})")
        return b.orchestrator.process_queue(limit=request.limit)
    except CRMBridgeError as e:
        logger.error(f"Failed to process sync queue: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"An unexpected error occurred while processing the sync queue: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


# =============================================================================
# MAPPING ENDPOINTS
# =============================================================================

@app.get("/api/v1/mappings/{record_type}", response_model=MappingsResponse)
async def get_mappings(record_type: str, b: Bridge = Depends(get_bridge)):
    """Field mappings of a record type."""
    return MappingsResponse(
        record_type=record_type,
        mappings=b.registry.base_mappings(record_type),
        effective=b.registry.resolve_mappings(record_type),
    )


@app.put("/api/v1/mappings/{record_type}", response_model=List[FieldMapping])
async def update_mappings(record_type: str, update: MappingsUpdate, b: Bridge = Depends(get_bridge)):
    """Replace the field mappings of a record type."""
    try:
        return b.registry.save_mappings(record_type, update.mappings)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"An unexpected error occurred while saving mappings for {record_type}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@app.delete("/api/v1/mappings/{record_type}/{local_key}")
async def delete_mapping(record_type: str, local_key: str, b: Bridge = Depends(get_bridge)):
    """Remove one field mapping."""
    if not b.registry.delete_mapping(record_type, local_key):
        raise HTTPException(status_code=404, detail=f"Mapping {local_key} not found for {record_type}")
    return {"message": f"Mapping {local_key} deleted from {record_type}"}


# =============================================================================
# AUDIT ENDPOINTS
# =============================================================================

@app.get("/api/v1/audit", response_model=List[AuditEntry])
async def list_audit(
    record_id: Optional[str] = None,
    category: Optional[AuditCategory] = None,
    level: Optional[AuditLevel] = None,
    limit: int = Query(50, ge=1, le=1000),
    format: str = Query("json", pattern="^(json|csv)$"),
    b: Bridge = Depends(get_bridge)
):
    """Recent audit entries, newest first."""
    entries = b.audit.list_recent(record_id=record_id, category=category, level=level, limit=limit)
    if format == "csv":
        return PlainTextResponse(b.audit.export_csv(entries), media_type="text/csv")
    return entries


@app.get("/api/v1/audit/stats")
async def audit_stats(b: Bridge = Depends(get_bridge)) -> Dict[str, Any]:
    """Entry counts per level and category."""
    return b.audit.stats()


# =============================================================================
# MIGRATION ENDPOINTS
# =============================================================================

@app.post("/api/v1/migrations/{record_type}/run", response_model=MigrationRunResponse)
async def run_migration(
    record_type: str,
    request: Optional[MigrationRunRequest] = None,
    b: Bridge = Depends(get_bridge)
):
    """Migrate the next batch of records of a type."""
    request = request or MigrationRunRequest()
    try:
        items = list(b.migration.run_batch(record_type, page_size=request.page_size,
                                           max_records=request.max_records))
        return MigrationRunResponse(items=items, summary=b.migration.summary(record_type))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CRMBridgeError as e:
        logger.error(f"Migration of {record_type} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"An unexpected error occurred during migration of {record_type}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected error occurred.")


@app.get("/api/v1/migrations/{record_type}")
async def migration_status(record_type: str, b: Bridge = Depends(get_bridge)) -> Dict[str, Any]:
    """Cursor and latest run of a record type's migration."""
    return b.migration.status(record_type)


@app.delete("/api/v1/migrations/{record_type}")
async def reset_migration(record_type: str, b: Bridge = Depends(get_bridge)):
    """Reset the migration cursor so the next run starts over."""
    b.migration.reset(record_type)
    return {"message": f"Migration cursor for {record_type} reset"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
