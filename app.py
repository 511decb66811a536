from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import List, Optional

import dotenv
dotenv.load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from asset_audit.config import Config, load_config
from asset_audit.db import ExcelConnection, ToleranceRepository, connect
from asset_audit.models import (
    ConfigurationError,
    InputError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from asset_audit.pipeline import BatchOrchestrator
from asset_audit.report import summarize, summarize_conflicts

ROOT = Path(__file__).resolve().parent
DATA_DIR = ROOT / "data"

logger = logging.getLogger(__name__)


class SliceRequest(BaseModel):
    lot_id: str
    highway_id: str
    asset_type: str


class BatchRequest(SliceRequest):
    force_reprocess: bool = False


class ReconcileRequest(BaseModel):
    chosen_source: str
    justification: Optional[str] = None
    decided_by: str = "operador"


class BatchReconcileRequest(BaseModel):
    need_ids: List[str]
    decided_by: str = "operador"
    justification: Optional[str] = None


class JustificationRequest(BaseModel):
    justification: str
    resolved_by: str = "operador"


class ToleranceRequest(BaseModel):
    highway_id: str
    asset_type: Optional[str] = None
    tolerance_m: float


def create_app(cfg: Optional[Config] = None, conn: Optional[ExcelConnection] = None) -> FastAPI:
    cfg = cfg or load_config(DATA_DIR / "config.default.json")
    conn = conn if conn is not None else connect(cfg.db_path)
    orchestrator = BatchOrchestrator(cfg, conn)
    workflow = orchestrator.workflow

    app = FastAPI(title="Highway Asset Audit Service")

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(InputError)
    async def _bad_input(request: Request, exc: InputError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def _unavailable(request: Request, exc: ConfigurationError):
        logger.error("Configuration error: %s", exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _storage(request: Request, exc: PersistenceError):
        logger.error("Persistence error: %s", exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.post("/batches")
    def run_batch(payload: BatchRequest):
        return orchestrator.run(payload.lot_id, payload.highway_id, payload.asset_type,
                                force_reprocess=payload.force_reprocess)

    @app.get("/needs")
    def list_needs(lot_id: str, highway_id: str, asset_type: Optional[str] = None,
                   pending_only: bool = False):
        if pending_only:
            return workflow.pending(lot_id, highway_id, asset_type)
        return orchestrator.needs.list(lot_id, highway_id, asset_type)

    @app.get("/needs/{need_id}")
    def get_need(need_id: str):
        need = orchestrator.needs.get(need_id)
        if need is None:
            raise HTTPException(status_code=404, detail=f"Need not found: {need_id}")
        return {"need": need, "decisions": workflow.history(need_id),
                "match_logs": orchestrator.match_logs.list(need_id)}

    @app.post("/needs/{need_id}/reconcile")
    def reconcile(need_id: str, payload: ReconcileRequest):
        return workflow.reconcile(need_id, payload.chosen_source, payload.justification, payload.decided_by)

    @app.post("/needs/{need_id}/delete")
    def delete_need(need_id: str, payload: JustificationRequest):
        closed = workflow.delete_need(need_id, payload.justification, payload.resolved_by)
        return {"deleted": need_id, "closed_conflicts": [c.id for c in closed]}

    @app.post("/reconcile/batch")
    def reconcile_batch(payload: BatchReconcileRequest):
        if not payload.need_ids:
            raise HTTPException(status_code=400, detail="need_ids 不能为空")
        result = workflow.reconcile_batch(set(payload.need_ids), payload.decided_by, payload.justification)
        return {"succeeded": result.succeeded, "failed": result.failed,
                "failure_count": result.failure_count, "persistence_error": result.persistence_error}

    @app.post("/conflicts/detect")
    def detect_conflicts(payload: SliceRequest):
        created = orchestrator.detect_conflicts(payload.lot_id, payload.highway_id, payload.asset_type)
        return {"created": created}

    @app.get("/conflicts")
    def list_conflicts(lot_id: Optional[str] = None, highway_id: Optional[str] = None,
                       asset_type: Optional[str] = None, only_unresolved: bool = False):
        return orchestrator.conflicts.list(lot_id, highway_id, asset_type, only_unresolved)

    @app.post("/conflicts/{conflict_id}/resolve")
    def resolve_conflict(conflict_id: str, payload: JustificationRequest):
        return workflow.resolve_conflict(conflict_id, payload.justification, payload.resolved_by)

    @app.post("/project-errors/detect")
    def detect_project_errors(payload: SliceRequest):
        return orchestrator.detect_project_errors(payload.lot_id, payload.highway_id, payload.asset_type)

    @app.put("/tolerances")
    def set_tolerance(payload: ToleranceRequest):
        repo = ToleranceRepository(conn, cfg.default_tolerances_m, cfg.default_tolerance_m)
        try:
            repo.set(payload.highway_id, payload.asset_type, payload.tolerance_m)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if payload.asset_type:
            return {"highway_id": payload.highway_id, "asset_type": payload.asset_type,
                    "tolerance_m": repo.get(payload.highway_id, payload.asset_type)}
        return {"highway_id": payload.highway_id, "asset_type": None, "tolerance_m": payload.tolerance_m}

    @app.get("/report")
    def report(lot_id: str, highway_id: str, asset_type: Optional[str] = None):
        needs = orchestrator.needs.list(lot_id, highway_id, asset_type)
        conflicts = orchestrator.conflicts.list(lot_id, highway_id, asset_type)
        return {"needs": summarize(needs), "conflicts": summarize_conflicts(conflicts)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("ASSET_AUDIT_LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    host = os.getenv("APP_HOST", "0.0.0.0")
    port = int(os.getenv("APP_PORT", "8008"))
    uvicorn.run(app, host=host, port=port)
