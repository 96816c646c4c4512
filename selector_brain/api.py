"""
Selector Brain API Endpoints
============================
REST API exposing resolution, reports, clustering and learned-state
transfer for a SelectorBrain instance.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import BrainConfig, setup_logging
from .core.brain import SelectorBrain

logger = logging.getLogger(__name__)


class ResolveRequest(BaseModel):
    domain: str = Field(..., min_length=1)
    task_type: str = Field(..., min_length=1)
    element_kind: str
    element_text: Optional[str] = None


class ImportRequest(BaseModel):
    state: Dict[str, Any]
    replace: bool = False


def create_router(brain: SelectorBrain) -> APIRouter:
    """Build the API router bound to one brain instance"""
    router = APIRouter(prefix="/api/selector-brain", tags=["selector-brain"])

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    @router.post("/resolve")
    async def resolve(request: ResolveRequest):
        """
        Resolve an element description to a working selector.

        Always returns a result; check `success` and `learnings`.
        """
        result = await brain.resolve(
            request.domain,
            request.task_type,
            request.element_kind,
            request.element_text,
        )
        return result.to_dict()

    @router.post("/candidates")
    async def candidates(request: ResolveRequest):
        """Ranked candidates without touching the page"""
        selection = brain.select_candidates(
            request.domain,
            request.task_type,
            request.element_kind,
            request.element_text,
        )
        return {
            "estimated_success_rate": selection.estimated_success_rate,
            "plan_ready": selection.plan_ready,
            "recommendations": selection.recommendations,
            "candidates": [
                {
                    "selector": c.selector,
                    "selector_kind": c.selector_kind.value,
                    "score": c.score,
                    "confidence": c.confidence,
                    "estimated_wait_ms": c.estimated_wait_ms,
                    "source": c.metadata.get("source"),
                }
                for c in selection.candidates
            ],
        }

    # =========================================================================
    # MONITORING
    # =========================================================================

    @router.get("/report")
    async def report(domain: Optional[str] = None):
        """Performance metrics plus a readable summary"""
        generated = brain.generate_report(domain)
        return {
            "summary": generated.summary,
            "highlights": generated.highlights,
            "concerns": generated.concerns,
            "recommendations": generated.recommendations,
            "metrics": generated.metrics.to_dict() if generated.metrics else None,
            "persistence_degraded": brain.persistence_degraded,
        }

    @router.get("/trends")
    async def trends(limit: int = 100):
        return {"trends": [vars(t) for t in brain.tracker.get_trends(limit)]}

    @router.get("/failures/{domain}")
    async def failures(domain: str):
        return brain.analyze_failures(domain)

    @router.get("/summary")
    async def summary(domain: Optional[str] = None):
        return brain.get_learning_summary(domain)

    # =========================================================================
    # PATTERNS
    # =========================================================================

    @router.get("/clusters")
    async def clusters(min_similarity: float = 0.7, domain: Optional[str] = None, limit: int = 5):
        if not 0.0 <= min_similarity <= 1.0:
            raise HTTPException(status_code=422, detail="min_similarity must be between 0 and 1")
        if domain:
            found = brain.recommended_clusters(domain, limit)
            return {"clusters": [c.to_dict() for c in found], "total_patterns": len(brain.store.patterns())}
        result = brain.cluster_patterns(min_similarity)
        return {
            "clusters": [c.to_dict() for c in result.clusters],
            "total_patterns": result.total_patterns,
            "quality_score": result.quality_score,
        }

    # =========================================================================
    # LEARNED STATE
    # =========================================================================

    @router.get("/export")
    async def export_state(domain: Optional[str] = None):
        return brain.export_learned_state(domain)

    @router.post("/import")
    async def import_state(request: ImportRequest):
        try:
            return brain.import_learned_state(request.state, replace=request.replace)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @router.delete("/weights/{domain}")
    async def reset_weights(domain: str):
        brain.reset_domain(domain)
        return {"status": "reset", "domain": domain}

    return router


def create_app(brain: Optional[SelectorBrain] = None) -> FastAPI:
    """
    FastAPI app serving the router. Without a brain, one is built from
    SELECTOR_BRAIN_* environment settings; attach a driver with set_driver().
    """
    if brain is None:
        config = BrainConfig.from_env()
        setup_logging(config.log_level)
        brain = SelectorBrain(config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await brain.initialize()
        logger.info("[API] Selector brain ready")
        yield
        if brain.orchestrator is not None:
            await brain.orchestrator.drain()

    app = FastAPI(title="Selector Brain", version="0.1.0", lifespan=lifespan)
    app.state.brain = brain
    app.include_router(create_router(brain))
    return app
