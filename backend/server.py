"""
Funil CRM - API Backend
Suivi des budgets (orçamentos): relances, gains partiels, rappels

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from config import CORS_ORIGINS, ALERT_REFRESH_SECONDS, DEFAULT_TIMEZONE
from services.errors import (
    CRMError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailure,
    ValidationError,
)

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("funil")

app = FastAPI(
    title="Funil CRM",
    description="Suivi des budgets et relances commerciales",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERREURS MÉTIER ====================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "from_status": exc.from_status,
            "to_status": exc.to_status,
        },
    )


@app.exception_handler(PartialFailure)
async def partial_failure_handler(request: Request, exc: PartialFailure):
    logger.error(f"[BUDGET] {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "budget_id": exc.budget_id,
            "sibling_id": exc.sibling_id,
        },
    )


@app.exception_handler(CRMError)
async def crm_error_handler(request: Request, exc: CRMError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ==================== IMPORT DES ROUTES ====================

from routes import alerts, budgets, prospects, reminders

app.include_router(budgets.router, prefix="/api")
app.include_router(prospects.router, prefix="/api")
app.include_router(alerts.router, prefix="/api")
app.include_router(reminders.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "Funil CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

alert_scheduler = None


@app.on_event("startup")
async def startup():
    global alert_scheduler
    from routes.deps import get_record_store
    from scheduler_service import AlertScheduler
    from services.alert_board import alert_board

    store = get_record_store()
    await store.create_indexes()

    alert_scheduler = AlertScheduler(store, alert_board, ALERT_REFRESH_SECONDS, DEFAULT_TIMEZONE)
    alert_scheduler.start()
    await alert_scheduler.refresh_all()

    logger.info("🚀 Funil CRM démarré")


@app.on_event("shutdown")
async def shutdown():
    if alert_scheduler is not None:
        alert_scheduler.stop()
    from config import client
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
