import hmac
from typing import Optional

from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .exceptions import InsufficientBalanceError, InvalidInputError, WithdrawalNotFoundError
from .models import (
    AddTaskRequest,
    AddTaskResponse,
    ApproveWithdrawalRequest,
    ApproveWithdrawalResponse,
    LedgerDataResponse,
    StatsResponse,
)
from .reports import export_csv, ledger_stats
from .service import LedgerEngine

EXPORT_TYPES = ("users", "withdraws")


def create_app(engine: Optional[LedgerEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if engine is None:
        engine = LedgerEngine(referral_bonus=settings.referral_bonus)
        engine.tasks.seed_if_empty()

    app = FastAPI(
        title="Task Ledger Admin API",
        description="Admin API for the task reward ledger: approvals, task catalog and exports",
        version="1.0.0",
    )
    app.state.engine = engine
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_admin(key: Optional[str]) -> None:
        if not key or not hmac.compare_digest(key.encode(), settings.admin_pass.encode()):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "task-ledger"}

    @app.get("/api/data", response_model=LedgerDataResponse, tags=["Admin"])
    def get_data(key: str = "") -> LedgerDataResponse:
        require_admin(key)
        return LedgerDataResponse(
            users=engine.list_accounts(),
            tasks=engine.list_tasks(),
            withdraws=engine.list_withdrawals(),
        )

    @app.post("/api/approve", response_model=ApproveWithdrawalResponse, tags=["Withdrawals"])
    def approve_withdrawal(request: ApproveWithdrawalRequest) -> ApproveWithdrawalResponse:
        require_admin(request.key)
        try:
            result = engine.approve_withdrawal(request.id)
        except WithdrawalNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
        except InsufficientBalanceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
        return ApproveWithdrawalResponse(success=True, message=result.message, withdrawal=result.withdrawal)

    @app.post("/api/add-task", response_model=AddTaskResponse, tags=["Tasks"])
    def add_task(request: AddTaskRequest) -> AddTaskResponse:
        require_admin(request.key)
        try:
            task = engine.add_task(request.title, request.reward, request.link)
        except InvalidInputError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
        return AddTaskResponse(success=True, task=task)

    @app.get("/api/stats", response_model=StatsResponse, tags=["Admin"])
    def get_stats(key: str = "") -> StatsResponse:
        require_admin(key)
        return ledger_stats(engine)

    @app.get("/api/export/{export_type}", tags=["Admin"])
    def export(export_type: str, key: str = "") -> Response:
        require_admin(key)
        if export_type not in EXPORT_TYPES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid type")

        records = engine.list_accounts() if export_type == "users" else engine.list_withdrawals()
        content = export_csv(record.model_dump(mode="json") for record in records)
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{export_type}.csv"'},
        )

    return app
