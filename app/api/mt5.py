"""
MT5 API Endpoints.

Thin routing over ``ConnectionManager``: every handler delegates to one
manager operation and turns its ``OperationResult`` into the JSON
envelope (``success`` + ``message``, HTTP status from the error kind).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.models.account import HistoryQuery
from app.schemas.mt5 import ConnectRequest, DisconnectRequest, ErrorResponse
from app.services.connection_manager import ConnectionManager, OperationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mt5", tags=["MT5"])


def get_connection_manager(request: Request) -> ConnectionManager:
    """Return the process-wide manager built in the app lifespan."""
    return request.app.state.connection_manager


def error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.build(error_type, message).model_dump(),
    )


def _as_response(result: OperationResult, data: dict | None = None, **envelope) -> JSONResponse:
    """Success body is ``data`` overlaid by the envelope keys, which always win."""
    if not result.success:
        return error_response(result.error.status_code, result.error.kind, result.error.message)
    content = dict(data or {})
    content.update(envelope)
    content["success"] = True
    content["message"] = result.message
    return JSONResponse(content=jsonable_encoder(content))


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ─── CONNECT / DISCONNECT ───


@router.post("/connect")
async def connect_endpoint(
    payload: ConnectRequest,
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Provision (or reuse) an MT5 account, wait for it and return its snapshot."""
    result = await manager.connect(payload.server, payload.login, payload.password)
    return _as_response(result, result.data, accountId=result.account_id)


@router.post("/disconnect")
async def disconnect_endpoint(
    payload: DisconnectRequest,
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Undeploy an account (the account itself is kept)."""
    result = await manager.disconnect(payload.accountId)
    return _as_response(result)


# ─── ACCOUNT INFORMATION ───


@router.get("/account-info")
async def account_info_endpoint(
    accountId: str | None = Query(None),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Fresh balance / equity / margin snapshot of an account."""
    result = await manager.account_info(accountId)
    return _as_response(result, result.data)


@router.get("/history")
async def history_endpoint(
    accountId: str | None = Query(None),
    startDate: datetime | None = Query(None),
    endDate: datetime | None = Query(None),
    limit: int | None = Query(None, ge=1),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """History orders; defaults to the trailing 30 days, 1000 records."""
    query = HistoryQuery(start_time=_utc(startDate), end_time=_utc(endDate), limit=limit)
    result = await manager.history(accountId, query)
    return _as_response(result, result.data)
