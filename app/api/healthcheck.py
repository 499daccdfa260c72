import platform
import sys
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.mt5 import get_connection_manager
from app.core.config import settings
from app.services.connection_manager import ConnectionManager

router = APIRouter(tags=["System"])

_started_at = time.monotonic()


@router.get("/version")
def version():
    return {"version": settings.VERSION}


@router.get("/health")
async def healthcheck(manager: ConnectionManager = Depends(get_connection_manager)):
    health = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - _started_at,
        "environment": {
            "pythonVersion": sys.version.split()[0],
            "platform": sys.platform,
            "arch": platform.machine(),
            "hasMetaApiToken": bool(settings.META_API_TOKEN),
        },
        "services": {},
    }

    health["services"][manager.service.platform] = await manager.check_remote()

    has_errors = any(s["status"] == "error" for s in health["services"].values())
    return JSONResponse(status_code=503 if has_errors else 200, content=health)
