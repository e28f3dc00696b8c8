import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from backend import RedisBackend, get_redis_backend

health_router = APIRouter(tags=["health"])


def check_redis(backend: RedisBackend) -> dict[str, Any]:
    try:
        backend.ping()
    except Exception as exc:  # health must degrade, not crash
        return {"ok": False, "error": str(exc)}
    else:
        return {"ok": True}


@health_router.get("/health")
async def health(request: Request, backend: RedisBackend = Depends(get_redis_backend)):
    loop = asyncio.get_running_loop()
    components = {"redis": await loop.run_in_executor(None, check_redis, backend)}
    all_ok = all(v.get("ok", False) for v in components.values())

    return JSONResponse(
        {
            "status": "ok" if all_ok else "degraded",
            "components": components,
            "active_rooms": len(request.app.state.hub.registry),
        },
        status_code=200 if all_ok else 503,
    )
