from fastapi import Request
from fastapi.responses import JSONResponse

# Public paths that don't require a forwarded identity
PUBLIC_PATHS = {
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
}


def _is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs/")


async def identity_middleware(request: Request, call_next):
    """
    The gateway verifies the bearer token and forwards the caller as
    X-User-ID / X-User-Email. Anything without a usable id is rejected here.
    """
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    raw_id = request.headers.get("X-User-ID", "").strip()
    if not raw_id:
        return JSONResponse(status_code=401, content={"detail": "Missing user identity"})
    try:
        user_id = int(raw_id)
    except ValueError:
        return JSONResponse(status_code=401, content={"detail": "Invalid user identity"})

    request.state.user = {"sub": str(user_id), "email": request.headers.get("X-User-Email", "")}
    return await call_next(request)


def current_user_id(request: Request) -> int:
    user = getattr(request.state, "user", None)
    return int(user["sub"]) if user and "sub" in user else 0
