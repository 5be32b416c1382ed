"""
Audit logging middleware.
Auto-logs all requests to endpoints that touch clinical data.
"""
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from ..models.audit import AuditLog
from ..models.base import SessionLocal, generate_uuid
from ..core.security import decode_access_token

logger = logging.getLogger(__name__)

# Endpoints that touch PHI - requests to these paths are logged
PHI_PATH_PREFIXES = (
    "/api/v1/patients",
    "/api/v1/providers",
    "/api/v1/records",
    "/api/v1/consultations",
    "/api/v1/documents",
    "/api/v1/admin/patients",
)

ACTION_MAP = {
    "GET": "view",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def resource_from_path(path: str):
    """``/api/v1/records/<id>/visibility`` -> ``("records", "<id>")``; an ``admin`` segment is skipped."""
    parts = [p for p in path.split("/") if p][2:]
    if parts[:1] == ["admin"]:
        parts = parts[1:]
    resource_type = parts[0] if len(parts) >= 1 else "unknown"
    resource_id = parts[1] if len(parts) >= 2 else "unknown"
    return resource_type, resource_id


class AuditMiddleware(BaseHTTPMiddleware):
    """Middleware that auto-logs access to PHI endpoints."""

    def __init__(self, app, session_factory=None):
        super().__init__(app)
        self.session_factory = session_factory

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        path = request.url.path
        if not any(path.startswith(prefix) for prefix in PHI_PATH_PREFIXES):
            return response
        if request.method not in ACTION_MAP:
            return response

        user_id = "anonymous"
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            payload = decode_access_token(auth_header[7:])
            if payload:
                user_id = payload.get("sub", "anonymous")

        resource_type, resource_id = resource_from_path(path)
        ip_address = request.client.host if request.client else None

        db = (self.session_factory or SessionLocal)()
        try:
            db.add(AuditLog(
                id=generate_uuid(),
                user_id=user_id,
                action=ACTION_MAP[request.method],
                resource_type=resource_type,
                resource_id=resource_id,
                ip_address=ip_address,
                request_method=request.method,
                request_path=path,
                user_agent=request.headers.get("User-Agent"),
                changes={"status_code": response.status_code},
            ))
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning(
                "Audit log write failed for %s %s (user=%s): %s",
                request.method, path, user_id, exc,
            )
        finally:
            db.close()

        return response
