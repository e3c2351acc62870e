import logging
import time

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)


def _check_database() -> dict:
    started = time.monotonic()
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except DatabaseError as exc:
        logger.warning("Health check database probe failed: %s", exc)
        return {"status": "down", "error": "database unavailable"}
    return {"status": "up", "response_ms": int((time.monotonic() - started) * 1000)}


def _check_pac_configuration() -> dict:
    # Tenants may carry their own credentials, so missing fallbacks only degrade.
    if getattr(settings, "PAC_USER", "") and getattr(settings, "PAC_API_KEY", ""):
        return {"status": "up"}
    return {"status": "degraded", "error": "fallback PAC credentials not configured"}


@require_GET
def healthz(request):
    """Kubernetes-style health probe at /healthz."""
    services = {
        "database": _check_database(),
        "pac": _check_pac_configuration(),
    }
    if services["database"]["status"] == "down":
        overall = "unhealthy"
    elif any(s["status"] != "up" for s in services.values()):
        overall = "degraded"
    else:
        overall = "healthy"
    status_code = 503 if overall == "unhealthy" else 200
    return JsonResponse({"status": overall, "services": services}, status=status_code)
