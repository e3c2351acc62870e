from django.conf import settings
from django.conf.urls.static import static
from django.urls import include, path

from core import views_health


def _build_urlpatterns():
    patterns = [
        path("healthz", views_health.healthz, name="healthz"),
        path("api/cfdi/", include("cfdi.urls")),
    ]

    if settings.DEBUG:
        patterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

    return patterns


urlpatterns = _build_urlpatterns()
