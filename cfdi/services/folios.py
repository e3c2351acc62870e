from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from cfdi.exceptions import ConflictError, NotFoundError, ValidationError
from cfdi.models import DocumentType, Series

logger = logging.getLogger(__name__)

MAX_SERIES_LENGTH = 10


@dataclass(frozen=True)
class FolioAllocation:
    series: str
    folio: int


def _get_series_for_update(*, business, document_type: str, series_label: str | None) -> Series:
    qs = Series.objects.select_for_update().filter(business=business, document_type=document_type)
    if series_label:
        qs = qs.filter(series=series_label)
    series = qs.order_by("id").first()
    if series is None:
        label = series_label or document_type
        raise NotFoundError("series", label, context={"business_id": business.pk, "document_type": document_type})
    return series


@transaction.atomic
def allocate_folio(*, business, document_type: str = DocumentType.INVOICE, series_label: str | None = None) -> FolioAllocation:
    """
    Reserve the next folio for the tenant's series of `document_type`.

    The row is locked and incremented with a single UPDATE inside the caller's
    transaction, so two requests (on any number of processes) never share a
    folio. When the surrounding transaction rolls back the folio is released.
    """
    series = _get_series_for_update(business=business, document_type=document_type, series_label=series_label)
    Series.objects.filter(pk=series.pk).update(last_folio=F("last_folio") + 1, updated_at=timezone.now())
    series.refresh_from_db(fields=["last_folio"])
    logger.debug("Allocated folio %s-%s for business %s", series.series, series.last_folio, business.pk)
    return FolioAllocation(series=series.series, folio=series.last_folio)


def create_series(*, business, series_label: str, document_type: str = DocumentType.INVOICE, initial_folio: int = 1) -> Series:
    series_label = (series_label or "").strip()
    if not series_label:
        raise ValidationError("series is required", field="series")
    if len(series_label) > MAX_SERIES_LENGTH:
        raise ValidationError(f"series cannot exceed {MAX_SERIES_LENGTH} characters", field="series")
    if document_type not in DocumentType.values:
        raise ValidationError("unsupported document type", field="document_type")
    try:
        initial_folio = int(initial_folio)
    except (TypeError, ValueError) as exc:
        raise ValidationError("initial folio must be an integer", field="initial_folio") from exc
    if initial_folio < 1:
        raise ValidationError("initial folio must be at least 1", field="initial_folio")

    try:
        with transaction.atomic():
            return Series.objects.create(
                business=business,
                series=series_label,
                document_type=document_type,
                last_folio=initial_folio - 1,
            )
    except IntegrityError as exc:
        raise ConflictError(f"series '{series_label}' already exists") from exc
