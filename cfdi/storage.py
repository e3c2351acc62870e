from __future__ import annotations

import logging

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

logger = logging.getLogger(__name__)


class ArtifactStorage:
    """
    Uploads stamped XML and PDF artifacts through Django's storage API.

    Names are derived from the fiscal UUID; an existing object is never
    overwritten because the storage backend picks a fresh name on collision.
    """

    root = "cfdi"

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    def path_for(self, business_id, kind: str, fiscal_uuid: str, extension: str) -> str:
        return f"{self.root}/{business_id}/{kind}/{fiscal_uuid.lower()}.{extension}"

    def save(self, path: str, content: bytes | str) -> str:
        if isinstance(content, str):
            content = content.encode("utf-8")
        name = self.storage.save(path, ContentFile(content))
        url = self.storage.url(name)
        logger.info("Stored artifact %s (%d bytes)", name, len(content))
        return url

    def save_xml(self, business_id, kind: str, fiscal_uuid: str, xml: str) -> str:
        return self.save(self.path_for(business_id, kind, fiscal_uuid, "xml"), xml)

    def save_pdf(self, business_id, kind: str, fiscal_uuid: str, pdf: bytes) -> str:
        return self.save(self.path_for(business_id, kind, fiscal_uuid, "pdf"), pdf)
