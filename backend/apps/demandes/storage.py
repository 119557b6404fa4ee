from __future__ import annotations

import logging
from typing import IO

from django.core.files.storage import default_storage

from core.utils.file_namer import FileNamer

logger = logging.getLogger(__name__)

UPLOAD_DIR = "demandes"


def store(uploaded_file, *, reference: str) -> str:
    """Enregistre la pièce et retourne le nom stocké (référence de fichier)."""
    original_name = getattr(uploaded_file, "name", "") or "document"
    naming = FileNamer().generate(doc_type="DOC", reference=reference, original_name=original_name)
    stored_name = default_storage.save(f"{UPLOAD_DIR}/{reference}/{naming.filename}", uploaded_file)
    logger.info("Pièce %s stockée sous %s", original_name, stored_name)
    return stored_name


def fetch(name: str) -> IO[bytes]:
    return default_storage.open(name, "rb")
