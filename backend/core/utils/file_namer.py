from __future__ import annotations

import os
import re
import unicodedata
from dataclasses import dataclass
from datetime import date
from typing import Optional


_NON_ALNUM = re.compile(r"[^A-Z0-9_-]+")
_UNDERSCORE = re.compile(r"_+")


def _normalize(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    ascii_only = normalized.encode("ascii", "ignore").decode("ascii")
    replaced = ascii_only.replace(" ", "_").upper()
    cleaned = _NON_ALNUM.sub("_", replaced)
    collapsed = _UNDERSCORE.sub("_", cleaned).strip("_")
    return collapsed


@dataclass(frozen=True)
class FileNamingResult:
    filename: str
    extension: str


class FileNamer:
    """Génère des noms de fichiers normalisés pour les pièces justificatives.

    Exemple : ``2026_1017_DOC_DEM-2026-000012_CERTIFICAT_MEDICAL.pdf``
    """

    DEFAULT_EXTENSION = "bin"

    def generate(
        self,
        *,
        doc_type: str,
        reference: str,
        original_name: str,
        issued_on: Optional[date] = None,
    ) -> FileNamingResult:
        issued_on = issued_on or date.today()
        stem, ext = os.path.splitext(original_name or "")
        extension = _normalize(ext.lstrip(".")).lower() or self.DEFAULT_EXTENSION
        parts = [
            issued_on.strftime("%Y_%m%d"),
            _normalize(doc_type),
            _normalize(reference),
        ]
        detail = _normalize(stem)
        if detail:
            parts.append(detail[:60])
        return FileNamingResult(filename=f"{'_'.join(parts)}.{extension}", extension=extension)
