"""Download helpers: single results and zip bundles of results."""

from __future__ import annotations

import io
import posixpath
import time
import zipfile
from typing import Dict, Iterable, List, Optional, Set

from .redaction_types import ProcessedResult

ENTRY_PREFIX = "processed_"


def base_name(source_name: str) -> str:
    """Last path component of ``source_name``, for either path separator."""
    name = posixpath.basename(source_name.replace("\\", "/")).strip()
    return name or "image"


def entry_name_for(source_name: str) -> str:
    return f"{ENTRY_PREFIX}{base_name(source_name)}"


def _disambiguate(name: str, suffix: str) -> str:
    stem, ext = posixpath.splitext(name)
    return f"{stem}_{suffix}{ext}"


def archive_names(results: Iterable[ProcessedResult]) -> List[str]:
    """Distinct archive entry names for ``results``, in the same order.

    The first result for a given original name gets ``processed_<name>``;
    later ones get the result id inserted before the extension.
    """
    names: List[str] = []
    taken: Set[str] = set()
    for result in results:
        name = entry_name_for(result.source_name)
        if name in taken:
            name = _disambiguate(name, result.id)
        counter = 2
        candidate = name
        while candidate in taken:
            candidate = _disambiguate(name, str(counter))
            counter += 1
        taken.add(candidate)
        names.append(candidate)
    return names


def archive_entries(results: Iterable[ProcessedResult]) -> Dict[str, bytes]:
    """Map archive entry names to encoded bytes, one entry per result."""
    ordered = list(results)
    return dict(zip(archive_names(ordered), (result.data for result in ordered)))


def build_zip(entries: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def archive_filename(now: Optional[float] = None) -> str:
    timestamp = time.time() if now is None else now
    return f"processed_images_{int(timestamp * 1000)}.zip"


def download_one(result: ProcessedResult) -> bytes:
    return result.data


def download_all(results: Iterable[ProcessedResult]) -> bytes:
    """Zip every result under its ``processed_`` entry name."""
    return build_zip(archive_entries(results))
