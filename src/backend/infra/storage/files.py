from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from src.backend.config import settings

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Strip directory parts and unsafe characters from an uploaded name."""

    base = Path(name or "").name
    cleaned = _UNSAFE.sub("_", base).strip("._")
    return cleaned or "upload"


class CaseFileStorageBackend(ABC):
    @abstractmethod
    def save_file(self, case_id: str, filename: str, content: bytes) -> str:
        """Persist file bytes for a case and return a path reference."""

    @abstractmethod
    def delete_file(self, ref: str) -> None:
        """Best-effort deletion of a previously saved file."""


class LocalCaseFileStorageBackend(CaseFileStorageBackend):
    def __init__(self, base: Optional[Path] = None) -> None:
        self._base: Path = base or settings.case_file_upload_dir

    def save_file(self, case_id: str, filename: str, content: bytes) -> str:
        dest_dir = self._base / safe_filename(case_id)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest_path = dest_dir / safe_filename(filename)
        counter = 1
        while dest_path.exists():
            dest_path = dest_dir / f"{counter}-{safe_filename(filename)}"
            counter += 1
        dest_path.write_bytes(content)
        return str(dest_path)

    def delete_file(self, ref: str) -> None:
        path = Path(ref)
        if path.exists():
            path.unlink(missing_ok=True)


case_file_storage: CaseFileStorageBackend = LocalCaseFileStorageBackend()
