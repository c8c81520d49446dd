"""Penyimpanan lampiran transaksi di folder uploads/transactions/<id>/."""
import logging
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from errors import ValidationError, NotFoundError, StorageError

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
}


def get_mime_type(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower().lstrip(".")
    return MIME_TYPES.get(ext, "application/octet-stream")


def clean_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name or "file")


class AttachmentStore:
    def __init__(self, root: Path, public_prefix: str = "/uploads/transactions"):
        self.root = Path(root)
        self.public_prefix = public_prefix

    def _dir(self, transaction_id: int) -> Path:
        return self.root / str(transaction_id)

    def _file_info(self, transaction_id: int, path: Path) -> dict:
        stat = path.stat()
        timestamp, _, original = path.name.partition("-")
        try:
            uploaded_at = datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
        except ValueError:
            uploaded_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return {
            "id": path.name,
            "file_name": path.name,
            "original_name": original or path.name,
            "file_size": stat.st_size,
            "mime_type": get_mime_type(path.name),
            "file_path": f"{self.public_prefix}/{transaction_id}/{path.name}",
            "uploaded_at": uploaded_at.isoformat(),
        }

    def save(self, transaction_id: int, filename: str, content: bytes) -> dict:
        if not content:
            raise ValidationError("File kosong")
        target_dir = self._dir(transaction_id)
        name = f"{int(time.time() * 1000)}-{clean_filename(filename)}"
        path = target_dir / name
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(content)
        except OSError as e:
            logger.exception(f"Gagal menyimpan lampiran {path}")
            raise StorageError(f"Gagal menyimpan file: {e}")
        info = self._file_info(transaction_id, path)
        info["original_name"] = filename
        return info

    def list(self, transaction_id: int) -> List[dict]:
        target_dir = self._dir(transaction_id)
        if not target_dir.exists():
            return []
        files = [
            self._file_info(transaction_id, p)
            for p in target_dir.iterdir()
            if p.is_file() and p.name != ".gitkeep"
        ]
        return sorted(files, key=lambda f: f["uploaded_at"], reverse=True)

    def delete(self, transaction_id: int, file_id: str):
        if not file_id or Path(file_id).name != file_id:
            raise ValidationError("File ID tidak valid")
        path = self._dir(transaction_id) / file_id
        if not path.is_file():
            raise NotFoundError("File tidak ditemukan")
        try:
            path.unlink()
        except OSError as e:
            logger.exception(f"Gagal hapus file {path}")
            raise StorageError(f"Gagal menghapus file: {e}")
