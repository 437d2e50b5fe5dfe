import enum
import hashlib
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .db import INDEX_DIRNAME, Database

logger = logging.getLogger(__name__)


class FileType(enum.Enum):
    AUDIO = "audio"
    DOCUMENT = "document"
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"


AUDIO_EXTENSIONS = {
    ".aac", ".ac3", ".aif", ".aifc", ".aiff", ".au", ".cda", ".dts", ".fla", ".flac", ".it",
    ".m1a", ".m2a", ".m3u", ".m4a", ".mid", ".midi", ".mka", ".mod", ".mp2", ".mp3", ".mpa",
    ".ogg", ".opus", ".ra", ".rmi", ".snd", ".spc", ".umx", ".voc", ".wav", ".wma", ".xm",
}

DOCUMENT_EXTENSIONS = {
    ".c", ".chm", ".cpp", ".csv", ".cxx", ".doc", ".docm", ".docx", ".dot", ".dotm", ".dotx",
    ".h", ".hpp", ".htm", ".html", ".hxx", ".ini", ".java", ".lua", ".md", ".mht", ".mhtml",
    ".odt", ".pdf", ".ppt", ".pptx", ".rtf", ".txt", ".xls", ".xlsx", ".xml",
}

IMAGE_EXTENSIONS = {
    ".ani", ".bmp", ".gif", ".ico", ".jpe", ".jpeg", ".jpg", ".pcx", ".png", ".psd", ".tga",
    ".tif", ".tiff", ".webp", ".wmf",
}

VIDEO_EXTENSIONS = {
    ".3g2", ".3gp", ".3gpp", ".asf", ".avi", ".divx", ".flv", ".m2ts", ".m4v", ".mkv", ".mov",
    ".mp4", ".mpeg", ".mpg", ".mts", ".ogv", ".qt", ".rm", ".rmvb", ".ts", ".vob", ".webm",
    ".wmv",
}


@dataclass
class ScanResult:
    scanned: int = 0
    errors: int = 0
    added: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    renamed: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    removed_paths: Dict[int, str] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.renamed or self.removed)


def determine_filetype(path: str) -> FileType:
    _, ext = os.path.splitext(path)
    ext = ext.lower()
    if ext in AUDIO_EXTENSIONS:
        return FileType.AUDIO
    if ext in DOCUMENT_EXTENSIONS:
        return FileType.DOCUMENT
    if ext in IMAGE_EXTENSIONS:
        return FileType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return FileType.VIDEO
    return FileType.UNKNOWN


def sha256_of_file(path: str, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def image_dimensions(path: str) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(path) as img:
            width, height = img.size
            return int(width), int(height)
    except (OSError, UnidentifiedImageError):
        return None


def to_repo_path(root_dir: str, full_path: str) -> str:
    return os.path.relpath(full_path, root_dir).replace(os.sep, "/")


def list_files(root_dir: str) -> List[str]:
    """List repository-relative paths of every file under ``root_dir``.

    The index directory and hidden directories are skipped.
    """
    root_dir = os.path.abspath(root_dir)
    files: List[str] = []
    for current_root, dirnames, fnames in os.walk(root_dir):
        dirnames[:] = sorted(d for d in dirnames if d != INDEX_DIRNAME and not d.startswith("."))
        for fname in sorted(fnames):
            files.append(to_repo_path(root_dir, os.path.join(current_root, fname)))
    return files


def scan_directory(
    db: Database,
    files: Optional[List[str]] = None,
    on_progress: Optional[Callable[[int, int, str], None]] = None,
) -> ScanResult:
    """Bring the index for ``db.repo_dir`` in line with the filesystem.

    ``files`` is a listing from :func:`list_files`, taken here when omitted.
    Unchanged files (same size and mtime) are skipped. A new path whose
    content matches a vanished path is recorded as a rename of that item.
    """
    root_dir = db.repo_dir
    if files is None:
        files = list_files(root_dir)
    existing = db.existing_item_map()
    on_disk = set(files)
    missing: Dict[str, Dict[str, Optional[object]]] = {
        path: info for path, info in existing.items() if path not in on_disk
    }
    result = ScanResult()
    total = len(files)

    for idx, rel_path in enumerate(files, start=1):
        if on_progress is not None:
            on_progress(idx, total, rel_path)
        full_path = os.path.join(root_dir, *rel_path.split("/"))
        try:
            stat = os.stat(full_path)
            size_bytes = int(stat.st_size)
            modified_time_utc = int(stat.st_mtime)

            prev = existing.get(rel_path)
            if prev and prev.get("size_bytes") == size_bytes and prev.get("modified_time_utc") == modified_time_utc:
                continue

            sha256 = sha256_of_file(full_path)

            if prev is None:
                moved_from = _find_moved(missing, sha256, size_bytes)
                if moved_from is not None:
                    item_id = int(missing.pop(moved_from)["id"])
                    db.rename_item(item_id, rel_path)
                    logger.debug("detected rename %s -> %s", moved_from, rel_path)
                    result.renamed.append(item_id)
                    continue

            width: Optional[int] = None
            height: Optional[int] = None
            if determine_filetype(rel_path) is FileType.IMAGE:
                dims = image_dimensions(full_path)
                if dims is not None:
                    width, height = dims

            item_id = db.upsert_item(
                path=rel_path,
                sha256=sha256,
                size_bytes=size_bytes,
                modified_time_utc=modified_time_utc,
                width=width,
                height=height,
            )
            if prev is None:
                result.added.append(item_id)
            else:
                result.updated.append(item_id)
        except OSError as e:
            logger.warning("failed to index %s: %s", rel_path, e)
            result.errors += 1
        finally:
            result.scanned += 1

    removed_ids = [int(info["id"]) for info in missing.values()]
    result.removed_paths.update({int(info["id"]): path for path, info in missing.items()})
    db.mark_items_deleted(removed_ids)
    result.removed.extend(removed_ids)
    logger.info(
        "scanned %d files in %s: %d added, %d renamed, %d removed, %d errors",
        result.scanned, root_dir, len(result.added), len(result.renamed), len(result.removed), result.errors,
    )
    return result


def _find_moved(missing: Dict[str, Dict[str, Optional[object]]], sha256: str, size_bytes: int) -> Optional[str]:
    for path, info in missing.items():
        if info.get("sha256") == sha256 and info.get("size_bytes") == size_bytes:
            return path
    return None
