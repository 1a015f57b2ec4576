from __future__ import annotations

import base64
import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from tqdm import tqdm

from .api import Api
from .exceptions import GotohpError, UploadError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]

DEFAULT_THREADS = 3
HASH_CHUNK_SIZE = 1024 * 1024

IMAGE_EXTS = {
	".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif", ".avif", ".bmp", ".ico",
	".tif", ".tiff", ".jxl",
	# camera raw
	".arw", ".cr2", ".cr3", ".crw", ".dng", ".nef", ".nrw", ".orf", ".raf", ".rw2", ".srw", ".pef", ".raw",
}
VIDEO_EXTS = {
	".3g2", ".3gp", ".asf", ".avi", ".divx", ".m2t", ".m2ts", ".m4v", ".mkv", ".mmv", ".mod",
	".mov", ".mp4", ".mpg", ".mpeg", ".mts", ".tod", ".vob", ".webm", ".wmv",
}
SUPPORTED_EXTS = IMAGE_EXTS | VIDEO_EXTS


@dataclass
class UploadResult:
	uploaded: Dict[str, str] = field(default_factory=dict)
	existing: Dict[str, str] = field(default_factory=dict)
	failed: Dict[str, str] = field(default_factory=dict)

	@property
	def total(self) -> int:
		return len({*self.uploaded, *self.existing, *self.failed})

	@property
	def ok(self) -> bool:
		return not self.failed


def is_supported(path: Path) -> bool:
	return path.suffix.lower() in SUPPORTED_EXTS


def collect_files(target: Path, recursive: bool = False, disable_filter: bool = False) -> List[Path]:
	target = Path(target)
	if not target.exists():
		raise UploadError(f"file or directory does not exist: {target}")
	if target.is_file():
		candidates: Iterable[Path] = [target]
	elif recursive:
		candidates = sorted(p for p in target.rglob("*") if p.is_file())
	else:
		candidates = sorted(p for p in target.iterdir() if p.is_file())

	files: List[Path] = []
	for p in candidates:
		if disable_filter or is_supported(p):
			files.append(p)
		else:
			logger.debug("Skipping unsupported file %s", p)
	if not files:
		raise UploadError(f"no files to upload in {target}")
	return files


def sha1_file(path: Path) -> Tuple[bytes, str]:
	digest = hashlib.sha1()
	with path.open("rb") as fh:
		for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
			digest.update(chunk)
	raw = digest.digest()
	return raw, base64.b64encode(raw).decode("ascii")


class Uploader:
	def __init__(self, api: Api, progress_cb: Optional[ProgressCallback] = None) -> None:
		self.api = api
		self.progress_cb = progress_cb

	def _emit(self, payload: Dict[str, Any]) -> None:
		if self.progress_cb:
			self.progress_cb(payload)

	def _upload_one(self, path: Path, force: bool) -> Tuple[str, bool]:
		sha1_raw, sha1_b64 = sha1_file(path)
		if not force:
			existing = self.api.find_remote_media_by_hash(sha1_raw)
			if existing:
				logger.info("%s already in library (%s)", path.name, existing)
				return existing, True

		size = path.stat().st_size
		token = self.api.get_upload_token(sha1_b64, size)
		logger.debug("Uploading %s (%d bytes)", path, size)
		with path.open("rb") as fh:
			upload_response = self.api.upload_file(fh, token)
		media_key = self.api.commit_upload(
			upload_response,
			file_name=path.name,
			sha1_hash=sha1_raw,
			upload_timestamp=int(os.path.getmtime(path)),
		)
		logger.info("Uploaded %s -> %s", path.name, media_key)
		return media_key, False

	def upload(
		self,
		files: List[Path],
		threads: int = DEFAULT_THREADS,
		force: bool = False,
		delete: bool = False,
		show_progress: bool = True,
	) -> UploadResult:
		result = UploadResult()
		threads = max(1, threads)
		self._emit({"phase": "upload", "event": "start", "total_files": len(files)})

		with ThreadPoolExecutor(max_workers=threads) as executor:
			futures = {executor.submit(self._upload_one, p, force): p for p in files}
			with tqdm(total=len(futures), desc="Uploading", unit="file", disable=not show_progress) as pbar:
				for fut in as_completed(futures):
					path = futures[fut]
					key = str(path.resolve())
					try:
						media_key, existed = fut.result()
					except (GotohpError, OSError) as e:
						result.failed[key] = str(e)
						logger.error("Failed to upload %s: %s", path, e)
						self._emit({"phase": "upload", "event": "file_error", "filename": path.name, "error": str(e)})
						pbar.update(1)
						continue
					if existed:
						result.existing[key] = media_key
					else:
						result.uploaded[key] = media_key
					pbar.update(1)
					self._emit({
						"phase": "upload",
						"event": "file_complete",
						"filename": path.name,
						"key": media_key,
						"existing": existed,
						"completed_files": result.total,
						"total_files": len(files),
					})

		if delete:
			for file_path in [*result.uploaded, *result.existing]:
				try:
					os.remove(file_path)
					logger.info("Deleted %s from host", file_path)
				except OSError as e:
					media_key = result.uploaded.pop(file_path, None) or result.existing.pop(file_path, None)
					result.failed[file_path] = f"uploaded as {media_key} but not deleted: {e}"
					logger.error("Could not delete %s: %s", file_path, e)

		self._emit({"phase": "upload", "event": "end"})
		return result
