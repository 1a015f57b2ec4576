from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from .api import Api, MediaListResult, ThumbnailOptions, new_api
from .config import ConfigManager
from .exceptions import ApiError, GotohpError
from .utils import sanitize_filename

logger = logging.getLogger(__name__)

THUMBNAIL_SIZES: Dict[str, Tuple[int, int]] = {
	"small": (200, 200),
	"medium": (400, 400),
	"large": (800, 800),
}
DEFAULT_THUMBNAIL_SIZE = "medium"


def thumbnail_dimensions(size: str) -> Tuple[int, int]:
	return THUMBNAIL_SIZES.get(size, THUMBNAIL_SIZES[DEFAULT_THUMBNAIL_SIZE])


def default_downloads_dir() -> Path:
	return Path.home() / "Downloads" / "gotohp"


def fallback_filename(media_key: str) -> str:
	return f"{media_key[:10]}.jpg"


class MediaBrowser:
	"""Browse, preview and save remote media for the currently selected account.

	A fresh Api client is built for every call so that a credential switch
	made elsewhere is picked up immediately.
	"""

	def __init__(self, config_manager: Optional[ConfigManager] = None, downloads_dir: Optional[Path] = None) -> None:
		self.config_manager = config_manager or ConfigManager()
		self.downloads_dir = Path(downloads_dir) if downloads_dir is not None else default_downloads_dir()

	def _api(self) -> Api:
		try:
			return new_api(self.config_manager.get_config())
		except GotohpError as e:
			raise ApiError(f"failed to create API client: {e}") from e

	def get_media_list(self, page_token: str = "", limit: int = 0) -> MediaListResult:
		api = self._api()
		try:
			return api.get_media_list(page_token, limit)
		except GotohpError as e:
			raise ApiError(f"failed to get media list: {e}") from e

	def get_thumbnail(self, media_key: str, size: str = DEFAULT_THUMBNAIL_SIZE) -> str:
		api = self._api()
		width, height = thumbnail_dimensions(size)
		options = ThumbnailOptions(width=width, height=height, force_jpeg=False, no_overlay=False)
		try:
			data = api.get_thumbnail(media_key, options)
		except GotohpError as e:
			raise ApiError(f"failed to get thumbnail: {e}") from e
		return base64.b64encode(data).decode("ascii")

	def download_media(self, media_key: str) -> str:
		api = self._api()
		try:
			urls = api.get_download_urls(media_key)
		except GotohpError as e:
			raise ApiError(f"failed to get download URLs: {e}") from e
		url = urls.preferred()
		if not url:
			raise ApiError(f"failed to get download URLs: no download URL available for {media_key}")

		try:
			info = api.get_media_info(media_key, url)
		except GotohpError as e:
			raise ApiError(f"failed to get media info: {e}") from e

		try:
			self.downloads_dir.mkdir(parents=True, exist_ok=True)
		except OSError as e:
			raise ApiError(f"failed to create downloads directory: {e}") from e

		filename = sanitize_filename(info.filename) or fallback_filename(media_key)
		output_path = self.downloads_dir / filename
		try:
			api.download_file(url, output_path)
		except (GotohpError, OSError) as e:
			raise ApiError(f"failed to download file: {e}") from e
		logger.info("Saved %s to %s", media_key, output_path)
		return str(output_path)
