from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import pytest
import requests

from gotohp.api import DownloadURLs, MediaInfo, MediaItem, MediaListResult, ThumbnailOptions


def make_auth(email: str, **extra: str) -> str:
	params = {
		"androidId": "3f1a2b",
		"app": "com.google.android.apps.photos",
		"client_sig": "24bb24c05e47e0aefa68a58a766179d9b613a600",
		"callerSig": "24bb24c05e47e0aefa68a58a766179d9b613a600",
		"device_country": "us",
		"Email": email,
		"google_play_services_version": "240913000",
		"lang": "en_US",
		"oauth2_foreground": "1",
		"sdk_version": "28",
		"service": "oauth2:openid https://www.googleapis.com/auth/photos.native",
		"Token": "aas_et/secret",
	}
	params.update(extra)
	return urlencode(params)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
	home = tmp_path / "home"
	home.mkdir()
	monkeypatch.setenv("HOME", str(home))
	monkeypatch.setenv("GOTOHP_CONFIG", str(tmp_path / "config.json"))
	return home


@pytest.fixture
def config_path(tmp_path) -> Path:
	return tmp_path / "config.json"


@pytest.fixture
def write_config(config_path):
	def _write(credentials: List[str], selected: str = "") -> Path:
		config_path.write_text(json.dumps({"credentials": credentials, "selected": selected}), encoding="utf-8")
		return config_path
	return _write


class FakeApi:
	"""Stands in for gotohp.api.Api; records every call."""

	def __init__(self) -> None:
		self.calls: List[Tuple[str, Any]] = []
		self.urls = DownloadURLs(original_url="https://dl.example/original", edited_url="https://dl.example/edited")
		self.info = MediaInfo(media_key="", filename="IMG_0001.JPG")
		self.media_list = MediaListResult(items=[MediaItem(media_key="AF1Qip_one", filename="a.jpg")], next_page_token="next")
		self.thumbnail = b"\xff\xd8thumb"
		self.payload = b"media-bytes"
		self.remote_hashes: Dict[bytes, str] = {}
		self.fail_on: Optional[str] = None
		self.committed: List[str] = []

	def _maybe_fail(self, name: str) -> None:
		if self.fail_on == name:
			from gotohp.exceptions import ApiError
			raise ApiError(f"{name} exploded", status_code=500)

	def get_download_urls(self, media_key: str) -> DownloadURLs:
		self.calls.append(("get_download_urls", media_key))
		self._maybe_fail("get_download_urls")
		return self.urls

	def get_media_info(self, media_key: str, url: str = "") -> MediaInfo:
		self.calls.append(("get_media_info", (media_key, url)))
		self._maybe_fail("get_media_info")
		return MediaInfo(media_key=media_key, filename=self.info.filename)

	def get_media_list(self, page_token: str = "", limit: int = 0) -> MediaListResult:
		self.calls.append(("get_media_list", (page_token, limit)))
		self._maybe_fail("get_media_list")
		return self.media_list

	def get_thumbnail(self, media_key: str, options: Optional[ThumbnailOptions] = None) -> bytes:
		self.calls.append(("get_thumbnail", (media_key, options)))
		self._maybe_fail("get_thumbnail")
		return self.thumbnail

	def download_media(self, url: str) -> bytes:
		self.calls.append(("download_media", url))
		self._maybe_fail("download_media")
		return self.payload

	def download_file(self, url: str, output_path, progress_cb=None) -> Path:
		self.calls.append(("download_file", (url, str(output_path))))
		self._maybe_fail("download_file")
		Path(output_path).write_bytes(self.payload)
		return Path(output_path)

	def find_remote_media_by_hash(self, sha1_hash: bytes) -> Optional[str]:
		self.calls.append(("find_remote_media_by_hash", sha1_hash))
		return self.remote_hashes.get(sha1_hash)

	def get_upload_token(self, sha1_b64: str, file_size: int) -> str:
		self.calls.append(("get_upload_token", (sha1_b64, file_size)))
		return f"token-{sha1_b64}"

	def upload_file(self, file, upload_token: str):
		data = file.read()
		self.calls.append(("upload_file", upload_token))
		self._maybe_fail("upload_file")
		return ({"1": len(data)}, {"1": {"type": "int", "name": ""}})

	def commit_upload(self, upload_response, file_name: str, sha1_hash: bytes, upload_timestamp=None, quality: str = "original") -> str:
		self.calls.append(("commit_upload", file_name))
		self.committed.append(file_name)
		return f"AF1Qip_{file_name}"


@pytest.fixture
def fake_api() -> FakeApi:
	return FakeApi()


class FakeResponse:
	def __init__(self, status_code: int = 200, content: bytes = b"", headers: Optional[Dict[str, str]] = None) -> None:
		self.status_code = status_code
		self.content = content
		self.headers = headers or {}
		self.closed = False

	@property
	def text(self) -> str:
		return self.content.decode("utf-8")

	def raise_for_status(self) -> None:
		if self.status_code >= 400:
			raise requests.HTTPError(f"{self.status_code} Error", response=self)

	def iter_content(self, chunk_size: int = 1):
		for i in range(0, len(self.content), chunk_size):
			yield self.content[i:i + chunk_size]

	def close(self) -> None:
		self.closed = True

	def __enter__(self) -> "FakeResponse":
		return self

	def __exit__(self, *exc) -> None:
		self.close()


class FakeSession:
	def __init__(self, routes: Dict[str, FakeResponse], delay: float = 0.0) -> None:
		self.routes = routes
		self.delay = delay
		self.requests: List[Dict[str, Any]] = []

	def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
		self.requests.append({"method": method, "url": url, **kwargs})
		if self.delay:
			time.sleep(self.delay)
		for prefix, response in self.routes.items():
			if url.startswith(prefix):
				return response
		raise requests.ConnectionError(f"no route for {url}")


AUTH_RESPONSE = FakeResponse(content=b"SID=BAD\nAuth=ya29.bearer\nExpiry=99999999999\n")
