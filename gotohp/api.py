from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

import requests
from blackboxprotobuf import decode_message, encode_message
from dateutil import tz
from requests.adapters import HTTPAdapter, Retry

from .config import DEFAULT_TIMEOUT, Config
from .credentials import find_credential, iter_valid_credentials, parse_auth_string
from .exceptions import ApiError, CredentialsError, UploadRejected
from .utils import sanitize_filename

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]

RETRIES = 5
CHUNK_SIZE = 1024 * 256

PHOTOS_APP = "com.google.android.apps.photos"
CLIENT_VERSION_CODE = 49029607
ANDROID_API_VERSION = 28
DEVICE_MAKE = "Google"
DEVICE_MODEL = "Pixel XL"
USER_AGENT = (
	f"{PHOTOS_APP}/{CLIENT_VERSION_CODE} (Linux; U; Android 9; en_US; Pixel XL; "
	"Build/PQ2A.190205.001; Cronet/127.0.6510.5) (gzip)"
)
AUTH_USER_AGENT = "GoogleAuth/1.4 (Pixel XL PQ2A.190205.001); gzip"

AUTH_URL = "https://android.googleapis.com/auth"
UPLOAD_URL = "https://photos.googleapis.com/data/upload/uploadmedia/interactive"
RPC_BASE = "https://photosdata-pa.googleapis.com/6439526531001121323"
FIND_BY_HASH_URL = f"{RPC_BASE}/5084965799730810217"
COMMIT_UPLOAD_URL = f"{RPC_BASE}/16538846908252377752"
LIBRARY_PAGE_URL = f"{RPC_BASE}/18047484249733410717"
DOWNLOAD_URLS_URL = (
	"https://photosdata-pa.googleapis.com/$rpc/"
	"social.frontend.photos.preparedownloaddata.v1.PhotosPrepareDownloadDataService/PhotosPrepareDownload"
)
THUMBNAIL_URL = "https://ap2.googleusercontent.com/gpa/{media_key}=k-sg"

# Fields the auth endpoint expects; sending the raw auth string can yield an encrypted token.
AUTH_REQUEST_FIELDS = (
	"androidId",
	"client_sig",
	"callerSig",
	"device_country",
	"Email",
	"google_play_services_version",
	"lang",
	"oauth2_foreground",
	"sdk_version",
	"service",
	"Token",
)

# Media item fields requested from the library and commit endpoints.
ITEM_FIELD_MASK: Dict[str, Any] = {
	"1": {},
	"3": {},
	"4": {},
	"5": {"1": {}, "2": {}, "3": {}, "4": {}, "5": {}, "7": {}},
	"6": {},
	"7": {"2": {}},
	"15": {},
	"16": {},
	"17": {},
	"19": {},
	"20": {},
	"21": {"5": {"3": {}}, "6": {}},
	"25": {},
	"30": {"2": {}},
	"31": {},
	"32": {},
	"33": {"1": {}},
	"34": {},
	"36": {},
	"37": {},
	"38": {},
	"39": {},
	"40": {},
	"41": {},
}


@dataclass
class DownloadURLs:
	original_url: str = ""
	edited_url: str = ""

	def preferred(self, use_original: bool = True) -> str:
		"""Pick a URL: original when asked for and present, else edited, else original.

		Returns an empty string when neither is available.
		"""
		if use_original and self.original_url:
			return self.original_url
		if self.edited_url:
			return self.edited_url
		return self.original_url


@dataclass
class ThumbnailOptions:
	width: int = 0
	height: int = 0
	force_jpeg: bool = True
	no_overlay: bool = False
	content_version: int = 0
	crop: bool = False

	def url_suffix(self) -> str:
		suffix = ""
		if self.width:
			suffix += f"-w{self.width}"
		if self.height:
			suffix += f"-h{self.height}"
		if self.force_jpeg:
			suffix += "-rj"
		if self.content_version:
			suffix += f"-iv{self.content_version}"
		if self.no_overlay:
			suffix += "-no"
		if self.crop:
			suffix += "-c"
		return suffix


@dataclass
class MediaInfo:
	media_key: str
	filename: str = ""
	size: int = 0
	mime_type: str = ""


@dataclass
class MediaItem:
	media_key: str
	filename: str = ""
	timestamp: Optional[int] = None
	size: int = 0

	@property
	def created(self) -> Optional[datetime]:
		if not self.timestamp:
			return None
		# Library timestamps are in milliseconds
		return datetime.fromtimestamp(self.timestamp / 1000, tz=tz.tzlocal())


@dataclass
class MediaListResult:
	items: List[MediaItem] = field(default_factory=list)
	next_page_token: str = ""


def _infer_typedef(message: Dict[str, Any]) -> Dict[str, Any]:
	typedef: Dict[str, Any] = {}
	for key, value in message.items():
		sample = value[0] if isinstance(value, list) and value else value
		if isinstance(sample, dict):
			merged: Dict[str, Any] = {}
			for part in value if isinstance(value, list) else [value]:
				merged.update(part)
			typedef[key] = {"type": "message", "message_typedef": _infer_typedef(merged), "name": ""}
		elif isinstance(sample, bytes):
			typedef[key] = {"type": "bytes", "name": ""}
		elif isinstance(sample, int):
			typedef[key] = {"type": "int", "name": ""}
		else:
			typedef[key] = {"type": "string", "name": ""}
	return typedef


def encode_proto(message: Dict[str, Any], typedef: Optional[Dict[str, Any]] = None) -> bytes:
	return encode_message(message, typedef or _infer_typedef(message))


def decode_response(content: bytes, context: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
	# bbpb raises DecoderException, and plain ValueError or KeyError on some junk input
	try:
		return decode_message(content)
	except Exception as e:
		raise ApiError(f"{context}: invalid response: {e}") from e


def _dig(data: Any, *keys: str) -> Any:
	for key in keys:
		if not isinstance(data, dict):
			return None
		data = data.get(key)
	return data


def _text(value: Any) -> str:
	if isinstance(value, str):
		return value
	if isinstance(value, bytes):
		return value.decode("utf-8", errors="replace")
	return ""


def _as_list(value: Any) -> List[Any]:
	if value is None:
		return []
	if isinstance(value, list):
		return value
	return [value]


def filename_from_disposition(header: str) -> str:
	if not header:
		return ""
	m = re.search(r"filename\*\s*=\s*(?:[\w-]+'[\w-]*')?\"?([^\";]+)\"?", header, re.IGNORECASE)
	if m:
		return sanitize_filename(unquote(m.group(1)))
	m = re.search(r"filename\s*=\s*\"?([^\";]+)\"?", header, re.IGNORECASE)
	if m:
		return sanitize_filename(m.group(1))
	return ""


def parse_library_page(decoded: Dict[str, Any]) -> MediaListResult:
	result = MediaListResult(next_page_token=_text(_dig(decoded, "1", "1")))
	for raw in _as_list(_dig(decoded, "1", "2")):
		media_key = _text(_dig(raw, "1"))
		if not media_key:
			continue
		timestamp = _dig(raw, "2", "7")
		size = _dig(raw, "2", "10")
		result.items.append(
			MediaItem(
				media_key=media_key,
				filename=_text(_dig(raw, "2", "4")),
				timestamp=timestamp if isinstance(timestamp, int) else None,
				size=size if isinstance(size, int) else 0,
			)
		)
	return result


def parse_download_urls(decoded: Dict[str, Any]) -> DownloadURLs:
	info = _dig(decoded, "1", "5")
	photo = _dig(info, "2")
	video = _dig(info, "3")
	return DownloadURLs(
		original_url=_text(_dig(photo, "6")) or _text(_dig(video, "5")),
		edited_url=_text(_dig(photo, "5")),
	)


class Api:
	def __init__(
		self,
		auth_data: str,
		proxy: str = "",
		language: str = "",
		timeout: int = DEFAULT_TIMEOUT,
	) -> None:
		self.auth_params = parse_auth_string(auth_data)
		self.email = self.auth_params["Email"]
		self.proxy = proxy
		self.timeout = timeout
		self.language = language or self.auth_params.get("lang") or "en_US"
		self._auth_cache: Dict[str, str] = {"Expiry": "0", "Auth": ""}
		self._session: Optional[requests.Session] = None
		# Shared by uploader worker threads; guards session creation and token refresh
		self._lock = threading.RLock()

	def _new_session(self) -> requests.Session:
		s = requests.Session()
		retries = Retry(total=RETRIES, backoff_factor=1, status_forcelist=[502, 503, 504])
		adapter = HTTPAdapter(max_retries=retries)
		s.mount("http://", adapter)
		s.mount("https://", adapter)
		if self.proxy:
			s.proxies = {"http": self.proxy, "https": self.proxy}
		return s

	def _request(self, method: str, url: str, context: str, **kwargs: Any) -> requests.Response:
		kwargs.setdefault("timeout", self.timeout)
		logger.debug("%s %s", method, url.split("?", 1)[0])
		with self._lock:
			if self._session is None:
				self._session = self._new_session()
			session = self._session
		try:
			response = session.request(method, url, **kwargs)
			response.raise_for_status()
		except requests.HTTPError as e:
			status = e.response.status_code if e.response is not None else None
			raise ApiError(f"{context}: HTTP {status}", status_code=status) from e
		except requests.RequestException as e:
			raise ApiError(f"{context}: {e}") from e
		return response

	def _get_auth_token(self) -> Dict[str, str]:
		missing = [k for k in AUTH_REQUEST_FIELDS if k not in self.auth_params]
		if missing:
			raise CredentialsError(f"auth string for {self.email} is missing: {', '.join(missing)}")
		data = {k: self.auth_params[k] for k in AUTH_REQUEST_FIELDS}
		data["app"] = PHOTOS_APP
		data["callerPkg"] = PHOTOS_APP
		headers = {
			"Accept-Encoding": "gzip",
			"app": PHOTOS_APP,
			"Connection": "Keep-Alive",
			"Content-Type": "application/x-www-form-urlencoded",
			"device": data["androidId"],
			"User-Agent": AUTH_USER_AGENT,
		}
		response = self._request("POST", AUTH_URL, "authentication failed", headers=headers, data=data)
		parsed: Dict[str, str] = {}
		for line in response.text.splitlines():
			if "=" in line:
				key, value = line.split("=", 1)
				parsed[key] = value
		expiry = parsed.get("Expiry", "0") or "0"
		if not expiry.isdigit():
			raise CredentialsError(f"auth response has an invalid Expiry: {expiry!r}")
		return parsed

	@property
	def bearer_token(self) -> str:
		with self._lock:
			if int(self._auth_cache.get("Expiry", "0") or 0) <= int(time.time()):
				self._auth_cache = self._get_auth_token()
				logger.debug("Obtained bearer token for %s", self.email)
			token = self._auth_cache.get("Auth", "")
		if not token:
			raise CredentialsError("auth response does not contain a bearer token")
		return token

	def _headers(self, protobuf: bool = True) -> Dict[str, str]:
		headers = {
			"Accept-Encoding": "gzip",
			"Accept-Language": self.language,
			"User-Agent": USER_AGENT,
			"Authorization": f"Bearer {self.bearer_token}",
		}
		if protobuf:
			headers["Content-Type"] = "application/x-protobuf"
			headers["x-goog-ext-173412678-bin"] = "CgcIAhClARgC"
			headers["x-goog-ext-174067345-bin"] = "CgIIAg=="
		return headers

	def _rpc(self, url: str, body: Dict[str, Any], context: str, typedef: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
		response = self._request("POST", url, context, headers=self._headers(), data=encode_proto(body, typedef))
		decoded, _ = decode_response(response.content, context)
		return decoded

	def get_media_list(self, page_token: str = "", limit: int = 0) -> MediaListResult:
		body = {
			"1": {
				"1": {"1": ITEM_FIELD_MASK},
				"4": page_token,
				"7": 2,
				"11": [1, 2],
				"22": {"1": 2},
			},
		}
		result = parse_library_page(self._rpc(LIBRARY_PAGE_URL, body, "media list request failed"))
		if limit > 0:
			result.items = result.items[:limit]
		return result

	def get_download_urls(self, media_key: str) -> DownloadURLs:
		body = {
			"1": {"1": {"1": media_key}},
			"2": {"1": {"7": {"2": {}}}, "5": {"2": {}, "3": {}, "5": {"1": {}, "3": 0}}},
		}
		return parse_download_urls(self._rpc(DOWNLOAD_URLS_URL, body, "download URL request failed"))

	def get_media_info(self, media_key: str, url: str = "") -> MediaInfo:
		"""Read filename, size and type from the download response headers.

		Pass ``url`` when the download URL is already known to skip the lookup.
		"""
		url = url or self.get_download_urls(media_key).preferred()
		if not url:
			raise ApiError(f"no download URL available for {media_key}")
		response = self._request("GET", url, "media info request failed", headers=self._headers(protobuf=False), stream=True)
		with response:
			headers = response.headers
			size = headers.get("Content-Length", "")
			return MediaInfo(
				media_key=media_key,
				filename=filename_from_disposition(headers.get("Content-Disposition", "")),
				size=int(size) if size.isdigit() else 0,
				mime_type=headers.get("Content-Type", "").split(";", 1)[0].strip(),
			)

	def get_thumbnail(self, media_key: str, options: Optional[ThumbnailOptions] = None) -> bytes:
		options = options or ThumbnailOptions()
		url = THUMBNAIL_URL.format(media_key=media_key) + options.url_suffix()
		response = self._request("GET", url, "thumbnail request failed", headers=self._headers(protobuf=False))
		return response.content

	def download_media(self, url: str) -> bytes:
		response = self._request("GET", url, "media download failed", headers=self._headers(protobuf=False))
		return response.content

	def download_file(self, url: str, output_path: Union[str, Path], progress_cb: Optional[ProgressCallback] = None) -> Path:
		output_path = Path(output_path)
		part_path = output_path.with_name(output_path.name + ".part")
		response = self._request("GET", url, "media download failed", headers=self._headers(protobuf=False), stream=True)
		total = int(response.headers.get("Content-Length", 0) or 0)
		done = 0
		if progress_cb:
			progress_cb({"phase": "download", "event": "start", "filename": output_path.name, "bytes_total": total})
		try:
			with response, part_path.open("wb") as fh:
				for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
					if not chunk:
						continue
					fh.write(chunk)
					done += len(chunk)
					if progress_cb:
						progress_cb({"phase": "download", "event": "file_progress", "filename": output_path.name, "bytes_done": done, "bytes_total": total})
			part_path.replace(output_path)
		except (OSError, requests.RequestException) as e:
			part_path.unlink(missing_ok=True)
			raise ApiError(f"media download failed: {e}") from e
		if progress_cb:
			progress_cb({"phase": "download", "event": "file_complete", "filename": output_path.name, "bytes_done": done})
		logger.debug("Wrote %d bytes to %s", done, output_path)
		return output_path

	def find_remote_media_by_hash(self, sha1_hash: bytes) -> Optional[str]:
		body = {"1": {"1": {"1": sha1_hash}, "2": {}}}
		decoded = self._rpc(FIND_BY_HASH_URL, body, "hash lookup failed")
		return _text(_dig(decoded, "1", "2", "2", "1")) or None

	def get_upload_token(self, sha1_b64: str, file_size: int) -> str:
		headers = self._headers()
		headers["X-Goog-Hash"] = f"sha1={sha1_b64}"
		headers["X-Upload-Content-Length"] = str(file_size)
		body = {"1": 2, "2": 2, "3": 1, "4": 3, "7": file_size}
		response = self._request("POST", UPLOAD_URL, "upload token request failed", headers=headers, data=encode_proto(body))
		token = response.headers.get("X-GUploader-UploadID", "")
		if not token:
			raise ApiError("upload token request failed: no upload id in response")
		return token

	def upload_file(self, file: Union[IO[bytes], bytes], upload_token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
		"""Send the file bytes; returns the decoded response and its typedef for the commit."""
		response = self._request(
			"PUT",
			f"{UPLOAD_URL}?upload_id={upload_token}",
			"file upload failed",
			headers=self._headers(protobuf=False),
			data=file,
		)
		return decode_response(response.content, "file upload failed")

	def commit_upload(
		self,
		upload_response: Tuple[Dict[str, Any], Dict[str, Any]],
		file_name: str,
		sha1_hash: bytes,
		upload_timestamp: Optional[int] = None,
		quality: str = "original",
	) -> str:
		decoded, upload_typedef = upload_response
		quality_map = {"saver": 1, "original": 3}
		body = {
			"1": {
				"1": decoded,
				"2": file_name,
				"3": sha1_hash,
				"4": {"1": upload_timestamp or int(time.time()), "2": 46000000},
				"7": quality_map[quality],
				"8": {"1": ITEM_FIELD_MASK},
				"10": 1,
				"17": 0,
			},
			"2": {"3": DEVICE_MODEL, "4": DEVICE_MAKE, "5": ANDROID_API_VERSION},
			"3": bytes([1, 3]),
		}
		typedef = _infer_typedef(body)
		typedef["1"]["message_typedef"]["1"] = {"type": "message", "message_typedef": upload_typedef, "name": ""}
		result = self._rpc(COMMIT_UPLOAD_URL, body, "upload commit failed", typedef=typedef)
		media_key = _text(_dig(result, "1", "3", "1"))
		if not media_key:
			raise UploadRejected(f"upload of {file_name} rejected by api")
		return media_key


def new_api(config: Config) -> Api:
	if config.selected:
		auth_data = find_credential(config.credentials, config.selected)
		if auth_data is None:
			raise CredentialsError(f"selected credential {config.selected} not found")
	else:
		valid = list(iter_valid_credentials(config.credentials))
		if not valid:
			raise CredentialsError("no credentials found, add one with 'gotohp creds add <auth-string>'")
		auth_data = valid[0][1]
	return Api(auth_data, proxy=config.proxy, language=config.language, timeout=config.timeout)
