from __future__ import annotations

from typing import List, Optional


class GotohpError(Exception):
	pass


class ConfigError(GotohpError):
	pass


class CredentialsError(GotohpError):
	pass


class ApiError(GotohpError):
	def __init__(self, message: str, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code


class UploadError(GotohpError):
	pass


class UploadRejected(ApiError):
	pass


class AmbiguousCredentialError(CredentialsError):
	def __init__(self, query: str, candidates: List[str]) -> None:
		super().__init__(f"multiple credentials match '{query}'")
		self.query = query
		self.candidates = candidates
