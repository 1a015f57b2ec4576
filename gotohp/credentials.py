from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs

from .exceptions import AmbiguousCredentialError, CredentialsError


def parse_auth_string(auth_string: str) -> Dict[str, str]:
	"""Decode an Android auth string (``androidId=...&Email=...&Token=...``).

	Repeated keys keep their first value. A credential without an ``Email``
	is rejected, since everything downstream is keyed by it.
	"""
	auth_string = (auth_string or "").strip()
	if not auth_string:
		raise CredentialsError("auth string is empty")
	try:
		parsed = parse_qs(auth_string, keep_blank_values=True, strict_parsing=True)
	except ValueError as e:
		raise CredentialsError(f"malformed auth string: {e}") from e
	params = {k: v[0] for k, v in parsed.items()}
	if not params.get("Email", "").strip():
		raise CredentialsError("auth string has no Email parameter")
	return params


def credential_email(auth_string: str) -> str:
	return parse_auth_string(auth_string)["Email"]


def iter_valid_credentials(credentials: Iterable[str]) -> Iterable[Tuple[str, str]]:
	"""Yield ``(email, auth_string)`` for every credential that parses."""
	for cred in credentials:
		try:
			yield credential_email(cred), cred
		except CredentialsError:
			continue


def find_credential(credentials: Iterable[str], email: str) -> Optional[str]:
	for cred_email, cred in iter_valid_credentials(credentials):
		if cred_email == email:
			return cred
	return None


def match_email(credentials: Iterable[str], query: str) -> str:
	"""Resolve ``query`` to exactly one stored email.

	An exact match wins outright. Otherwise the query is matched as a
	case-insensitive substring and must hit exactly one email.
	"""
	emails: List[str] = [email for email, _ in iter_valid_credentials(credentials)]
	if query in emails:
		return query

	needle = query.lower()
	candidates = [email for email in emails if needle in email.lower()]
	if not candidates:
		raise CredentialsError(f"no credentials found matching '{query}'")
	if len(candidates) > 1:
		raise AmbiguousCredentialError(query, candidates)
	return candidates[0]
