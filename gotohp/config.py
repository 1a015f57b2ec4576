from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .credentials import credential_email, iter_valid_credentials
from .exceptions import ConfigError, CredentialsError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GOTOHP_CONFIG"
DEFAULT_TIMEOUT = 60


def default_config_path() -> Path:
	return Path.home() / ".config" / "gotohp" / "config.json"


def resolve_config_path(override: Optional[str] = None) -> Path:
	if override:
		return Path(override).expanduser()
	env_path = os.environ.get(CONFIG_ENV_VAR)
	if env_path:
		return Path(env_path).expanduser()
	return default_config_path()


@dataclass
class Config:
	credentials: List[str] = field(default_factory=list)
	selected: str = ""
	proxy: str = ""
	language: str = ""
	timeout: int = DEFAULT_TIMEOUT

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Config":
		known = {f.name for f in fields(cls)}
		unknown = sorted(set(data) - known)
		if unknown:
			logger.debug("Ignoring unknown config keys: %s", ", ".join(unknown))
		cfg = cls(**{k: v for k, v in data.items() if k in known})
		if not isinstance(cfg.credentials, list) or not all(isinstance(c, str) for c in cfg.credentials):
			raise ConfigError("'credentials' must be a list of strings")
		cfg.credentials = list(cfg.credentials)
		try:
			cfg.timeout = int(cfg.timeout)
		except (TypeError, ValueError) as e:
			raise ConfigError(f"'timeout' must be an integer: {e}") from e
		cfg.selected = str(cfg.selected or "")
		cfg.proxy = str(cfg.proxy or "")
		cfg.language = str(cfg.language or "")
		return cfg

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


class ConfigManager:
	def __init__(self, path: Optional[Path] = None) -> None:
		self.path = Path(path) if path is not None else resolve_config_path()
		self._config: Optional[Config] = None

	def load(self) -> Config:
		if not self.path.exists():
			logger.debug("Config %s not found, starting empty", self.path)
			self._config = Config()
			return self._config
		try:
			data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
		except (OSError, ValueError) as e:
			raise ConfigError(f"cannot read {self.path}: {e}") from e
		if not isinstance(data, dict):
			raise ConfigError(f"{self.path} must contain a JSON object")
		self._config = Config.from_dict(data)
		logger.debug("Loaded %d credential(s) from %s", len(self._config.credentials), self.path)
		return self._config

	def get_config(self) -> Config:
		if self._config is None:
			return self.load()
		return self._config

	def save(self) -> None:
		cfg = self.get_config()
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			self.path.write_text(json.dumps(cfg.to_dict(), indent=2), encoding="utf-8")
		except OSError as e:
			raise ConfigError(f"cannot write {self.path}: {e}") from e

	def add_credentials(self, auth_string: str) -> str:
		auth_string = auth_string.strip()
		email = credential_email(auth_string)
		cfg = self.get_config()
		for existing, _ in iter_valid_credentials(cfg.credentials):
			if existing == email:
				raise CredentialsError(f"credentials for {email} already exist")
		cfg.credentials.append(auth_string)
		cfg.selected = email
		self.save()
		logger.info("Added credentials for %s", email)
		return email

	def remove_credentials(self, email: str) -> None:
		cfg = self.get_config()
		kept: List[str] = []
		removed = False
		for cred in cfg.credentials:
			try:
				cred_email = credential_email(cred)
			except CredentialsError:
				kept.append(cred)
				continue
			if cred_email == email:
				removed = True
				continue
			kept.append(cred)
		if not removed:
			raise CredentialsError(f"no credentials found for {email}")
		cfg.credentials = kept
		if cfg.selected == email:
			remaining = [e for e, _ in iter_valid_credentials(kept)]
			cfg.selected = remaining[0] if remaining else ""
		self.save()
		logger.info("Removed credentials for %s", email)

	def set_selected(self, email: str) -> None:
		cfg = self.get_config()
		cfg.selected = email
		self.save()
