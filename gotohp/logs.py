from __future__ import annotations

import logging
from typing import Dict

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVELS: Dict[str, int] = {
	"debug": logging.DEBUG,
	"info": logging.INFO,
	"warn": logging.WARNING,
	"warning": logging.WARNING,
	"error": logging.ERROR,
}

_HANDLER_NAME = "gotohp-rich"


def setup_logging(level: str = "warning") -> logging.Logger:
	"""Route the package logger to stderr through rich.

	Calling it again only changes the level; handlers are never stacked.
	"""
	try:
		numeric = LOG_LEVELS[level.lower()]
	except KeyError:
		raise ValueError(f"invalid log level '{level}' (expected one of: debug, info, warn, error)") from None

	logger = logging.getLogger("gotohp")
	logger.setLevel(numeric)
	if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
		handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=False)
		handler.set_name(_HANDLER_NAME)
		handler.setFormatter(logging.Formatter("%(message)s"))
		logger.addHandler(handler)
		logger.propagate = False
	return logger
