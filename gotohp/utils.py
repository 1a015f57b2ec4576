from __future__ import annotations

import re


def format_bytes(num_bytes: int) -> str:
	units = ["B", "KB", "MB", "GB", "TB"]
	size = float(num_bytes)
	unit_idx = 0
	while size >= 1024.0 and unit_idx < len(units) - 1:
		size /= 1024.0
		unit_idx += 1
	if unit_idx == 0:
		return f"{int(size)} {units[unit_idx]}"
	return f"{size:.2f} {units[unit_idx]}"


def format_duration(seconds: float) -> str:
	seconds = max(0.0, float(seconds))
	mins, secs = divmod(int(seconds), 60)
	hours, mins = divmod(mins, 60)
	if hours:
		return f"{hours}h {mins}m {secs}s"
	if mins:
		return f"{mins}m {secs}s"
	return f"{secs}s"


# Path separators and characters rejected by common filesystems
_ILLEGAL_FILENAME_CHARS = re.compile(r'[\/\\:*?"<>|\0]')


def sanitize_filename(name: str) -> str:
	cleaned = _ILLEGAL_FILENAME_CHARS.sub("_", name).strip()
	if cleaned in (".", ".."):
		return ""
	return cleaned
