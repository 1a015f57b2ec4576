from __future__ import annotations

import argparse
import time
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence

import requests
from rich.console import Console
from rich.markup import escape

from .api import Api, ThumbnailOptions, new_api
from .branding import APP_NAME, APP_VERSION
from .config import ConfigManager, resolve_config_path
from .credentials import credential_email, match_email
from .exceptions import AmbiguousCredentialError, CredentialsError, GotohpError
from .logs import setup_logging
from .uploader import DEFAULT_THREADS, Uploader, collect_files
from .utils import format_bytes, format_duration

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)

# Failures a command reports instead of crashing on
COMMAND_ERRORS = (GotohpError, requests.RequestException, OSError)

LOG_LEVEL_CHOICES = ["debug", "info", "warn", "error"]


class CliParser(argparse.ArgumentParser):
	"""ArgumentParser that reports usage errors with exit code 1 and the full help."""

	def error(self, message: str) -> None:  # type: ignore[override]
		err_console.print(f"Error: {message}", markup=False)
		console.print()
		self.print_help()
		self.exit(1)


def _fail(context: str, err: object) -> int:
	err_console.print(f"Error: {context}: {err}", markup=False)
	return 1


def _positive_int(value: str) -> int:
	try:
		n = int(value)
	except ValueError:
		raise argparse.ArgumentTypeError(f"invalid number '{value}'") from None
	if n < 1:
		raise argparse.ArgumentTypeError(f"must be at least 1, got {n}")
	return n


def _dimension(value: str) -> int:
	try:
		n = int(value)
	except ValueError:
		raise argparse.ArgumentTypeError(f"invalid pixel value '{value}'") from None
	if n < 0:
		raise argparse.ArgumentTypeError(f"must not be negative, got {n}")
	return n


def _config_manager(args: argparse.Namespace) -> ConfigManager:
	manager = ConfigManager(resolve_config_path(getattr(args, "config", None)))
	manager.load()
	return manager


def _open_api(args: argparse.Namespace) -> Api:
	"""Load config and build an Api client; raises a wrapped GotohpError on failure."""
	try:
		manager = _config_manager(args)
	except GotohpError as e:
		raise GotohpError(f"loading config: {e}") from e
	try:
		return new_api(manager.get_config())
	except GotohpError as e:
		raise GotohpError(f"creating API client: {e}") from e


def _write_output(path: str, data: bytes) -> None:
	out = Path(path)
	if out.parent != Path("."):
		out.parent.mkdir(parents=True, exist_ok=True)
	out.write_bytes(data)


def cmd_upload(args: argparse.Namespace) -> int:
	target = Path(args.filepath)
	if not target.exists():
		err_console.print(f"Error: file or directory does not exist: {target}", markup=False)
		return 1
	setup_logging(args.log_level)

	try:
		api = _open_api(args)
	except GotohpError as e:
		err_console.print(f"Error: {e}", markup=False)
		return 1

	try:
		files = collect_files(target, recursive=args.recursive, disable_filter=args.disable_filter)
	except GotohpError as e:
		return _fail("upload failed", e)

	started = time.monotonic()
	result = Uploader(api).upload(files, threads=args.threads, force=args.force, delete=args.delete)
	elapsed = time.monotonic() - started

	for path, media_key in sorted(result.uploaded.items()):
		console.print(f"[green]✓[/] {escape(path)} -> {escape(media_key)}")
	for path, media_key in sorted(result.existing.items()):
		console.print(f"[yellow]=[/] {escape(path)} already in library ({escape(media_key)})")
	for path, error in sorted(result.failed.items()):
		err_console.print(f"✗ {path}: {error}", markup=False)

	console.print(
		f"Uploaded {len(result.uploaded)}, already present {len(result.existing)}, "
		f"failed {len(result.failed)} in {format_duration(elapsed)}"
	)
	if not result.ok:
		return _fail("upload failed", f"{len(result.failed)} of {result.total} file(s) failed")
	return 0


def cmd_download(args: argparse.Namespace) -> int:
	try:
		api = _open_api(args)
	except GotohpError as e:
		err_console.print(f"Error: {e}", markup=False)
		return 1

	try:
		urls = api.get_download_urls(args.media_key)
	except COMMAND_ERRORS as e:
		return _fail("getting download URLs", e)

	url = urls.preferred(use_original=args.use_original)
	if not url:
		err_console.print("Error: no download URL available", markup=False)
		return 1

	try:
		data = api.download_media(url)
	except COMMAND_ERRORS as e:
		return _fail("downloading media", e)

	output = args.output or args.media_key
	try:
		_write_output(output, data)
	except OSError as e:
		return _fail("writing file", e)

	console.print(f"[green]✓[/] Downloaded {len(data)} bytes ({format_bytes(len(data))}) to {escape(output)}")
	return 0


def cmd_get_urls(args: argparse.Namespace) -> int:
	try:
		api = _open_api(args)
	except GotohpError as e:
		err_console.print(f"Error: {e}", markup=False)
		return 1

	try:
		urls = api.get_download_urls(args.media_key)
	except COMMAND_ERRORS as e:
		return _fail("getting download URLs", e)

	console.print("Download URLs:")
	console.print(f"  Original: {urls.original_url or '(not available)'}", markup=False)
	console.print(f"  Edited:   {urls.edited_url or '(not available)'}", markup=False)
	return 0


def cmd_thumbnail(args: argparse.Namespace) -> int:
	try:
		api = _open_api(args)
	except GotohpError as e:
		err_console.print(f"Error: {e}", markup=False)
		return 1

	options = ThumbnailOptions(
		width=args.width,
		height=args.height,
		force_jpeg=True,
		no_overlay=args.no_overlay,
	)
	try:
		data = api.get_thumbnail(args.media_key, options)
	except COMMAND_ERRORS as e:
		return _fail("getting thumbnail", e)

	output = args.output or f"{args.media_key}.jpg"
	try:
		_write_output(output, data)
	except OSError as e:
		return _fail("writing file", e)

	console.print(f"[green]✓[/] Downloaded thumbnail ({len(data)} bytes) to {escape(output)}")
	return 0


def cmd_creds_add(args: argparse.Namespace) -> int:
	try:
		manager = _config_manager(args)
	except GotohpError as e:
		return _fail("loading config", e)
	try:
		manager.add_credentials(args.auth_string)
	except GotohpError as e:
		return _fail("adding credentials", e)
	console.print("[green]✓[/] Credentials added successfully")
	return 0


def cmd_creds_remove(args: argparse.Namespace) -> int:
	try:
		manager = _config_manager(args)
	except GotohpError as e:
		return _fail("loading config", e)
	try:
		manager.remove_credentials(args.email)
	except GotohpError as e:
		return _fail("removing credentials", e)
	console.print(f"[green]✓[/] Credentials for {escape(args.email)} removed successfully")
	return 0


def cmd_creds_list(args: argparse.Namespace) -> int:
	try:
		config = _config_manager(args).get_config()
	except GotohpError as e:
		return _fail("loading config", e)

	if not config.credentials:
		console.print("No credentials found")
		return 0

	console.print("Credentials:")
	for i, cred in enumerate(config.credentials, start=1):
		try:
			email = credential_email(cred)
		except CredentialsError:
			console.print(f"  {i}. [Invalid credential]", markup=False)
			continue
		marker = "*" if email == config.selected else " "
		console.print(f"  {marker} {email}", markup=False)
	if config.selected:
		console.print("\n* = active", markup=False)
	console.print(f"\nUse '{APP_NAME} creds set <email>' to change active account (supports partial matching)", markup=False)
	return 0


def cmd_creds_set(args: argparse.Namespace) -> int:
	try:
		manager = _config_manager(args)
	except GotohpError as e:
		return _fail("loading config", e)

	try:
		email = match_email(manager.get_config().credentials, args.query)
	except AmbiguousCredentialError as e:
		err_console.print(f"Error: {e}:", markup=False)
		for candidate in e.candidates:
			err_console.print(f"  - {candidate}", markup=False)
		err_console.print("Please be more specific", markup=False)
		return 1
	except CredentialsError as e:
		err_console.print(f"Error: {e}", markup=False)
		return 1

	try:
		manager.set_selected(email)
	except GotohpError as e:
		return _fail("saving config", e)
	console.print(f"[green]✓[/] Active credential set to {escape(email)}")
	return 0


def cmd_help(parser: argparse.ArgumentParser, args: argparse.Namespace) -> int:
	parser.print_help()
	return 0


def cmd_version(args: argparse.Namespace) -> int:
	console.print(f"{APP_NAME} v{APP_VERSION}", markup=False)
	return 0


def build_parser() -> CliParser:
	parser = CliParser(
		prog=APP_NAME,
		description=f"{APP_NAME} - Google Photos unofficial client",
		epilog=f"Run '{APP_NAME} <command> --help' for more information on a command",
	)
	parser.add_argument("-v", "--version", action="version", version=f"{APP_NAME} v{APP_VERSION}")

	config_opt = argparse.ArgumentParser(add_help=False)
	config_opt.add_argument("-c", "--config", metavar="PATH", default=argparse.SUPPRESS, help="Path to config file")

	sub = parser.add_subparsers(dest="cmd", metavar="<command>")

	up = sub.add_parser("upload", parents=[config_opt], help="Upload a file to Google Photos")
	up.add_argument("filepath", help="File or directory to upload")
	up.add_argument("-r", "--recursive", action="store_true", help="Include subdirectories")
	up.add_argument("-t", "--threads", type=_positive_int, default=DEFAULT_THREADS, metavar="N", help=f"Number of upload threads (default: {DEFAULT_THREADS})")
	up.add_argument("-f", "--force", action="store_true", help="Force upload even if file exists")
	up.add_argument("-d", "--delete", action="store_true", help="Delete from host after upload")
	up.add_argument("-df", "--disable-filter", action="store_true", help="Disable file type filtering")
	up.add_argument("-l", "--log-level", choices=LOG_LEVEL_CHOICES, default="info", metavar="LEVEL", help="Set log level: debug, info, warn, error (default: info)")
	up.set_defaults(func=cmd_upload)

	dl = sub.add_parser("download", parents=[config_opt], help="Download a media file by its key")
	dl.add_argument("media_key", metavar="media-key")
	dl.add_argument("-o", "--output", metavar="PATH", help="Output file path (default: <media-key> in current directory)")
	version_group = dl.add_mutually_exclusive_group()
	version_group.add_argument("--original", dest="use_original", action="store_true", default=True, help="Download original file (default)")
	version_group.add_argument("--edited", dest="use_original", action="store_false", help="Download edited version (if available)")
	dl.set_defaults(func=cmd_download)

	gu = sub.add_parser("get-urls", parents=[config_opt], help="Get download URLs for a media item")
	gu.add_argument("media_key", metavar="media-key")
	gu.set_defaults(func=cmd_get_urls)

	th = sub.add_parser("thumbnail", parents=[config_opt], help="Download a thumbnail for a media item")
	th.add_argument("media_key", metavar="media-key")
	th.add_argument("-o", "--output", metavar="PATH", help="Output file path (default: <media-key>.jpg)")
	th.add_argument("-w", "--width", type=_dimension, default=0, metavar="PIXELS", help="Thumbnail width")
	th.add_argument("--height", type=_dimension, default=0, metavar="PIXELS", help="Thumbnail height")
	th.add_argument("--no-overlay", action="store_true", help="Remove overlay (e.g., play button for videos)")
	th.set_defaults(func=cmd_thumbnail)

	cr = sub.add_parser("credentials", aliases=["creds"], parents=[config_opt], help="Manage Google Photos credentials")
	cr_sub = cr.add_subparsers(dest="creds_cmd", metavar="<subcommand>", required=True)

	cr_add = cr_sub.add_parser("add", parents=[config_opt], help="Add a new credential")
	cr_add.add_argument("auth_string", metavar="auth-string")
	cr_add.set_defaults(func=cmd_creds_add)

	cr_rm = cr_sub.add_parser("remove", aliases=["rm"], parents=[config_opt], help="Remove a credential by email")
	cr_rm.add_argument("email")
	cr_rm.set_defaults(func=cmd_creds_remove)

	cr_ls = cr_sub.add_parser("list", aliases=["ls"], parents=[config_opt], help="List all credentials")
	cr_ls.set_defaults(func=cmd_creds_list)

	cr_set = cr_sub.add_parser("set", aliases=["select"], parents=[config_opt], help="Set active credential (supports partial matching)")
	cr_set.add_argument("query", metavar="email")
	cr_set.set_defaults(func=cmd_creds_set)

	hp = sub.add_parser("help", help="Show this help message")
	hp.set_defaults(func=partial(cmd_help, parser))

	vp = sub.add_parser("version", help="Show version information")
	vp.set_defaults(func=cmd_version)

	return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
	parser = build_parser()
	argv_list: Optional[List[str]] = list(argv) if argv is not None else None
	try:
		args = parser.parse_args(argv_list)
	except SystemExit as e:
		return e.code if isinstance(e.code, int) else 1

	if getattr(args, "func", None) is None:
		parser.print_help()
		return 1

	setup_logging("warning")
	return args.func(args)


if __name__ == "__main__":
	raise SystemExit(main())
