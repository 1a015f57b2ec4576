import json

import pytest

from conftest import AUTH_RESPONSE, FakeResponse, FakeSession, make_auth
from gotohp import cli
from gotohp.api import AUTH_URL, DOWNLOAD_URLS_URL, Api, DownloadURLs
from gotohp.branding import APP_VERSION
from gotohp.exceptions import CredentialsError


def run(capsys, *argv):
	code = cli.main(list(argv))
	out, err = capsys.readouterr()
	return code, out, err


@pytest.fixture
def patched_api(monkeypatch, fake_api, tmp_path):
	monkeypatch.setattr("gotohp.cli.new_api", lambda cfg: fake_api)
	monkeypatch.chdir(tmp_path)
	return fake_api


def test_no_arguments_prints_help(capsys):
	code, out, _ = run(capsys)
	assert code == 1
	assert "usage: gotohp" in out


def test_unknown_command(capsys):
	code, out, err = run(capsys, "frobnicate")
	assert code == 1
	assert "Error:" in err
	assert "usage: gotohp" in out


@pytest.mark.parametrize("argv", [["help"], ["-h"], ["--help"]])
def test_help(capsys, argv):
	code, out, _ = run(capsys, *argv)
	assert code == 0
	assert "upload" in out and "credentials" in out


@pytest.mark.parametrize("argv", [["version"], ["-v"], ["--version"]])
def test_version(capsys, argv):
	code, out, _ = run(capsys, *argv)
	assert code == 0
	assert f"gotohp v{APP_VERSION}" in out


def test_missing_positional_is_error(capsys):
	code, _, err = run(capsys, "download")
	assert code == 1
	assert "Error:" in err


def test_unknown_creds_subcommand(capsys):
	code, out, err = run(capsys, "creds", "frob")
	assert code == 1
	assert "Error:" in err
	assert "usage:" in out


def test_creds_flow(capsys, tmp_path):
	cfg = str(tmp_path / "custom.json")

	code, out, _ = run(capsys, "creds", "list", "-c", cfg)
	assert code == 0
	assert "No credentials found" in out

	for email in ("alice@gmail.com", "alice.work@corp.com", "bob@gmail.com"):
		code, out, _ = run(capsys, "creds", "add", make_auth(email), "-c", cfg)
		assert code == 0
		assert "Credentials added successfully" in out

	code, out, _ = run(capsys, "credentials", "ls", "-c", cfg)
	assert "* bob@gmail.com" in out
	assert "  alice@gmail.com" in out
	assert "* = active" in out

	code, out, _ = run(capsys, "creds", "set", "BOB", "-c", cfg)
	assert code == 0
	assert "Active credential set to bob@gmail.com" in out

	code, _, err = run(capsys, "creds", "select", "alice", "-c", cfg)
	assert code == 1
	assert "multiple credentials match 'alice':" in err
	assert "  - alice@gmail.com" in err
	assert "  - alice.work@corp.com" in err
	assert "Please be more specific" in err

	code, out, _ = run(capsys, "creds", "set", "alice@gmail.com", "-c", cfg)
	assert code == 0
	assert json.loads((tmp_path / "custom.json").read_text())["selected"] == "alice@gmail.com"

	code, _, err = run(capsys, "creds", "set", "carol", "-c", cfg)
	assert code == 1
	assert "no credentials found matching 'carol'" in err

	code, out, _ = run(capsys, "creds", "rm", "alice@gmail.com", "-c", cfg)
	assert code == 0
	assert "Credentials for alice@gmail.com removed successfully" in out
	assert json.loads((tmp_path / "custom.json").read_text())["selected"] == "alice.work@corp.com"


def test_creds_add_invalid_and_duplicate(capsys, write_config):
	write_config([make_auth("alice@gmail.com")], selected="alice@gmail.com")
	code, _, err = run(capsys, "creds", "add", "Token=abc")
	assert code == 1
	assert "Error: adding credentials:" in err

	code, _, err = run(capsys, "creds", "add", make_auth("alice@gmail.com"))
	assert code == 1
	assert "already exist" in err


def test_creds_list_marks_invalid_entries(capsys, write_config):
	write_config(["garbage", make_auth("alice@gmail.com")])
	code, out, _ = run(capsys, "creds", "list")
	assert code == 0
	assert "1. [Invalid credential]" in out
	assert "* = active" not in out


def test_creds_remove_unknown(capsys):
	code, _, err = run(capsys, "creds", "remove", "nobody@gmail.com")
	assert code == 1
	assert "Error: removing credentials:" in err


def test_download_writes_media_key_file(capsys, patched_api, tmp_path):
	code, out, _ = run(capsys, "download", "AF1Qip_one")
	assert code == 0
	assert (tmp_path / "AF1Qip_one").read_bytes() == patched_api.payload
	assert f"Downloaded {len(patched_api.payload)} bytes" in out
	assert ("download_media", "https://dl.example/original") in patched_api.calls


def test_download_edited_to_output(capsys, patched_api, tmp_path):
	code, _, _ = run(capsys, "download", "AF1Qip_one", "--edited", "-o", "out/photo.jpg")
	assert code == 0
	assert (tmp_path / "out" / "photo.jpg").exists()
	assert ("download_media", "https://dl.example/edited") in patched_api.calls


def test_download_without_urls(capsys, patched_api):
	patched_api.urls = DownloadURLs()
	code, _, err = run(capsys, "download", "AF1Qip_one")
	assert code == 1
	assert "Error: no download URL available" in err


def test_download_api_failure(capsys, patched_api):
	patched_api.fail_on = "get_download_urls"
	code, _, err = run(capsys, "download", "AF1Qip_one")
	assert code == 1
	assert "Error: getting download URLs: get_download_urls exploded" in err


def test_get_urls(capsys, patched_api):
	patched_api.urls = DownloadURLs(original_url="https://dl.example/o", edited_url="")
	code, out, _ = run(capsys, "get-urls", "AF1Qip_one")
	assert code == 0
	assert "Original: https://dl.example/o" in out
	assert "Edited:   (not available)" in out


def test_thumbnail(capsys, patched_api, tmp_path):
	code, out, _ = run(capsys, "thumbnail", "AF1Qip_one", "-w", "300", "--height", "200", "--no-overlay")
	assert code == 0
	assert (tmp_path / "AF1Qip_one.jpg").read_bytes() == patched_api.thumbnail
	_, (_, options) = patched_api.calls[0]
	assert (options.width, options.height, options.force_jpeg, options.no_overlay) == (300, 200, True, True)
	assert "Downloaded thumbnail" in out


def test_thumbnail_rejects_bad_width(capsys, patched_api):
	code, _, err = run(capsys, "thumbnail", "AF1Qip_one", "-w", "wide")
	assert code == 1
	assert "invalid pixel value" in err


def test_api_client_errors_are_reported(capsys, monkeypatch):
	def boom(cfg):
		raise CredentialsError("no credentials found")
	monkeypatch.setattr("gotohp.cli.new_api", boom)
	code, _, err = run(capsys, "get-urls", "AF1Qip_one")
	assert code == 1
	assert "Error: creating API client: no credentials found" in err


def test_upload_missing_path(capsys, tmp_path):
	code, _, err = run(capsys, "upload", str(tmp_path / "nope"))
	assert code == 1
	assert "file or directory does not exist" in err


def test_upload_directory(capsys, patched_api, tmp_path):
	media = tmp_path / "media"
	media.mkdir()
	(media / "a.jpg").write_bytes(b"photo")
	(media / "skip.txt").write_text("x")
	code, out, _ = run(capsys, "upload", str(media), "-t", "1", "-l", "error")
	assert code == 0
	assert "Uploaded 1, already present 0, failed 0" in out
	assert patched_api.committed == ["a.jpg"]


def test_upload_failure_exits_nonzero(capsys, patched_api, tmp_path):
	photo = tmp_path / "a.jpg"
	photo.write_bytes(b"photo")
	patched_api.fail_on = "upload_file"
	code, _, err = run(capsys, "upload", str(photo), "-l", "error")
	assert code == 1
	assert "Error: upload failed: 1 of 1 file(s) failed" in err


def test_upload_rejects_zero_threads(capsys, tmp_path):
	code, _, err = run(capsys, "upload", str(tmp_path), "-t", "0")
	assert code == 1
	assert "must be at least 1" in err


def test_undecodable_api_response_is_reported(capsys, monkeypatch, write_config):
	write_config([make_auth("alice@gmail.com")], selected="alice@gmail.com")
	session = FakeSession({AUTH_URL: AUTH_RESPONSE, DOWNLOAD_URLS_URL: FakeResponse(content=b"<html>not protobuf\xff")})
	monkeypatch.setattr(Api, "_new_session", lambda self: session)
	code, _, err = run(capsys, "get-urls", "AF1Qip_one")
	assert code == 1
	assert "Error: getting download URLs: download URL request failed: invalid response" in err


def test_invalid_utf8_config_is_reported(capsys, config_path):
	config_path.write_bytes(b'{"credentials": ["\xff\xfe"]}')
	code, _, err = run(capsys, "creds", "list")
	assert code == 1
	assert "Error: loading config:" in err
