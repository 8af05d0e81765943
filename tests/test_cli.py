"""Tests for the ternity-auth command line."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import json

from io import StringIO
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from ternity_auth.auth.secure_storage import UnavailableSecureStorage
from ternity_auth.auth.session import SessionManager
from ternity_auth.auth.token_store import TokenStore
from ternity_auth.cli import main
from ternity_auth.config import get_settings
from ternity_auth.document import SettingsDocument
from ternity_auth.types import ApiResponse, AuthUser, SignInResult, SignOutResult
from tests.conftest import make_tokens


if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture()
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point the CLI at a temp data dir with plaintext token storage."""
    path = tmp_path / "data"
    monkeypatch.setenv("TERNITY_AUTH__CONFIG_DIR", str(path))
    with patch(
        "ternity_auth.auth.session.KeyringSecureStorage",
        return_value=UnavailableSecureStorage(),
    ):
        yield path


def _store(data_dir: Path, env_id: str, **overrides) -> None:
    store = TokenStore(SettingsDocument(data_dir / "config.json"), UnavailableSecureStorage())
    asyncio.run(store.store(env_id, make_tokens(**overrides)))


def _run(*argv: str) -> tuple[int, str, str]:
    with (
        patch("sys.stdout", new_callable=StringIO) as out,
        patch("sys.stderr", new_callable=StringIO) as err,
    ):
        code = main(list(argv))
    return code, out.getvalue(), err.getvalue()


class TestMain:
    """Tests for argument handling."""

    def test_no_args_prints_help(self) -> None:
        code, out, _ = _run()
        assert code == 0
        assert "sign-in" in out
        assert "status" in out

    def test_config_show(self, data_dir: Path) -> None:
        code, out, _ = _run("config", "--show")
        assert code == 0
        assert "Ternity Auth Configuration" in out
        assert "config_dir" in out

    def test_unknown_environment(self, data_dir: Path) -> None:
        code, _, err = _run("status", "staging")
        assert code == 2
        assert "Unknown environment: staging" in err


class TestStatusAndToken:
    """Tests for the read-only commands."""

    def test_status_signed_out(self, data_dir: Path) -> None:
        code, out, _ = _run("status", "dev")
        assert code == 1
        assert out.strip() == "dev: not signed in"

    def test_status_signed_in(self, data_dir: Path) -> None:
        _store(data_dir, "dev", user=AuthUser(sub="u-1", name="Ada", email="ada@example.com"))
        code, out, _ = _run("status", "dev")
        assert code == 0
        assert "dev: signed in as Ada" in out
        assert "ada@example.com" in out

    def test_selected_environment_default(self, data_dir: Path) -> None:
        """Without an argument the last selected environment is used."""
        SettingsDocument(data_dir / "config.json").set_selected_environment("local")
        _, out, _ = _run("status")
        assert out.startswith("local:")

    def test_token(self, data_dir: Path) -> None:
        _store(data_dir, "prod", access_token="prod-token")
        code, out, _ = _run("token", "prod")
        assert code == 0
        assert out.strip() == "prod-token"

    def test_token_missing(self, data_dir: Path) -> None:
        code, out, err = _run("token", "prod")
        assert code == 1
        assert out == ""
        assert "ternity-auth sign-in prod" in err


class TestSignInOut:
    """Tests for the interactive commands."""

    def test_sign_in_success(self, data_dir: Path) -> None:
        """A successful sign-in remembers the environment."""
        result = SignInResult(success=True, user=AuthUser(sub="u-1", name="Ada"))
        with patch.object(SessionManager, "sign_in", new=AsyncMock(return_value=result)):
            code, out, _ = _run("sign-in", "dev")
        assert code == 0
        assert "Signed in to dev as Ada" in out
        assert SettingsDocument(data_dir / "config.json").get_selected_environment() == "dev"

    def test_sign_in_failure(self, data_dir: Path) -> None:
        result = SignInResult(success=False, error="Sign-in timed out")
        with patch.object(SessionManager, "sign_in", new=AsyncMock(return_value=result)):
            code, _, err = _run("sign-in", "dev")
        assert code == 1
        assert "Sign-in timed out" in err
        assert SettingsDocument(data_dir / "config.json").get_selected_environment() is None

    def test_sign_out_no_browser(self, data_dir: Path) -> None:
        result = SignOutResult(sign_out_page_url="http://127.0.0.1:21987/signed-out")
        with (
            patch.object(SessionManager, "sign_out", new=AsyncMock(return_value=result)),
            patch("webbrowser.open") as open_mock,
        ):
            code, out, _ = _run("sign-out", "dev", "--no-browser")
        assert code == 0
        assert "http://127.0.0.1:21987/signed-out" in out
        open_mock.assert_not_called()

    def test_verbose_enables_debug(self, data_dir: Path) -> None:
        with patch("ternity_auth.cli.enable_debug") as debug_mock:
            _run("-v", "status", "dev")
        debug_mock.assert_called_once()
        assert get_settings().auth.config_dir == data_dir



class TestApi:
    """Tests for the api command."""

    def test_without_session(self, data_dir: Path) -> None:
        code, out, err = _run("api", "/api/projects", "--env", "dev")
        assert code == 1
        assert out == ""
        assert "Request failed (401): No access token" in err

    def test_prints_json(self, data_dir: Path) -> None:
        """Response data is printed as JSON; the body is passed through."""
        mock = AsyncMock(return_value=ApiResponse(status=200, data={"projects": ["a"]}))
        with patch.object(SessionManager, "api_request", new=mock):
            code, out, _ = _run(
                "api", "/api/projects", "--env", "dev", "-X", "POST", "--data", '{"name": "a"}'
            )
        assert code == 0
        assert json.loads(out) == {"projects": ["a"]}
        mock.assert_awaited_once_with("dev", "/api/projects", method="POST", body={"name": "a"})

    def test_invalid_data(self, data_dir: Path) -> None:
        code, _, err = _run("api", "/api/projects", "--data", "{nope")
        assert code == 2
        assert "--data is not valid JSON" in err
