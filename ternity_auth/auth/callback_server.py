"""Loopback HTTP server for the sign-in redirect and sign-out pages.

One listener at a time owns the fixed loopback port. In sign-in mode it
waits for ``/callback`` and hands the authorization code to the waiter;
in sign-out mode it serves ``/signed-out`` and ``/signed-out-complete``
until its page TTL expires. ``/favicon.svg`` is served in both modes.

Runs a FastAPI app under uvicorn on the caller's event loop.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import socket
import sys

from typing import TYPE_CHECKING, Any, Literal

import uvicorn

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from ..exceptions import (
    AuthFlowCancelled,
    AuthFlowTimeout,
    CallbackError,
    CallbackServerError,
)
from ..types import CallbackServerState
from . import pages


if TYPE_CHECKING:
    from starlette.datastructures import QueryParams


logger = logging.getLogger("ternity.auth")

_SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'; img-src 'self'",
    "X-Content-Type-Options": "nosniff",
}

Mode = Literal["sign_in", "sign_out"]


class CallbackServer:
    """Ephemeral loopback listener.

    Whichever of {redirect arrives, timeout fires, ``cancel()``} happens
    first settles the pending code; the other two become no-ops.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` picks a free port, used by tests).
    timeout : float
        Seconds to wait for the sign-in redirect (default 300).
    sign_out_ttl : float
        Seconds the sign-out pages stay available (default 60).
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 21987,
        timeout: float = 300.0,
        sign_out_ttl: float = 60.0,
    ) -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._timeout = timeout
        self._sign_out_ttl = sign_out_ttl

        self._state = CallbackServerState.IDLE
        self._mode: Mode | None = None
        self._context: dict[str, Any] = {}
        self._end_session_url: str | None = None
        self._expected_state: str | None = None

        self._future: asyncio.Future[str] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._actual_port = 0

        self._app = self._build_app()

    # ── Properties ──────────────────────────────────────────────────

    @property
    def state(self) -> CallbackServerState:
        """Current server state."""
        return self._state

    @property
    def mode(self) -> Mode | None:
        """``"sign_in"`` or ``"sign_out"`` once started."""
        return self._mode

    @property
    def port(self) -> int:
        """The bound port (resolved when started with port 0)."""
        return self._actual_port or self._port

    @property
    def base_url(self) -> str:
        """Root URL of the listener."""
        return f"http://{self._host}:{self.port}"

    @property
    def redirect_uri(self) -> str:
        """Sign-in redirect target."""
        return f"{self.base_url}/callback"

    @property
    def sign_out_page_url(self) -> str:
        """Initial sign-out page."""
        return f"{self.base_url}/signed-out"

    @property
    def is_listening(self) -> bool:
        """Whether the socket is still being served."""
        return self._task is not None and not self._task.done()

    @property
    def serve_task(self) -> asyncio.Task[None] | None:
        """The uvicorn serve task, once started."""
        return self._task

    # ── Lifecycle ───────────────────────────────────────────────────

    async def listen_for_callback(self, expected_state: str | None = None, **context: Any) -> str:
        """Start in sign-in mode.

        Parameters
        ----------
        expected_state : str, optional
            State nonce sent on the authorization URL. A callback echoing
            a different value, or none at all, is rejected.
        **context : Any
            Extra context (environment, flow_id) attached to rejections.

        Returns
        -------
        str
            The redirect URI.

        Raises
        ------
        CallbackServerError
            If the port cannot be bound.
        """
        loop = asyncio.get_running_loop()
        self._context = context
        self._expected_state = expected_state
        self._future = loop.create_future()
        self._future.add_done_callback(_consume_exception)
        await self._start("sign_in")
        if self._future.done():
            # Cancelled while binding; the rejection is already recorded.
            return self.redirect_uri
        self._state = CallbackServerState.LISTENING
        self._timer = loop.call_later(self._timeout, self._on_timeout)
        logger.debug("Callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    async def serve_sign_out(self, end_session_url: str | None = None) -> str:
        """Start in sign-out mode; the listener closes itself after the TTL.

        Returns
        -------
        str
            URL of the initial sign-out page.
        """
        self._end_session_url = end_session_url
        await self._start("sign_out")
        self._state = CallbackServerState.SERVING_SIGN_OUT
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._sign_out_ttl, self._request_shutdown)
        logger.debug("Sign-out pages served at %s", self.sign_out_page_url)
        return self.sign_out_page_url

    async def wait_for_code(self) -> str:
        """Wait for the authorization code.

        Raises
        ------
        CallbackError
            Provider error or redirect without a code.
        AuthFlowTimeout
            No redirect within the timeout.
        AuthFlowCancelled
            ``cancel()`` or ``close()`` was called first.
        """
        if self._future is None:
            msg = "Callback server is not in sign-in mode"
            raise RuntimeError(msg)
        return await self._future

    def cancel(self) -> None:
        """Reject the pending wait with a cancellation and stop listening."""
        self._settle(exc=AuthFlowCancelled("Sign-in was cancelled", **self._context))
        self._request_shutdown()

    async def close(self) -> None:
        """Stop the listener and wait until the port is released."""
        if self._future is not None and not self._future.done():
            self.cancel()
        self._request_shutdown()
        if self._task is not None:
            await asyncio.wait({self._task})
        self._close_socket()
        if self._state in (CallbackServerState.LISTENING, CallbackServerState.SERVING_SIGN_OUT):
            self._state = CallbackServerState.CLOSED

    # ── Internals ───────────────────────────────────────────────────

    async def _start(self, mode: Mode) -> None:
        if self._task is not None:
            msg = "Callback server already started"
            raise CallbackServerError(msg, **self._context)

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if sys.platform != "win32":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            msg = f"Callback server failed to start: {exc}"
            raise CallbackServerError(msg, port=self._port, **self._context) from exc

        self._socket = sock
        self._actual_port = sock.getsockname()[1]
        self._mode = mode

        config = uvicorn.Config(
            self._app,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=5,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))
        self._task.add_done_callback(self._on_served)

        while not self._server.started:
            if self._task.done():
                self._close_socket()
                msg = "Callback server stopped during startup"
                raise CallbackServerError(msg, port=self._actual_port, **self._context)
            await asyncio.sleep(0.01)

    def _settle(self, code: str | None = None, exc: BaseException | None = None) -> bool:
        """Resolve or reject the pending wait exactly once."""
        if self._future is None or self._future.done():
            return False
        self._cancel_timer()
        if exc is not None:
            self._future.set_exception(exc)
            self._state = CallbackServerState.REJECTED
        else:
            self._future.set_result(code or "")
            self._state = CallbackServerState.RESOLVED
        return True

    def _on_timeout(self) -> None:
        self._timer = None
        msg = f"Sign-in timed out: no callback received within {self._timeout:.0f} seconds"
        if self._settle(exc=AuthFlowTimeout(msg, timeout=self._timeout, **self._context)):
            logger.info("Callback server timed out after %.0fs", self._timeout)
        self._request_shutdown()

    def _on_served(self, task: asyncio.Task[None]) -> None:
        # uvicorn skips its shutdown when told to exit during startup.
        for listener in getattr(self._server, "servers", ()):
            listener.close()
        self._close_socket()
        if self._future is not None and not self._future.done():
            msg = "Callback server stopped before a callback was received"
            self._settle(exc=CallbackServerError(msg, **self._context))
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Callback server exited with an error: %s", task.exception())

    def _request_shutdown(self) -> None:
        self._cancel_timer()
        if self._server is not None:
            self._server.should_exit = True

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    # ── HTTP surface ────────────────────────────────────────────────

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get("/callback")
        async def callback(request: Request) -> Response:
            return self._handle_callback(request.query_params)

        @app.get("/favicon.svg")
        async def favicon() -> Response:
            return Response(
                content=pages.FAVICON_SVG,
                media_type="image/svg+xml",
                headers={"Cache-Control": "max-age=86400"},
            )

        @app.get("/signed-out")
        async def signed_out() -> Response:
            if self._mode != "sign_out":
                return _not_found()
            return _html(pages.signed_out_page(self._end_session_url))

        @app.get("/signed-out-complete")
        async def signed_out_complete() -> Response:
            if self._mode != "sign_out":
                return _not_found()
            return _html(pages.signed_out_complete_page())

        return app

    def _handle_callback(self, params: QueryParams) -> Response:
        if (
            self._mode != "sign_in"
            or self._state is not CallbackServerState.LISTENING
            or self._future is None
            or self._future.done()
        ):
            return _not_found()

        code = params.get("code")
        error = params.get("error")

        if error:
            message = params.get("error_description") or error
            logger.info("Provider returned error on callback: %s", error)
            self._settle(exc=CallbackError(message, reason="provider_error", **self._context))
            self._request_shutdown()
            return _html(pages.error_page(message), status_code=400)

        received_state = params.get("state")
        if self._expected_state and received_state != self._expected_state:
            message = "State parameter mismatch"
            self._settle(exc=CallbackError(message, reason="state_mismatch", **self._context))
            self._request_shutdown()
            return _html(pages.error_page(message), status_code=400)

        if not code:
            message = "No authorization code received"
            self._settle(exc=CallbackError(message, reason="missing_code", **self._context))
            self._request_shutdown()
            return _html(pages.error_page(message), status_code=400)

        self._settle(code=code)
        self._request_shutdown()
        return _html(pages.success_page())


def _html(content: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(content=content, status_code=status_code, headers=_SECURITY_HEADERS)


def _not_found() -> Response:
    return PlainTextResponse("Not found", status_code=404)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    """Mark a rejected future's exception as retrieved."""
    if not future.cancelled():
        future.exception()


class LoopbackPort:
    """Single-owner lease on the loopback port.

    Sign-in and sign-out share one port. ``acquire`` forcibly releases
    the current holder before binding the new one.
    """

    def __init__(self) -> None:
        """Initialize with no holder."""
        self._holder: CallbackServer | None = None

    @property
    def holder(self) -> CallbackServer | None:
        """The server currently owning the port."""
        return self._holder

    async def acquire_for_sign_in(self, server: CallbackServer, **context: Any) -> str:
        """Bind ``server`` in sign-in mode; returns the redirect URI."""
        await self.release()
        redirect_uri = await server.listen_for_callback(**context)
        self._track(server)
        return redirect_uri

    async def acquire_for_sign_out(
        self, server: CallbackServer, end_session_url: str | None = None
    ) -> str:
        """Bind ``server`` in sign-out mode; returns the sign-out page URL."""
        await self.release()
        url = await server.serve_sign_out(end_session_url)
        self._track(server)
        return url

    async def release(self, server: CallbackServer | None = None) -> None:
        """Release the lease.

        Parameters
        ----------
        server : CallbackServer, optional
            Only release when this server is the holder. Releases any
            holder when omitted.
        """
        holder = self._holder
        if holder is None or (server is not None and server is not holder):
            return
        self._holder = None
        logger.debug("Releasing loopback port held by %s listener", holder.mode)
        await holder.close()

    def _track(self, server: CallbackServer) -> None:
        self._holder = server
        task = server.serve_task
        if task is not None:
            task.add_done_callback(lambda _t: self._forget(server))

    def _forget(self, server: CallbackServer) -> None:
        if self._holder is server:
            self._holder = None
