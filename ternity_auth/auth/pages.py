"""Branded pages served by the loopback callback server."""

from __future__ import annotations

import html


FAVICON_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 32 32">
<rect width="32" height="32" rx="7" fill="#0a0a0a"/>
<path d="M10 7h12v3l-4.5 6 4.5 6v3H10v-3l4.5-6L10 10z" fill="none" stroke="#2dd4bf" stroke-width="2" stroke-linejoin="round"/>
<path d="M13 23h6l-3-3.5z" fill="#2dd4bf"/>
</svg>"""

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<link rel="icon" type="image/svg+xml" href="/favicon.svg">
<style>
  body {{ font-family: system-ui, -apple-system, "Segoe UI", sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #0a0a0a; color: #e5e5e5; }}
  .card {{ text-align: center; padding: 2rem; }}
  .logo {{ width: 48px; height: 48px; margin-bottom: 1rem; }}
  h1 {{ color: {accent}; font-size: 1.5rem; margin-bottom: 0.5rem; }}
  p {{ color: #a3a3a3; }}
  a {{ color: #2dd4bf; }}
</style></head>
<body><div class="card">
  <img class="logo" src="/favicon.svg" alt="Ternity">
  <h1>{heading}</h1>
  {body}
</div></body></html>"""

_ACCENT_OK = "#2dd4bf"
_ACCENT_ERROR = "#ef4444"


def _render(title: str, heading: str, body: str, accent: str = _ACCENT_OK) -> str:
    return _PAGE.format(title=title, heading=heading, body=body, accent=accent)


def success_page() -> str:
    """Page shown after the authorization code was received."""
    return _render(
        "Signed in",
        "Signed in!",
        "<p>You can close this tab and return to Ternity.</p>",
    )


def error_page(message: str) -> str:
    """Page shown when the provider redirected with an error."""
    safe_msg = html.escape(message, quote=True)
    return _render(
        "Sign in failed",
        "Sign in failed",
        f"<p>{safe_msg}</p>",
        accent=_ACCENT_ERROR,
    )


def signed_out_page(end_session_url: str | None = None) -> str:
    """First sign-out page, optionally linking to the provider's logout."""
    body = "<p>You have been signed out of Ternity.</p>"
    if end_session_url:
        href = html.escape(end_session_url, quote=True)
        body += f'<p><a href="{href}">Also sign out of the browser</a></p>'
    return _render("Signed out", "Signed out", body)


def signed_out_complete_page() -> str:
    """Page shown after the provider redirects back from its logout."""
    return _render(
        "Signed out",
        "Signed out everywhere",
        "<p>Your browser session has ended. You can close this tab.</p>",
    )
