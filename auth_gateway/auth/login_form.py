"""HTML pages shown by the gateway itself: the directory login form and the denial page."""

from __future__ import annotations

from pathlib import Path

from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader

# Name of the submit button; its presence in a POST marks a login submission.
SUBMIT_FIELD = "ldap_login"
USERNAME_FIELD = "username"
PASSWORD_FIELD = "password"

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


class LoginFormPresenter:
    def __init__(self, *, app_name: str, auth_method_display_name: str) -> None:
        self._env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=True)
        self._env.globals.update(
            app_name=app_name,
            auth_method=auth_method_display_name,
            submit_field=SUBMIT_FIELD,
            username_field=USERNAME_FIELD,
            password_field=PASSWORD_FIELD,
        )

    def _render(self, name: str, *, status_code: int, **ctx) -> HTMLResponse:
        template = self._env.get_template(name)
        return HTMLResponse(
            template.render(**ctx),
            status_code=status_code,
            headers={"Cache-Control": "no-store"},
        )

    def render_login(self, *, error: str | None = None, username: str = "") -> HTMLResponse:
        """Login page, optionally with a validation message. The form posts back to the same URL."""
        return self._render("login.html", status_code=200, error=error, username=username)

    def render_denied(self, *, message: str, status_code: int = 403) -> HTMLResponse:
        return self._render("denied.html", status_code=status_code, message=message)
