"""Application entrypoint.

A small FastAPI app that wires the CSRF middleware in front of an HTML form,
a JSON endpoint and an excluded webhook route.
"""

import dataclasses
import re
from datetime import date
from pathlib import Path

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from tiny_csrf.config import GuardConfig, PatternUrl, settings
from tiny_csrf.dependencies import get_csrf_token
from tiny_csrf.guard import CsrfGuard
from tiny_csrf.middleware import CsrfMiddleware
from tiny_csrf.schemas import ProfileUpdate

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
# Third-party callbacks cannot carry a browser token.
WEBHOOK_URLS = PatternUrl(re.compile(r"^/webhooks/"))


def build_guard() -> CsrfGuard:
    config = GuardConfig.from_settings(settings)
    config = dataclasses.replace(config, excluded_urls=(*config.excluded_urls, WEBHOOK_URLS))
    return CsrfGuard.from_config(config)


guard = build_guard()
app = FastAPI(title=settings.app_name, debug=settings.debug)
app.add_middleware(CsrfMiddleware, guard=guard, signing_key=settings.cookie_signing_key)
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _render_form(request: Request, csrf_token: str | None, message: str | None = None):
    return templates.TemplateResponse(
        request,
        "form.html",
        {
            "app_name": settings.app_name,
            "csrf_token": csrf_token,
            "field_name": guard.config.field_name,
            "message": message,
        },
    )


@app.get("/", response_class=HTMLResponse)
def index(request: Request, csrf_token: str | None = Depends(get_csrf_token)):
    return _render_form(request, csrf_token)


@app.post("/messages")
def post_message(message: str = Form(...)):
    return {"ok": True, "message": message}


@app.put("/profile")
def update_profile(payload: ProfileUpdate):
    return {"ok": True, "display_name": payload.display_name}


@app.post("/webhooks/{source}")
def receive_webhook(source: str, request: Request):
    # Excluded routes still get an accessor for pages that need a token.
    return {"ok": True, "source": source, "csrf_token_available": request.state.csrf_token is not None}


@app.get("/health")
def healthcheck():
    return {"status": "ok", "date": date.today().isoformat()}
