from datetime import date, timedelta
from pathlib import Path
from typing import Optional
import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlmodel import create_engine

from .crypto import CookieSessions, SessionCipher
from .events import EventStore
from .forms import DeleteEventForm, EditEventForm, EventForm, PasswordForm, parse_form
from .guard import (
    AuthenticationAbsent,
    AuthorizationDenied,
    CSRFMismatch,
    GuardError,
    ValidationFailure,
    authenticate,
    check_csrf,
    require_owner,
)
from .listing import Situation, default_window, list_occurrences, occurrence_as_json
from .time_utils import format_datetime, parse_utc_string, today
from .users import UserStore, bootstrap_login, init_db


WEEK_AHEAD = timedelta(days=7)
MONTH_AHEAD = timedelta(days=31)

db_path = os.getenv("HALO_DB", "halo.db")
engine = create_engine(
    f"sqlite:///{db_path}",
    connect_args={"check_same_thread": False},
)
init_db(engine)
user_store = UserStore(engine)
event_store = EventStore(engine)
bootstrap_login(
    user_store, os.getenv("HALO_ADMIN_LOGIN"), os.getenv("HALO_ADMIN_PASSWORD")
)

URL_PATH = os.getenv("HALO_URL_PATH", "/")
if not URL_PATH.endswith("/"):
    URL_PATH += "/"
TOP = os.getenv("HALO_TOP", "")
SECURE_COOKIES = os.getenv("HALO_SECURE_COOKIES") == "1"

# The key lives only as long as this process.
sessions = CookieSessions(SessionCipher())

app = FastAPI()

logger = logging.getLogger(__name__)

BASE_PATH = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_PATH / "templates"))
templates.env.globals["prefix"] = URL_PATH
templates.env.filters["format_datetime"] = format_datetime
app.mount("/static", StaticFiles(directory=str(BASE_PATH / "static")), name="static")

basic_auth = HTTPBasic(realm="normal")


def message(request: Request, text: str, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request, "message.html", {"message": text}, status_code=status_code
    )


def redirect_home() -> RedirectResponse:
    return RedirectResponse(url=URL_PATH, status_code=303)


@app.exception_handler(GuardError)
async def handle_guard_error(request: Request, exc: GuardError):
    if isinstance(exc, AuthenticationAbsent):
        return RedirectResponse(url=URL_PATH + "login", status_code=303)
    return message(request, exc.message, exc.status_code)


def _situation(request: Request, day_from: Optional[date], day_until: Optional[date]) -> Situation:
    day_from, day_until = default_window(day_from, day_until)
    return Situation(sessions.resolve(request.cookies), day_from, day_until)


@app.get("/", response_class=HTMLResponse)
async def index(
    request: Request,
    day_from: Optional[date] = Query(None, alias="from"),
    day_until: Optional[date] = Query(None, alias="until"),
):
    situation = _situation(request, day_from, day_until)
    occurrences = list_occurrences(event_store.find_visible(situation.user), situation)
    now = today()
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "csrf": sessions.csrf_token(request.cookies) or "",
            "user": situation.user,
            "day_from": situation.day_from.isoformat(),
            "day_until": situation.day_until.isoformat(),
            "top": TOP,
            "occurrences": occurrences,
            "week_ahead": (now.isoformat(), (now + WEEK_AHEAD).isoformat()),
            "month_ahead": (now.isoformat(), (now + MONTH_AHEAD).isoformat()),
        },
    )


@app.get("/list")
async def list_events(
    request: Request,
    day_from: Optional[date] = Query(None, alias="from"),
    day_until: Optional[date] = Query(None, alias="until"),
):
    situation = _situation(request, day_from, day_until)
    occurrences = list_occurrences(event_store.find_visible(situation.user), situation)
    return JSONResponse([occurrence_as_json(occ) for occ in occurrences])


@app.get("/login")
async def login(credentials: HTTPBasicCredentials = Depends(basic_auth)):
    if not user_store.verify(credentials.username, credentials.password):
        logger.info("Failed login for %s", credentials.username)
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": 'Basic realm="normal"'},
        )
    logger.info("Logged in %s", credentials.username)
    response = redirect_home()
    for name, value in sessions.issue(credentials.username).items():
        response.set_cookie(
            name, value, httponly=True, samesite="lax", secure=SECURE_COOKIES
        )
    return response


@app.get("/ping", response_class=PlainTextResponse)
async def ping(request: Request):
    return f"pong, {sessions.resolve(request.cookies)}"


@app.get("/newevent", response_class=HTMLResponse)
async def new_event_page(request: Request):
    user = sessions.resolve(request.cookies)
    csrf = sessions.csrf_token(request.cookies)
    if user is None or csrf is None:
        raise AuthorizationDenied("you are not logged in")
    return templates.TemplateResponse(
        request, "event_form.html", {"csrf": csrf, "event": None, "action": "newevent"}
    )


@app.post("/newevent")
async def create_event(request: Request):
    form = await request.form()
    user = authenticate(sessions, request.cookies)
    data = parse_form(EventForm, form)
    check_csrf(sessions, request, data.csrf)
    event_store.create(data.to_event(user))
    return redirect_home()


@app.get("/delevent", response_class=HTMLResponse)
async def delete_event_page(
    request: Request,
    event_id: int = Query(alias="id"),
    description: str = Query(),
    when: str = Query(alias="datetime"),
):
    try:
        start = parse_utc_string(when)
    except ValueError as exc:
        raise ValidationFailure("malformed input") from exc
    user = sessions.resolve(request.cookies)
    csrf = sessions.csrf_token(request.cookies)
    if user is None:
        raise AuthorizationDenied("you are not logged in")
    if csrf is None:
        raise CSRFMismatch("CSRF error")
    event = event_store.get(event_id)
    if event is None or event.owner != user:
        raise AuthorizationDenied("you are not the owner of this event")
    return templates.TemplateResponse(
        request,
        "delete_event.html",
        {"csrf": csrf, "id": event_id, "description": description, "start": start},
    )


@app.post("/delevent")
async def delete_event(request: Request):
    form = await request.form()
    user = authenticate(sessions, request.cookies)
    data = parse_form(DeleteEventForm, form)
    check_csrf(sessions, request, data.csrf)
    require_owner(event_store, data.id, user, "DELETE")
    event_store.delete(data.id)
    return redirect_home()


@app.get("/editevent", response_class=HTMLResponse)
async def edit_event_page(
    request: Request,
    csrf: str = Query(),
    event_id: int = Query(alias="id"),
):
    token = sessions.csrf_token(request.cookies)
    if token is None or token != csrf:
        raise CSRFMismatch("bad CSRF token")
    user = sessions.resolve(request.cookies)
    event = event_store.get_owned(event_id, user) if user is not None else None
    if event is None:
        raise AuthorizationDenied(f"user {user} is not allowed to edit this event")
    return templates.TemplateResponse(
        request, "event_form.html", {"csrf": token, "event": event, "action": "editevent"}
    )


@app.post("/editevent")
async def edit_event(request: Request):
    form = await request.form()
    user = authenticate(sessions, request.cookies)
    data = parse_form(EditEventForm, form)
    check_csrf(sessions, request, data.csrf)
    require_owner(event_store, data.id, user, "UPDATE")
    event_store.update(data.id, data.to_event(user))
    return redirect_home()


@app.get("/changepassword", response_class=HTMLResponse)
async def change_password_page(request: Request):
    csrf = sessions.csrf_token(request.cookies)
    if csrf is None:
        raise CSRFMismatch("bad CSRF token")
    return templates.TemplateResponse(request, "change_password.html", {"csrf": csrf})


@app.post("/changepassword", response_class=HTMLResponse)
async def change_password(request: Request):
    form = await request.form()
    user = authenticate(sessions, request.cookies)
    data = parse_form(PasswordForm, form)
    check_csrf(sessions, request, data.csrf)
    user_store.change_password(user, data.password)
    logger.info("Changed password of %s", user)
    return message(request, "password changed")
