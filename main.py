import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import (
    SESSION_COOKIE,
    AuthenticatedUser,
    SessionStore,
    get_session_store,
    require_user,
)
from config import get_settings
from database import SessionLocal, init_schema, session_scope
from schemas import CategoryIn, LoginIn, TransactionIn
from services import (
    CategoryService,
    Ledger,
    NotFound,
    StoreUnavailable,
    UserService,
    store_errors,
)


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Finance Tracker")
app.state.sessions = SessionStore(
    settings.session_secret, max_age_hours=settings.session_max_age_hours
)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_schema()
    with session_scope() as session:
        UserService(session).ensure_user(
            settings.admin_username, settings.admin_password
        )
        if settings.seed_defaults:
            CategoryService(session).seed_defaults()
    logger.info(f"startup: version={APP_VERSION}")


@app.exception_handler(StoreUnavailable)
def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _client_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


@app.post("/api/login")
def api_login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    users = UserService(db)
    with store_errors(db, "login"):
        known = users.find(payload.username) is not None
        user = users.authenticate(payload.username, payload.password) if known else None
    if not known:
        time.sleep(0.1)
        logger.info(f"login_failed: username={payload.username} reason=unknown_user")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user is None:
        logger.info(f"login_failed: username={payload.username} reason=bad_password")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    cookie_value = sessions.create(AuthenticatedUser(id=user.id, username=user.username))
    response.set_cookie(
        SESSION_COOKIE,
        cookie_value,
        max_age=sessions.max_age_secs,
        httponly=True,
        samesite="lax",
        path="/",
    )
    logger.info(f"login: user_id={user.id}")
    return {"status": "success"}


@app.post("/api/logout")
def api_logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
):
    revoked = sessions.revoke(request.cookies.get(SESSION_COOKIE))
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True)
    logger.info(f"logout: revoked={revoked}")
    return {"status": "logged out"}


@app.get("/api/categories")
def api_list_categories(
    user: AuthenticatedUser = Depends(require_user), db: Session = Depends(get_db)
):
    return Ledger(db).list_categories()


@app.post("/api/categories")
def api_create_category(
    payload: CategoryIn,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).create_category(**payload.model_dump())
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.delete("/api/categories/{category_id}")
def api_delete_category(
    category_id: int,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    Ledger(db).delete_category(category_id)
    return Response(status_code=200)


@app.get("/api/transactions")
def api_list_transactions(
    month: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).list_transactions(month, limit)
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.post("/api/transactions")
def api_create_transaction(
    payload: TransactionIn,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).create_transaction(**payload.model_dump())
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.put("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).update_transaction(transaction_id, **payload.model_dump())
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: int,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    Ledger(db).delete_transaction(transaction_id)
    return Response(status_code=200)


@app.get("/api/summary")
def api_summary(
    month: Optional[str] = None,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).get_summary(month)
    except ValueError as exc:
        raise _client_error(exc) from exc


@app.get("/api/stats/category")
def api_category_stats(
    month: Optional[str] = None,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        return Ledger(db).get_category_stats(month)
    except ValueError as exc:
        raise _client_error(exc) from exc
