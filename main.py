import logging
import time
from contextlib import asynccontextmanager
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from amounts import cents_to_units
from config import Settings, get_settings
from database import create_session_factory, init_schema, session_scope
from periods import local_now
from scheduler import ReportWarmupScheduler
from schemas import CostIn, CostOut, LogOut, UserIn, UserOut, UserSummaryOut
from services import (
    CostService,
    InvalidMonth,
    LogService,
    MissingParameters,
    ReportService,
    StorageUnavailable,
    UserAlreadyExists,
    UserNotFound,
    UserService,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        factory = session_factory or create_session_factory(settings.database_url)
        engine = factory.kw["bind"]
        if engine.dialect.name == "sqlite":
            # other backends are migrated with alembic
            init_schema(engine)
        app.state.session_factory = factory
        warmup: Optional[ReportWarmupScheduler] = None
        if settings.report_warmup_enabled:
            warmup = ReportWarmupScheduler(factory, settings)
            warmup.start()
        yield
        if warmup is not None:
            warmup.stop()

    app = FastAPI(title="Cost Reports", lifespan=lifespan)
    app.state.settings = settings
    _register_error_handlers(app)
    if settings.audit_log_enabled:
        app.middleware("http")(_audit_log_middleware)
    _register_routes(app)
    return app


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"id": code, "message": message})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(UserNotFound)
    async def user_not_found_handler(request: Request, exc: UserNotFound):
        return _error(404, exc.code, str(exc))

    @app.exception_handler(UserAlreadyExists)
    async def user_exists_handler(request: Request, exc: UserAlreadyExists):
        return _error(409, exc.code, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(400, getattr(exc, "code", MissingParameters.code), str(exc))

    @app.exception_handler(StorageUnavailable)
    async def storage_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"storage_unavailable: path={request.url.path} error={exc}")
        return _error(503, exc.code, str(exc))


async def _audit_log_middleware(request: Request, call_next):
    started = time.monotonic()
    response = await call_next(request)
    action = f"{request.method} {request.url.path}"
    if request.url.query:
        action = f"{action}?{request.url.query}"
    details = {
        "method": request.method,
        "url": str(request.url),
        "statusCode": response.status_code,
        "responseTime": round((time.monotonic() - started) * 1000, 2),
    }
    try:
        with session_scope(request.app.state.session_factory) as session:
            LogService(session).record(
                getattr(request.state, "userid", 0), action, details
            )
    except Exception:
        logger.warning(f"audit_log_failed: action={action}", exc_info=True)
    return response


def _as_user_id(value: object) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _require(payload: dict, fields: tuple[str, ...], message: str) -> None:
    if any(payload.get(name) in (None, "") for name in fields):
        raise MissingParameters(message)


def _parse(model, payload: dict):
    try:
        return model(**payload)
    except ValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise MissingParameters(f"Invalid parameters ({errors})") from exc


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise MissingParameters("Request body must be a JSON object") from exc
    if not isinstance(payload, dict):
        raise MissingParameters("Request body must be a JSON object")
    return payload


def _register_routes(app: FastAPI) -> None:
    @app.post("/api/add", response_model=CostOut)
    async def add_cost(
        request: Request,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ):
        payload = await _json_body(request)
        request.state.userid = _as_user_id(payload.get("userid"))
        _require(
            payload,
            ("description", "category", "userid", "sum"),
            "Missing some required parameters (description, category, userid, sum)",
        )
        data = _parse(CostIn, payload)
        cost = CostService(db, settings).create(data)
        return CostOut(
            description=cost.description,
            category=cost.category,
            userid=cost.user_id,
            sum=cents_to_units(cost.amount_cents),
            date=cost.occurred_at,
        )

    @app.get("/api/report")
    def get_report(
        request: Request,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ):
        params = request.query_params
        if not params.get("id") or not params.get("year") or not params.get("month"):
            raise MissingParameters("Missing required parameters (id, year, month)")
        try:
            user_id = int(params["id"])
            year = int(params["year"])
            month = int(params["month"])
        except ValueError as exc:
            raise MissingParameters("Parameters id, year and month must be integers") from exc
        request.state.userid = user_id
        if not 1 <= month <= 12:
            raise InvalidMonth("Month must be between 1 and 12")

        UserService(db, settings).get(user_id)
        snapshot = ReportService(db, settings).get_report(
            user_id, year, month, local_now(settings.timezone)
        )
        return snapshot.to_dict()

    @app.post("/api/users", response_model=UserOut)
    async def add_user(
        request: Request,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ):
        payload = await _json_body(request)
        request.state.userid = _as_user_id(payload.get("id"))
        _require(
            payload,
            ("id", "first_name", "last_name", "birthday"),
            "Missing some required parameters (id, first_name, last_name, birthday)",
        )
        data = _parse(UserIn, payload)
        return UserService(db, settings).create(data)

    @app.get("/api/users", response_model=list[UserOut])
    def list_users(
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ):
        return UserService(db, settings).list_all()

    @app.get("/api/users/{user_id}", response_model=UserSummaryOut)
    def get_user(
        user_id: int,
        request: Request,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ):
        request.state.userid = user_id
        user = UserService(db, settings).get(user_id)
        total = CostService(db, settings).total_for_user(user_id)
        return UserSummaryOut(
            first_name=user.first_name,
            last_name=user.last_name,
            id=user.id,
            total=cents_to_units(total),
        )

    @app.get("/api/logs", response_model=list[LogOut])
    def list_logs(db: Session = Depends(get_db)):
        return LogService(db).list_all()

    @app.get("/api/health")
    def health(db: Session = Depends(get_db)):
        db.execute(text("SELECT 1"))
        return {"status": "ok"}


app = create_app()
