"""FastAPI REST surface for schedule imports and CSV task analysis."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analysis_service import CSVAnalysisService
from .auth import AuthService
from .config import API_PREFIX
from .exceptions import (
    AllEntriesLockedError,
    AnalysisNotFoundError,
    AuthenticationError,
    CSVAnalysisError,
    EmptyEntrySetError,
    EntriesLockedError,
    EntryNotFoundError,
    ImportNotFoundError,
    ImportValidationError,
    ParsingError,
    RegistrationError,
    UserNotFoundError,
)
from .models import AnalysisOptions, User
from .schemas import (
    AnalyzeRequest,
    BatchAnalyzeRequest,
    ImportRequest,
    LoginRequest,
    ParseVietnameseRequest,
    RegisterRequest,
    UnlockRequest,
)

logger = logging.getLogger(__name__)

# Most specific classes first; lookup walks the exception's MRO
ERROR_RESPONSES: dict[type[CSVAnalysisError], tuple[int, str]] = {
    AuthenticationError: (401, "unauthorized"),
    EmptyEntrySetError: (400, "empty_entry_set"),
    ImportValidationError: (400, "invalid_import"),
    RegistrationError: (400, "registration_failed"),
    ParsingError: (400, "parse_error"),
    UserNotFoundError: (404, "user_not_found"),
    EntryNotFoundError: (404, "entry_not_found"),
    ImportNotFoundError: (404, "import_not_found"),
    AnalysisNotFoundError: (404, "analysis_not_found"),
    AllEntriesLockedError: (409, "all_entries_locked"),
    EntriesLockedError: (409, "entries_locked"),
}

_HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


class ForbiddenError(StarletteHTTPException):
    def __init__(self, detail: str = "Not allowed to act on another user's data") -> None:
        super().__init__(status_code=403, detail=detail)


def envelope(
    data: Any = None,
    message: str | None = None,
    success: bool = True,
    error: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success, "data": data, "message": message}
    if error is not None:
        body["error"] = error
    return body


def _error_response(exc: CSVAnalysisError) -> JSONResponse:
    status_code, code = 500, "internal_error"
    for cls in type(exc).__mro__:
        if cls in ERROR_RESPONSES:
            status_code, code = ERROR_RESPONSES[cls]
            break

    data = None
    if isinstance(exc, EntriesLockedError):
        data = {"locked_entry_ids": exc.locked_ids}
    elif isinstance(exc, EntryNotFoundError):
        data = {"missing_entry_ids": exc.missing_ids}

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=envelope(data, str(exc), success=False, error=code),
        headers=headers,
    )


def create_app(
    service: CSVAnalysisService,
    auth: AuthService,
    manage_lifecycle: bool = False,
) -> FastAPI:
    """
    Build the REST application.

    Args:
        service: Analysis service the routes delegate to
        auth: Token authentication
        manage_lifecycle: Initialize and shut down the service with the app

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.initialize()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.shutdown()

    app = FastAPI(title="Schedule Assistant API", lifespan=lifespan)
    bearer = HTTPBearer(auto_error=False)

    @app.exception_handler(CSVAnalysisError)
    async def handle_analysis_error(request: Request, exc: CSVAnalysisError) -> JSONResponse:
        if not isinstance(exc, AuthenticationError):
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return _error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(
                None,
                str(exc.detail),
                success=False,
                error=_HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=envelope(
                {"errors": errors}, "Invalid request", success=False, error="validation_error"
            ),
        )

    async def current_user(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> User:
        token = credentials.credentials if credentials else None
        return await auth.authenticate(token)

    def require_owner(user: User, user_id: int) -> None:
        if user.id != user_id:
            raise ForbiddenError()

    # Auth

    auth_router = APIRouter(prefix="/auth")

    @auth_router.post("/register", status_code=201)
    async def register(payload: RegisterRequest) -> dict[str, Any]:
        user, token = await auth.register(
            payload.name, payload.email, payload.password, payload.profession
        )
        return envelope({"user": user.to_dict(), "token": token}, "Registered")

    @auth_router.post("/login")
    async def login(payload: LoginRequest) -> dict[str, Any]:
        user, token = await auth.login(payload.email, payload.password)
        return envelope({"user": user.to_dict(), "token": token}, "Logged in")

    @auth_router.post("/logout")
    async def logout(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> dict[str, Any]:
        token = credentials.credentials if credentials else None
        await auth.authenticate(token)
        await auth.logout(token)
        return envelope(None, "Logged out")

    @auth_router.get("/verify")
    async def verify(user: User = Depends(current_user)) -> dict[str, Any]:
        return envelope(user.to_dict())

    # Schedule imports

    import_router = APIRouter(prefix="/schedule-imports")

    @import_router.post("", status_code=201)
    async def import_csv(
        payload: ImportRequest, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, payload.user_id)
        schedule_import = await service.import_csv(
            payload.user_id, payload.content, payload.filename
        )
        return envelope(
            schedule_import.to_dict(),
            f"Imported {schedule_import.total_entries} entries",
        )

    @import_router.get("")
    async def list_imports(
        user_id: int, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, user_id)
        imports = await service.database.list_imports(user_id)
        return envelope([i.to_dict() for i in imports])

    @import_router.get("/{import_id}/entries")
    async def list_import_entries(
        import_id: int, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        schedule_import = await service.database.get_import(import_id)
        if schedule_import.user_id != user.id:
            raise ImportNotFoundError(f"Import with ID {import_id} not found")
        entries = await service.list_entries(user.id, import_id)
        return envelope([entry.to_dict() for entry in entries])

    # CSV task analysis

    task_router = APIRouter(prefix="/csv-tasks")

    @task_router.post("/analyze")
    async def analyze(
        payload: AnalyzeRequest, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, payload.user_id)
        submission = await service.submit_analysis(
            payload.user_id,
            payload.entry_ids,
            payload.analysis_type,
            AnalysisOptions(**payload.options.model_dump()),
        )
        return envelope(submission.to_dict(), submission.message)

    @task_router.get("/analysis-results/{analysis_id}")
    async def analysis_results(
        analysis_id: str, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        record = await service.get_analysis_results(analysis_id)
        require_owner(user, record.user_id)
        return envelope(record.to_dict())

    @task_router.get("/analysis-status")
    async def analysis_status(
        user_id: int, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, user_id)
        summary = await service.get_analysis_status(user_id)
        return envelope(summary.to_dict())

    @task_router.post("/unlock")
    async def unlock(
        payload: UnlockRequest, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, payload.user_id)
        result = await service.unlock_entries(payload.user_id, payload.entry_ids)
        return envelope(result.to_dict(), f"Unlocked {result.entries_unlocked} entries")

    @task_router.post("/batch-analyze")
    async def batch_analyze(
        payload: BatchAnalyzeRequest, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, payload.user_id)
        submission = await service.batch_analyze(
            payload.user_id,
            payload.import_ids,
            payload.analysis_type,
            skip_locked=payload.skip_locked,
            options=AnalysisOptions(**payload.options.model_dump()),
        )
        return envelope(submission.to_dict(), submission.message)

    @task_router.get("/locked")
    async def locked_entries(
        user_id: int, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        require_owner(user, user_id)
        entries = await service.get_locked_entries(user_id)
        return envelope([entry.to_dict() for entry in entries])

    @task_router.post("/parse-vietnamese")
    async def parse_vietnamese(
        payload: ParseVietnameseRequest, user: User = Depends(current_user)
    ) -> dict[str, Any]:
        context = payload.context.model_dump() if payload.context else None
        event = service.parse_vietnamese(payload.text, context)
        return envelope(event.to_dict())

    router = APIRouter(prefix=API_PREFIX)

    @router.get("/health")
    async def health() -> dict[str, Any]:
        return envelope({"status": "ok", "timestamp": datetime.now().isoformat()})

    router.include_router(auth_router)
    router.include_router(import_router)
    router.include_router(task_router)
    app.include_router(router)

    return app
