"""FastAPI application exposing the schema-guard functions.

Every function is ``POST /functions/v1/<name>`` taking a JSON object and
returning a JSON object with camelCase keys. Failures return
``{"error": "<message>"}`` with a non-2xx status.

Usage:
    services = build_services()
    app = create_app(services)
    uvicorn.run(app, host="127.0.0.1", port=8000)
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal, TypeVar

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from schema_guard import __version__
from schema_guard.backup.manager import RESTORE_NOT_IMPLEMENTED
from schema_guard.config.models import ServerSettings
from schema_guard.errors import (
    AuthorizationError,
    ExporterError,
    InvalidRequestError,
    PolicyViolationError,
    RecordNotFoundError,
    SchemaGuardError,
    SnapshotNotFoundError,
    VersionConflictError,
    VersionNotFoundError,
)
from schema_guard.factory import Services
from schema_guard.models import CamelModel
from schema_guard.safety.models import MigrationRequest, SQLStatement
from schema_guard.schema.comparator import compare_snapshots, summarize
from schema_guard.schema.suggest import render_migration_sql
from schema_guard.server.auth import (
    Authorizer,
    Principal,
    authenticate,
    build_authorizer,
    ensure_privileged,
    require_privileged,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

router = APIRouter(prefix="/functions/v1")

ModelT = TypeVar("ModelT", bound=BaseModel)


# ============================================================================
# Request bodies
# ============================================================================


class VersionManagerRequest(CamelModel):
    action: str = ""
    version: str | None = None
    description: str | None = None
    target_version: str | None = None


class SchemaDiffRequest(CamelModel):
    version1: str | None = None
    version2: str | None = None
    schema_snapshot1: dict[str, Any] | None = None
    schema_snapshot2: dict[str, Any] | None = None


class DryRunRequest(CamelModel):
    statements: list[SQLStatement]
    migration_name: str


class CreateBackupRequest(CamelModel):
    migration_id: str | None = None
    notes: str | None = None


class RestoreBackupRequest(CamelModel):
    backup_id: str


class RollbackRequest(CamelModel):
    history_id: str


class HistoryRequest(CamelModel):
    history_id: str | None = None
    limit: int = 50


class DriftLogsRequest(CamelModel):
    unresolved_only: bool = False
    limit: int = 50


class ResolveDriftRequest(CamelModel):
    drift_log_id: str
    notes: str | None = None


class SafetyConfigRequest(CamelModel):
    action: Literal["get", "update"] = "get"
    settings: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Helpers
# ============================================================================


def _services(request: Request) -> Services:
    return request.app.state.services


async def _read_body(request: Request, model: type[ModelT]) -> ModelT:
    """Parse the JSON body into ``model``; an empty body counts as ``{}``."""
    raw = await request.body()
    data: Any = {}
    if raw.strip():
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Invalid JSON body: {e}") from e
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid request: {details}") from e


def status_for(exc: SchemaGuardError) -> int:
    if isinstance(exc, AuthorizationError):
        return exc.status_code
    if isinstance(exc, PolicyViolationError):
        return 403
    if isinstance(exc, VersionConflictError):
        return 409
    if isinstance(exc, (VersionNotFoundError, SnapshotNotFoundError, RecordNotFoundError)):
        return 404
    if isinstance(exc, ExporterError):
        return 502
    return 400


# ============================================================================
# Functions
# ============================================================================


@router.post("/schema-version-manager")
async def schema_version_manager(
    request: Request, principal: Principal = Depends(authenticate)
) -> Any:
    body = await _read_body(request, VersionManagerRequest)
    versions = _services(request).versions

    if body.action == "get_current":
        current = await versions.get_current()
        return {"data": current.to_api() if current else None}

    if body.action == "list_versions":
        return {"data": [v.to_api() for v in await versions.list_versions()]}

    if body.action == "create_version":
        ensure_privileged(request, principal)
        created = await versions.create_version(
            body.version or "", body.description or "", applied_by=principal.subject
        )
        return {"data": created.to_api()}

    if body.action == "compare_versions":
        comparison = await versions.compare_versions(body.version or "", body.target_version or "")
        return comparison.to_api()

    if body.action == "check_update":
        return (await versions.check_update()).to_api()

    raise InvalidRequestError(f"Invalid action: {body.action or '(missing)'}")


@router.post("/detect-drift")
async def detect_drift(request: Request, principal: Principal = Depends(authenticate)) -> Any:
    result = await _services(request).drift.detect_drift()
    return result.to_api(exclude_none=True)


@router.post("/schema-diff")
async def schema_diff(request: Request, principal: Principal = Depends(authenticate)) -> Any:
    """Diff two stored versions, two inline snapshots, or one of each."""
    body = await _read_body(request, SchemaDiffRequest)
    versions = _services(request).versions

    snapshots: list[Any] = []
    for version, snapshot in (
        (body.version1, body.schema_snapshot1),
        (body.version2, body.schema_snapshot2),
    ):
        if snapshot is None and version:
            record = await versions.get_version(version)
            snapshot = record.schema_snapshot if record else None
        snapshots.append(snapshot)

    if snapshots[0] is None or snapshots[1] is None:
        raise SnapshotNotFoundError("Schema snapshots not found")

    differences = compare_snapshots(snapshots[0], snapshots[1])
    return {
        "differences": differences.model_dump(mode="json"),
        "migrationSQL": str(render_migration_sql(differences)),
        "summary": summarize(differences).to_api(),
    }


@router.post("/dry-run-migration")
async def dry_run_migration(
    request: Request, principal: Principal = Depends(require_privileged)
) -> JSONResponse:
    body = await _read_body(request, DryRunRequest)
    result = await _services(request).gate.dry_run(
        body.statements, body.migration_name, executed_by=principal.subject
    )
    return JSONResponse(result.to_api(), status_code=200 if result.success else 500)


@router.post("/execute-sql-migration")
async def execute_sql_migration(
    request: Request, principal: Principal = Depends(require_privileged)
) -> JSONResponse:
    body = await _read_body(request, MigrationRequest)
    result = await _services(request).gate.execute(body, executed_by=principal.subject)
    return JSONResponse(result.to_api(), status_code=200 if result.success else 500)


@router.post("/rollback-migration")
async def rollback_migration(
    request: Request, principal: Principal = Depends(require_privileged)
) -> Any:
    body = await _read_body(request, RollbackRequest)
    result = await _services(request).gate.rollback(body.history_id, executed_by=principal.subject)
    return result.to_api()


@router.post("/migration-history")
async def migration_history(
    request: Request, principal: Principal = Depends(authenticate)
) -> Any:
    body = await _read_body(request, HistoryRequest)
    gate = _services(request).gate
    if body.history_id:
        return {"data": (await gate.get_history(body.history_id)).to_api()}
    return {"data": [h.to_api() for h in await gate.list_history(limit=body.limit)]}


@router.post("/create-backup")
async def create_backup(
    request: Request, principal: Principal = Depends(require_privileged)
) -> JSONResponse:
    body = await _read_body(request, CreateBackupRequest)
    result = await _services(request).backups.create_pre_migration_backup(
        migration_id=body.migration_id, notes=body.notes, created_by=principal.subject
    )
    return JSONResponse(result.to_api(), status_code=200 if result.success else 500)


@router.post("/restore-backup")
async def restore_backup(
    request: Request, principal: Principal = Depends(require_privileged)
) -> JSONResponse:
    body = await _read_body(request, RestoreBackupRequest)
    result = await _services(request).backups.restore_backup(body.backup_id)
    if result.success:
        return JSONResponse(result.to_api())
    status = 501 if result.error == RESTORE_NOT_IMPLEMENTED else 404
    if result.error == "Backup cannot be restored":
        status = 409
    return JSONResponse(result.to_api(), status_code=status)


@router.post("/drift-logs")
async def drift_logs(request: Request, principal: Principal = Depends(authenticate)) -> Any:
    body = await _read_body(request, DriftLogsRequest)
    logs = await _services(request).drift.list_drift_logs(
        unresolved_only=body.unresolved_only, limit=body.limit
    )
    return {"data": [log.to_api() for log in logs]}


@router.post("/resolve-drift")
async def resolve_drift(
    request: Request, principal: Principal = Depends(require_privileged)
) -> Any:
    body = await _read_body(request, ResolveDriftRequest)
    log = await _services(request).drift.resolve_drift(
        body.drift_log_id, resolved_by=principal.subject, notes=body.notes
    )
    return {"data": log.to_api()}


@router.post("/migration-safety-config")
async def migration_safety_config(
    request: Request, principal: Principal = Depends(authenticate)
) -> Any:
    body = await _read_body(request, SafetyConfigRequest)
    store = _services(request).settings
    if body.action == "update":
        ensure_privileged(request, principal)
        config = await store.update(**body.settings)
    else:
        config = await store.load()
    return {"data": config.to_api()}


# ============================================================================
# Application factory
# ============================================================================


def create_app(
    services: Services,
    settings: ServerSettings | None = None,
    authorizer: Authorizer | None = None,
    close_on_shutdown: bool = True,
) -> FastAPI:
    """Build the FastAPI app around already-wired services.

    Args:
        services: Output of ``build_services()``.
        settings: Server settings (default: ``services.config.server``).
        authorizer: Credential resolver (default: chosen by ``settings.auth``).
        close_on_shutdown: Close the services' database clients on shutdown.
    """
    settings = settings or services.config.server
    if authorizer is None:
        profile = services.config.profiles.get(services.profile_name)
        authorizer = build_authorizer(settings, profile)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("schema-guard functions v%s (profile %s)", __version__, services.profile_name)
        yield
        if close_on_shutdown:
            await services.close()

    app = FastAPI(title="schema-guard", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.state.server_settings = settings
    app.state.authorizer = authorizer

    @app.exception_handler(SchemaGuardError)
    async def _schema_guard_error(request: Request, exc: SchemaGuardError) -> JSONResponse:
        status = status_for(exc)
        logger.info("%s -> %d: %s", request.url.path, status, exc)
        return JSONResponse({"error": str(exc)}, status_code=status)

    @app.middleware("http")
    async def _unexpected_error(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception("Unhandled error in %s", request.url.path)
            return JSONResponse({"error": str(e)}, status_code=400)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=CORS_HEADERS,
    )

    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
