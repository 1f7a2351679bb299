"""FastAPI app factory.

Endpoints are thin wrappers over `AnalyticsService`. Serve with:

    uvicorn analytics_workflows.server.app:create_app --factory
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from analytics_workflows import __version__
from analytics_workflows.engine.config import AnalyticsRuntime, build_runtime
from analytics_workflows.engine.errors import (
    ConcurrentModificationError,
    DefinitionNotFoundError,
    DuplicateNameError,
    InvalidDocumentError,
    ValidationFailedError,
    WorkflowRuntimeError,
)
from analytics_workflows.engine.workflow.documents import DefinitionConfig
from analytics_workflows.engine.workflow.models import ChangeEvent, WorkflowDefinition
from analytics_workflows.server.config import ServerSettings
from analytics_workflows.server.models import (
    ApiDefinition,
    ChangeEventAccepted,
    ChangeEventRequest,
    CreatedResponse,
    ExportResponse,
    ImportRequest,
    RunResponse,
    ValueChange,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


def _to_api_definition(definition: WorkflowDefinition) -> ApiDefinition:
    return ApiDefinition.model_validate(definition.model_dump(mode="json"))


def _install_error_handlers(app: FastAPI) -> None:
    def _error(status_code: int, detail: object) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": detail})

    @app.exception_handler(DuplicateNameError)
    def _duplicate(request: Request, exc: DuplicateNameError) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(ValidationFailedError)
    def _validation(request: Request, exc: ValidationFailedError) -> JSONResponse:
        return _error(422, {"message": "Validation Failed", "errors": list(exc.errors)})

    @app.exception_handler(InvalidDocumentError)
    def _document(request: Request, exc: InvalidDocumentError) -> JSONResponse:
        return _error(422, str(exc))

    @app.exception_handler(DefinitionNotFoundError)
    def _not_found(request: Request, exc: DefinitionNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(ConcurrentModificationError)
    def _conflict(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(WorkflowRuntimeError)
    def _runtime(request: Request, exc: WorkflowRuntimeError) -> JSONResponse:
        return _error(502, f"Runtime Error: {exc}")


def create_app(runtime: AnalyticsRuntime | None = None) -> FastAPI:
    owns_runtime = runtime is None
    settings = ServerSettings()
    if runtime is None:
        runtime = build_runtime(settings)
    service = runtime.service

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        runtime.scheduler.start()
        try:
            yield
        finally:
            if owns_runtime:
                runtime.close()
            else:
                runtime.scheduler.stop()

    app = FastAPI(
        title="Analytics Workflows",
        version=__version__,
        description="REST API over the analytics workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/definitions", response_model=list[ApiDefinition])
    def list_definitions() -> list[ApiDefinition]:
        return [_to_api_definition(d) for d in service.list_definitions()]

    @app.post("/api/definitions", response_model=CreatedResponse, status_code=201)
    def create_definition(config: DefinitionConfig) -> CreatedResponse:
        return CreatedResponse(id=service.add_definition(config))

    @app.post("/api/definitions/import", response_model=CreatedResponse, status_code=201)
    def import_definition(req: ImportRequest) -> CreatedResponse:
        return CreatedResponse(id=service.import_definition(req.document))

    @app.get("/api/definitions/{definition_id}", response_model=ApiDefinition)
    def get_definition(definition_id: str) -> ApiDefinition:
        return _to_api_definition(service.get_definition(definition_id))

    @app.put("/api/definitions/{definition_id}", response_model=ApiDefinition)
    def update_definition(definition_id: str, config: DefinitionConfig) -> ApiDefinition:
        return _to_api_definition(service.update_definition(definition_id, config))

    @app.delete("/api/definitions/{definition_id}", status_code=204)
    def delete_definition(definition_id: str) -> Response:
        service.delete_definition(definition_id)
        return Response(status_code=204)

    @app.post("/api/definitions/{definition_id}/run", response_model=RunResponse)
    def run_definition(definition_id: str) -> RunResponse:
        return RunResponse(id=definition_id, value=service.execute_once(definition_id))

    @app.post("/api/definitions/{definition_id}/verify", response_model=VerifyResponse)
    def verify_definition(definition_id: str) -> VerifyResponse:
        report = service.verify_definition(definition_id)
        return VerifyResponse(ok=report.ok, status=report.summary(), errors=list(report.errors))

    @app.get("/api/definitions/{definition_id}/export", response_model=ExportResponse)
    def export_definition(definition_id: str) -> ExportResponse:
        return ExportResponse(document=service.export_definition(definition_id))

    @app.get("/api/definitions/{definition_id}/changes", response_model=list[ValueChange])
    def list_value_changes(definition_id: str) -> list[ValueChange]:
        return [
            ValueChange.model_validate(c.model_dump())
            for c in service.list_value_changes(definition_id)
        ]

    @app.post("/api/events", response_model=ChangeEventAccepted, status_code=202)
    def publish_event(req: ChangeEventRequest) -> ChangeEventAccepted:
        event = ChangeEvent(
            table=req.table,
            entity_id=req.entity_id,
            operation=req.operation,
            changed_properties=frozenset(req.changed_properties),
        )
        futures = runtime.feed.publish(event)
        logger.info(
            "Change event accepted",
            extra={"table": req.table, "operation": req.operation.value, "handlers": len(futures)},
        )
        return ChangeEventAccepted(handlers=len(futures))

    return app
