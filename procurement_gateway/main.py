"""FastAPI application entry point for the procurement gateway."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from procurement_gateway.config import Settings, get_settings
from procurement_gateway.logging_config import setup_logging
from procurement_gateway.models.errors import ErrorCode, ErrorResponse, ODataError
from procurement_gateway.models.files import UploadedFile
from procurement_gateway.services.identity import IdentityResolver
from procurement_gateway.services.login import LoginFailed, LoginService, TokenGrant
from procurement_gateway.services.odata import ODataClient
from procurement_gateway.services.procurement import (
    PayloadValidationError,
    ProcurementSubmissionService,
)
from procurement_gateway.services.upload import UploadOrchestrator
from procurement_gateway.services.vault import VaultTransactionClient

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
VERSION = "0.1.0"
DEFAULT_PREFER = "return=representation"
QUOTE_FIELD = "m_quote"

HttpClientFactory = Callable[[Settings], httpx.AsyncClient]


class GatewayError(Exception):
    """Request failure rendered as the standard error envelope."""

    def __init__(
        self,
        status: int,
        code: ErrorCode,
        message: str,
        details: Any = None,
    ) -> None:
        self.status = status
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    timestamp: str


class LoginRequest(BaseModel):
    """Request body for POST /api/login."""

    username: str = ""
    password: str = ""


def error_response(
    status: int,
    code: ErrorCode,
    message: str,
    details: Any = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse.build(status, code, message, details).model_dump(mode="json"),
    )


def default_http_client_factory(settings: Settings) -> httpx.AsyncClient:
    """One client per incoming request; closed when the request ends."""
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(app.state.settings.log_level)
    logger.info("Procurement gateway starting up")

    yield

    logger.info("Procurement gateway shutting down")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_bearer_token(request: Request) -> str:
    """FastAPI dependency: extract the caller's IMS bearer token.

    The token is not validated here. IMS checks it on every call the
    gateway forwards it to.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise GatewayError(401, ErrorCode.UNAUTHORIZED, "Authorization token required")

    token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise GatewayError(401, ErrorCode.UNAUTHORIZED, "Empty bearer token.")
    return token


@asynccontextmanager
async def open_http_client(request: Request) -> AsyncGenerator[httpx.AsyncClient]:
    factory: HttpClientFactory = request.app.state.http_client_factory
    async with factory(request.app.state.settings) as client:
        yield client


def build_submission_service(
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> ProcurementSubmissionService:
    """Wire the request-scoped services around one HTTP client."""
    odata = ODataClient(http_client, settings.odata_base_url)
    orchestrator = UploadOrchestrator(
        odata=odata,
        resolver=IdentityResolver(odata),
        vault=VaultTransactionClient(
            http_client,
            settings.vault_base_urls,
            upload_timeout=settings.vault_upload_timeout_seconds,
        ),
    )
    return ProcurementSubmissionService(
        odata,
        orchestrator,
        reviewers=settings.reviewers,
        default_reviewer=settings.default_reviewer,
    )


def relay_odata_response(response: httpx.Response, prefer: str) -> Response:
    """Pass an IMS write response back to the caller.

    Success bodies and the Location header are forwarded as-is; errors are
    wrapped in the gateway's error envelope with the IMS payload as details.
    """
    headers = {"Location": response.headers["Location"]} if "Location" in response.headers else None

    if response.status_code == 204:
        if prefer != "return=minimal":
            logger.warning("IMS returned 204 although a representation was requested")
        return Response(status_code=204, headers=headers)

    if response.status_code in (200, 201):
        try:
            body = response.json()
        except ValueError:
            return Response(
                status_code=response.status_code,
                content=response.content,
                media_type=response.headers.get("Content-Type"),
                headers=headers,
            )
        return JSONResponse(status_code=response.status_code, content=body, headers=headers)

    try:
        error_data = response.json()
    except ValueError:
        error_data = {"error": {"message": response.text}}
    odata_error = ODataError.from_payload(error_data)
    message = odata_error.message if odata_error and odata_error.message else "Unknown OData error"
    logger.error(
        "OData error response: %s",
        message,
        extra={"status_code": response.status_code},
    )
    return error_response(response.status_code, ErrorCode.UPSTREAM_ERROR, message, error_data)


async def read_upload(upload: UploadFile, settings: Settings) -> UploadedFile:
    """Read and validate an uploaded form file."""
    mime_type = upload.content_type or "application/octet-stream"
    if mime_type not in settings.allowed_upload_types:
        raise GatewayError(
            400,
            ErrorCode.UNSUPPORTED_FILE,
            f"File type {mime_type} not allowed. "
            f"Allowed types: {', '.join(settings.allowed_upload_types)}",
        )

    content = await upload.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        raise GatewayError(
            413,
            ErrorCode.FILE_TOO_LARGE,
            f"File exceeds maximum size of {settings.max_upload_bytes} bytes.",
        )
    return UploadedFile(filename=upload.filename or "attachment", mime_type=mime_type, content=content)


async def read_form(
    request: Request,
    file_field: str,
    settings: Settings,
) -> tuple[dict[str, Any], UploadedFile | None]:
    """Split a multipart or JSON body into plain fields and the named file."""
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        try:
            body = await request.json()
        except ValueError as e:
            raise GatewayError(
                400,
                ErrorCode.INVALID_REQUEST,
                "Request body must be JSON or multipart form data.",
            ) from e
        if not isinstance(body, dict):
            raise GatewayError(400, ErrorCode.INVALID_REQUEST, "Request body must be a JSON object.")
        return body, None

    form = await request.form()
    fields: dict[str, Any] = {}
    attachment: UploadedFile | None = None
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key == file_field:
                attachment = await read_upload(value, settings)
            continue
        fields[key] = value
    return fields, attachment


def create_app(
    settings: Settings | None = None,
    http_client_factory: HttpClientFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Serve with ``uvicorn procurement_gateway.main:create_app --factory``.

    Args:
        settings: Settings to use; loaded from the environment when omitted.
        http_client_factory: Builds the per-request outbound HTTP client.
    """
    settings = settings or get_settings()
    application = FastAPI(
        title="Procurement Gateway API",
        version=VERSION,
        description="Procurement request submission gateway for the IMS (Aras Innovator) server",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.http_client_factory = http_client_factory or default_http_client_factory

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        return error_response(exc.status, exc.code, exc.message, exc.details)

    @application.get("/")
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": "Procurement Gateway",
            "version": VERSION,
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    @application.get(f"{API_PREFIX}/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            version=VERSION,
            timestamp=datetime.now(tz=UTC).isoformat(),
        )

    @application.post(f"{API_PREFIX}/login", response_model=TokenGrant)
    async def login(
        body: LoginRequest,
        request: Request,
        settings: Settings = Depends(get_app_settings),
    ) -> TokenGrant:
        """Exchange IMS credentials for an access token."""
        if not body.username or not body.password:
            raise GatewayError(400, ErrorCode.INVALID_REQUEST, "Username and password are required.")

        async with open_http_client(request) as client:
            service = LoginService(
                client,
                token_url=settings.oauth_token_url,
                client_id=settings.oauth_client_id,
                scope=settings.oauth_scope,
                database=settings.ims_database,
            )
            try:
                return await service.request_access_token(body.username, body.password)
            except LoginFailed as exc:
                status = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
                raise GatewayError(status, ErrorCode.LOGIN_FAILED, str(exc)) from exc

    @application.post(f"{API_PREFIX}/m_Procurement_Request")
    async def create_procurement_request(
        request: Request,
        token: str = Depends(get_bearer_token),
        settings: Settings = Depends(get_app_settings),
    ) -> Response:
        """Create a procurement request, storing the ``m_quote`` file in the vault.

        Falls back to an inline attachment when the vault upload fails.
        """
        prefer = request.headers.get("Prefer", DEFAULT_PREFER)
        fields, attachment = await read_form(request, QUOTE_FIELD, settings)

        try:
            async with open_http_client(request) as client:
                service = build_submission_service(client, settings)
                result = await service.submit(token, fields, attachment, prefer=prefer)
        except PayloadValidationError as exc:
            raise GatewayError(400, ErrorCode.INVALID_REQUEST, str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.exception("IMS unreachable while creating procurement request")
            raise GatewayError(
                502,
                ErrorCode.UPSTREAM_ERROR,
                "Failed to add new procurement request",
                details=str(exc),
            ) from exc

        return relay_odata_response(result.response, prefer)

    @application.post(f"{API_PREFIX}/m_Procurement_Request_Files")
    async def upload_procurement_request_file(
        request: Request,
        token: str = Depends(get_bearer_token),
        settings: Settings = Depends(get_app_settings),
    ) -> Response:
        """Attach a file to an existing procurement request."""
        prefer = request.headers.get("Prefer", DEFAULT_PREFER)
        fields, attachment = await read_form(request, "file", settings)
        source_id = fields.pop("source_id", None)
        if not source_id:
            raise GatewayError(400, ErrorCode.INVALID_REQUEST, "source_id is required")
        if attachment is None:
            raise GatewayError(400, ErrorCode.INVALID_REQUEST, "File attachment is required")

        try:
            async with open_http_client(request) as client:
                service = build_submission_service(client, settings)
                response = await service.attach_file(token, source_id, attachment, fields, prefer=prefer)
        except httpx.HTTPError as exc:
            logger.exception("IMS unreachable while uploading procurement request file")
            raise GatewayError(
                502,
                ErrorCode.UPSTREAM_ERROR,
                "Failed to upload procurement request file",
                details=str(exc),
            ) from exc

        return relay_odata_response(response, prefer)

    @application.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return error_response(500, ErrorCode.INTERNAL_ERROR, "Internal server error", str(exc))

    return application
