"""HTTP API for the member portal."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from . import roles
from .accounts import AccountPatch
from .config import PortalConfig, load_config
from .core import Portal
from .database import Database, resolve_database_path
from .errors import (
    AccountNotFound,
    DuplicateIdentity,
    Forbidden,
    InvalidCredential,
    NotFound,
    PortalError,
    ProtectedTarget,
    Result,
    Unauthenticated,
    ValidationError,
)
from .models import (
    Account,
    AccountStatus,
    ApplicationEntry,
    ApplicationField,
    ApplicationStatus,
    IntakeStatus,
    Principal,
    Role,
    ScheduleState,
    Session,
)

logger = logging.getLogger("portal.api")

SESSION_COOKIE_NAME = "portal_session"

T = TypeVar("T")

_HTTP_STATUS: Dict[type, int] = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    InvalidCredential: status.HTTP_401_UNAUTHORIZED,
    AccountNotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    ProtectedTarget: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    DuplicateIdentity: status.HTTP_409_CONFLICT,
    ValidationError: 422,
}


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)
    display_name: str = Field(..., min_length=1, max_length=64)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)


class ExternalLoginRequest(BaseModel):
    provider_id: str = Field(..., min_length=1, max_length=128)
    username: Optional[str] = Field(default=None, max_length=128)
    display_name: Optional[str] = Field(default=None, max_length=64)


class PrincipalView(BaseModel):
    account_id: str
    display_name: str
    role: Role
    role_label: str
    auth_method: str
    email: Optional[str] = None
    provider_username: Optional[str] = None
    can_access_admin_console: bool
    can_review_applications: bool
    can_manage_roles: bool
    can_manage_site_settings: bool
    can_delete_accounts: bool


class SessionResponse(BaseModel):
    token: str
    principal: PrincipalView
    expires_at: Optional[datetime] = None


class SubmitApplicationRequest(BaseModel):
    answers: Dict[str, str] = Field(default_factory=dict)


class ApplicationView(BaseModel):
    id: str
    user_id: str
    answers: Dict[str, str]
    status: ApplicationStatus
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    admin_message: Optional[str] = None


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationView]


class ApplicationStatsResponse(BaseModel):
    total: int
    pending: int
    under_review: int
    approved: int
    rejected: int


class ReviewRequest(BaseModel):
    status: ApplicationStatus


class TextRequest(BaseModel):
    text: Optional[str] = Field(default=None, max_length=4000)


class AccountView(BaseModel):
    id: str
    display_name: str
    auth_method: str
    role: Role
    role_label: str
    status: AccountStatus
    created_at: datetime
    email: Optional[str] = None
    provider_username: Optional[str] = None


class AccountListResponse(BaseModel):
    accounts: List[AccountView]


class RoleRequest(BaseModel):
    role: Role


class AccountPatchRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=256)
    status: Optional[AccountStatus] = None


class IntakeResponse(BaseModel):
    status: IntakeStatus
    accepting_submissions: bool
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None


class IntakeStatusRequest(BaseModel):
    status: IntakeStatus


class ScheduleRequest(BaseModel):
    open_date: Optional[datetime] = None
    close_date: Optional[datetime] = None


class ApplicationFieldView(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    label: str = Field(..., min_length=1, max_length=128)
    type: str = "text"
    required: bool = True
    enabled: bool = True
    placeholder: Optional[str] = None
    options: List[str] = Field(default_factory=list)


class ApplicationFieldsPayload(BaseModel):
    fields: List[ApplicationFieldView]


class ContentPayload(BaseModel):
    value: Any = None


def _principal_to_view(principal: Principal) -> PrincipalView:
    return PrincipalView(
        account_id=principal.account_id,
        display_name=principal.display_name,
        role=principal.role,
        role_label=roles.role_label(principal.role),
        auth_method=principal.auth_method.value,
        email=principal.email,
        provider_username=principal.provider_username,
        can_access_admin_console=roles.can_access_admin_console(principal.role),
        can_review_applications=roles.can_review_applications(principal.role),
        can_manage_roles=roles.can_manage_roles(principal.role),
        can_manage_site_settings=roles.can_manage_site_settings(principal.role),
        can_delete_accounts=roles.can_delete_accounts(principal.role),
    )


def _session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        token=session.token,
        principal=_principal_to_view(session.principal),
        expires_at=session.expires_at,
    )


def _application_to_view(entry: ApplicationEntry) -> ApplicationView:
    return ApplicationView(
        id=entry.id,
        user_id=entry.user_id,
        answers=dict(entry.answers),
        status=entry.status,
        submitted_at=entry.submitted_at,
        reviewed_at=entry.reviewed_at,
        notes=entry.notes,
        admin_message=entry.admin_message,
    )


def _account_to_view(account: Account) -> AccountView:
    return AccountView(
        id=account.id,
        display_name=account.display_name,
        auth_method=account.auth_method.value,
        role=account.role,
        role_label=roles.role_label(account.role),
        status=account.status,
        created_at=account.created_at,
        email=account.email,
        provider_username=account.provider_username,
    )


def _schedule_to_response(state: ScheduleState) -> IntakeResponse:
    return IntakeResponse(
        status=state.status,
        accepting_submissions=state.accepting_submissions,
        open_date=state.open_date,
        close_date=state.close_date,
    )


def _field_to_view(field: ApplicationField) -> ApplicationFieldView:
    return ApplicationFieldView(
        id=field.id,
        label=field.label,
        type=field.type,
        required=field.required,
        enabled=field.enabled,
        placeholder=field.placeholder,
        options=list(field.options),
    )


def _http_status_for(error: PortalError) -> int:
    for error_type in type(error).__mro__:
        if error_type in _HTTP_STATUS:
            return _HTTP_STATUS[error_type]
    return status.HTTP_400_BAD_REQUEST


def _unwrap(result: Result[T]) -> T:
    if result.error is not None:
        error = result.error
        detail: Dict[str, Any] = {"code": error.code, "message": error.message}
        if isinstance(error, ValidationError) and error.fields:
            detail["fields"] = list(error.fields)
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, Unauthenticated) else None
        raise HTTPException(status_code=_http_status_for(error), detail=detail, headers=headers)
    return result.value  # type: ignore[return-value]


def _build_token_dependency() -> Callable[..., Optional[str]]:
    bearer_security = HTTPBearer(auto_error=False)

    def dependency(
        request: Request,
        bearer: HTTPAuthorizationCredentials | None = Depends(bearer_security),
    ) -> Optional[str]:
        if bearer is not None and bearer.scheme.lower() == "bearer":
            return bearer.credentials
        return request.cookies.get(SESSION_COOKIE_NAME)

    return dependency


def register_api_routes(
    app: FastAPI,
    portal: Portal,
    *,
    secure_cookies: bool = True,
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    current_token = _build_token_dependency()

    def _set_session_cookie(response: Response, session: Session) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session.token,
            max_age=portal.sessions.cookie_max_age,
            httponly=True,
            secure=secure_cookies,
            samesite="lax",
        )

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # -- authentication ------------------------------------------------
    @app.post("/v1/auth/register", status_code=status.HTTP_201_CREATED, response_model=SessionResponse)
    def register(request: RegisterRequest, response: Response) -> SessionResponse:
        session = _unwrap(portal.register(request.email, request.password, request.display_name))
        _set_session_cookie(response, session)
        return _session_to_response(session)

    @app.post("/v1/auth/login", response_model=SessionResponse)
    def login(request: LoginRequest, response: Response) -> SessionResponse:
        session = _unwrap(portal.login(request.email, request.password))
        _set_session_cookie(response, session)
        return _session_to_response(session)

    @app.post("/v1/auth/external", response_model=SessionResponse)
    def login_external(request: ExternalLoginRequest, response: Response) -> SessionResponse:
        session = _unwrap(
            portal.login_via_external_provider(
                request.provider_id,
                provider_username=request.username,
                display_name=request.display_name,
            )
        )
        _set_session_cookie(response, session)
        return _session_to_response(session)

    @app.post("/v1/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    def logout(token: Optional[str] = Depends(current_token)) -> Response:
        if token:
            _unwrap(portal.logout(token))
        response = Response(status_code=status.HTTP_204_NO_CONTENT)
        response.delete_cookie(SESSION_COOKIE_NAME)
        return response

    @app.get("/v1/me", response_model=PrincipalView)
    def me(token: Optional[str] = Depends(current_token)) -> PrincipalView:
        principal = _unwrap(portal.get_current_principal(token))
        if principal is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": Unauthenticated.code, "message": "Sign in to continue"},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return _principal_to_view(principal)

    # -- applications ----------------------------------------------------
    @app.post("/v1/applications", status_code=status.HTTP_201_CREATED, response_model=ApplicationView)
    def submit_application(
        request: SubmitApplicationRequest,
        token: Optional[str] = Depends(current_token),
    ) -> ApplicationView:
        entry = _unwrap(portal.submit_application(token, request.answers))
        return _application_to_view(entry)

    @app.get("/v1/applications/mine", response_model=ApplicationListResponse)
    def list_my_applications(token: Optional[str] = Depends(current_token)) -> ApplicationListResponse:
        entries = _unwrap(portal.list_my_applications(token))
        return ApplicationListResponse(applications=[_application_to_view(entry) for entry in entries])

    @app.get("/v1/applications/stats", response_model=ApplicationStatsResponse)
    def application_stats(token: Optional[str] = Depends(current_token)) -> ApplicationStatsResponse:
        stats = _unwrap(portal.application_stats(token))
        return ApplicationStatsResponse(
            total=stats.total,
            pending=stats.pending,
            under_review=stats.under_review,
            approved=stats.approved,
            rejected=stats.rejected,
        )

    @app.get("/v1/applications", response_model=ApplicationListResponse)
    def list_applications(
        token: Optional[str] = Depends(current_token),
        status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
        q: Optional[str] = Query(default=None, max_length=128),
    ) -> ApplicationListResponse:
        entries = _unwrap(portal.list_all_applications(token, status=status_filter, query=q))
        return ApplicationListResponse(applications=[_application_to_view(entry) for entry in entries])

    @app.post("/v1/applications/{entry_id}/status", response_model=ApplicationView)
    def review_application(
        entry_id: str,
        request: ReviewRequest,
        token: Optional[str] = Depends(current_token),
    ) -> ApplicationView:
        return _application_to_view(_unwrap(portal.review_application(token, entry_id, request.status)))

    @app.put("/v1/applications/{entry_id}/notes", response_model=ApplicationView)
    def annotate_application(
        entry_id: str,
        request: TextRequest,
        token: Optional[str] = Depends(current_token),
    ) -> ApplicationView:
        return _application_to_view(_unwrap(portal.annotate_application(token, entry_id, request.text)))

    @app.put("/v1/applications/{entry_id}/message", response_model=ApplicationView)
    def message_applicant(
        entry_id: str,
        request: TextRequest,
        token: Optional[str] = Depends(current_token),
    ) -> ApplicationView:
        return _application_to_view(_unwrap(portal.message_applicant(token, entry_id, request.text)))

    @app.delete("/v1/applications/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_application(entry_id: str, token: Optional[str] = Depends(current_token)) -> Response:
        _unwrap(portal.delete_application(token, entry_id))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # -- accounts --------------------------------------------------------
    @app.get("/v1/accounts", response_model=AccountListResponse)
    def list_accounts(
        token: Optional[str] = Depends(current_token),
        q: Optional[str] = Query(default=None, max_length=128),
    ) -> AccountListResponse:
        accounts = _unwrap(portal.list_accounts(token, q))
        return AccountListResponse(accounts=[_account_to_view(account) for account in accounts])

    @app.put("/v1/accounts/{account_id}/role", response_model=AccountView)
    def manage_role(
        account_id: str,
        request: RoleRequest,
        token: Optional[str] = Depends(current_token),
    ) -> AccountView:
        return _account_to_view(_unwrap(portal.manage_role(token, account_id, request.role)))

    @app.patch("/v1/accounts/{account_id}", response_model=AccountView)
    def manage_account(
        account_id: str,
        request: AccountPatchRequest,
        token: Optional[str] = Depends(current_token),
    ) -> AccountView:
        patch = AccountPatch(
            display_name=request.display_name,
            email=request.email,
            password=request.password,
            status=request.status,
        )
        return _account_to_view(_unwrap(portal.manage_account(token, account_id, patch)))

    @app.post("/v1/accounts/{account_id}/ban", response_model=AccountView)
    def toggle_ban(account_id: str, token: Optional[str] = Depends(current_token)) -> AccountView:
        return _account_to_view(_unwrap(portal.toggle_ban(token, account_id)))

    @app.delete("/v1/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_account(account_id: str, token: Optional[str] = Depends(current_token)) -> Response:
        _unwrap(portal.delete_account(token, account_id))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # -- intake ----------------------------------------------------------
    @app.get("/v1/intake", response_model=IntakeResponse)
    def get_intake() -> IntakeResponse:
        return _schedule_to_response(_unwrap(portal.get_intake_status()))

    @app.put("/v1/intake/status", response_model=IntakeResponse)
    def set_intake_status(
        request: IntakeStatusRequest,
        token: Optional[str] = Depends(current_token),
    ) -> IntakeResponse:
        return _schedule_to_response(_unwrap(portal.set_intake_status(token, request.status)))

    @app.put("/v1/intake/schedule", response_model=IntakeResponse)
    def set_schedule(
        request: ScheduleRequest,
        token: Optional[str] = Depends(current_token),
    ) -> IntakeResponse:
        return _schedule_to_response(
            _unwrap(portal.set_schedule(token, request.open_date, request.close_date))
        )

    # -- content ---------------------------------------------------------
    @app.get("/v1/application-fields", response_model=ApplicationFieldsPayload)
    def get_application_fields() -> ApplicationFieldsPayload:
        fields = _unwrap(portal.get_application_fields())
        return ApplicationFieldsPayload(fields=[_field_to_view(field) for field in fields])

    @app.put("/v1/application-fields", response_model=ApplicationFieldsPayload)
    def set_application_fields(
        request: ApplicationFieldsPayload,
        token: Optional[str] = Depends(current_token),
    ) -> ApplicationFieldsPayload:
        saved = _unwrap(
            portal.set_application_fields(token, [field.model_dump() for field in request.fields])
        )
        return ApplicationFieldsPayload(fields=[_field_to_view(field) for field in saved])

    @app.get("/v1/content/{key}", response_model=ContentPayload)
    def get_content(key: str) -> ContentPayload:
        return ContentPayload(value=_unwrap(portal.get_content(key)))

    @app.put("/v1/content/{key}", response_model=ContentPayload)
    def set_content(
        key: str,
        request: ContentPayload,
        token: Optional[str] = Depends(current_token),
    ) -> ContentPayload:
        _unwrap(portal.set_content(token, key, request.value))
        return ContentPayload(value=request.value)


def create_app(
    *,
    portal: Portal | None = None,
    database: Database | None = None,
    config: PortalConfig | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the member portal."""

    app_config = config or (portal.config if portal is not None else load_config())
    if portal is None:
        db = database or Database(
            app_config.database_path or resolve_database_path(os.getenv("PORTAL_DB_PATH"))
        )
        db.initialize()
        portal = Portal(db, config=app_config)

    if not app_config.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    app = FastAPI(
        title="Member Portal API",
        version="0.1.0",
        description="Accounts, membership applications and intake scheduling.",
    )
    app.state.portal = portal
    app.state.database = portal.database

    register_api_routes(app, portal, secure_cookies=app_config.secure_cookies)
    return app


__all__ = ["create_app", "register_api_routes", "SESSION_COOKIE_NAME"]
