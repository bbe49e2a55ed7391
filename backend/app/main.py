"""FastAPI application entrypoint for the visitor analytics API."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from . import aggregation, auth, ingestion, ledger, schemas
from .auth import Identity, verify_admin
from .database import Database
from .errors import (
    AnalyticsError,
    InvalidInput,
    NotFound,
    StorageUnavailable,
    Unauthenticated,
    UnknownVisitor,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    InvalidInput: 422,
    UnknownVisitor: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}

ingestion_router = APIRouter(prefix="/api/analytics", tags=["ingestion"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_http_error(exc: AnalyticsError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")


# Ingestion: open to anonymous clients.


@ingestion_router.post("/visitor", response_model=schemas.VisitOut)
def record_visitor(visit_in: schemas.VisitIn, db: Session = Depends(get_db)) -> schemas.VisitOut:
    try:
        visit = ledger.record_visit(db, visit_in.visitor_id, visit_in.user_data.to_columns())
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc
    return schemas.VisitOut(is_new=visit.is_new)


@ingestion_router.post("/event", response_model=schemas.FactOut, status_code=status.HTTP_201_CREATED)
def ingest_event(event_in: schemas.EventIn, db: Session = Depends(get_db)) -> schemas.FactOut:
    try:
        event_id = ingestion.append_event(
            db,
            event_in.visitor_id,
            event_in.event_type,
            event_data=event_in.event_data,
            page_url=event_in.page_url,
            session_id=event_in.session_id,
        )
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc
    return schemas.FactOut(id=event_id)


@ingestion_router.post("/pageview", response_model=schemas.FactOut, status_code=status.HTTP_201_CREATED)
def ingest_page_view(page_view_in: schemas.PageViewIn, db: Session = Depends(get_db)) -> schemas.FactOut:
    try:
        page_view_id = ingestion.append_page_view(
            db,
            page_view_in.visitor_id,
            page_view_in.page_url,
            page_title=page_view_in.page_title,
            session_id=page_view_in.session_id,
            time_spent=page_view_in.time_spent,
            scroll_depth=page_view_in.scroll_depth,
        )
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc
    return schemas.FactOut(id=page_view_id)


@ingestion_router.post(
    "/registration", response_model=schemas.FactOut, status_code=status.HTTP_201_CREATED
)
def ingest_registration(
    registration_in: schemas.RegistrationIn, db: Session = Depends(get_db)
) -> schemas.FactOut:
    try:
        registration_id = ingestion.append_registration(
            db,
            registration_in.visitor_id,
            registration_in.email,
            name=registration_in.name,
            phone=registration_in.phone,
            registration_data=registration_in.registration_data,
        )
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc
    return schemas.FactOut(id=registration_id)


# Admin session


@admin_router.post("/login", response_model=schemas.SessionOut)
def login(
    login_in: schemas.LoginIn, response: Response, db: Session = Depends(get_db)
) -> schemas.SessionOut:
    try:
        identity, token = auth.login(db, login_in.email, login_in.password)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc

    response.set_cookie(
        auth.COOKIE_NAME,
        token,
        max_age=auth.get_token_ttl_seconds(),
        httponly=True,
        secure=auth.cookie_secure(),
        samesite="strict",
    )
    return schemas.SessionOut(email=identity.email)


@admin_router.post("/logout")
def logout(response: Response) -> dict:
    # The token itself stays valid until it expires.
    response.delete_cookie(auth.COOKIE_NAME)
    return {"success": True}


@admin_router.get("/verify", response_model=schemas.VerifyOut)
def verify(identity: Identity = Depends(verify_admin)) -> schemas.VerifyOut:
    return schemas.VerifyOut(email=identity.email)


# Dashboard reads: require a verified admin.


@admin_router.get("/stats", response_model=schemas.StatsOut)
def get_stats(
    _: Identity = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.StatsOut:
    try:
        return aggregation.get_stats(db)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc


@admin_router.get("/visitors", response_model=schemas.VisitorPage)
def list_visitors(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    _: Identity = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.VisitorPage:
    try:
        return aggregation.list_visitors(db, page=page, limit=limit)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc


@admin_router.get("/registrations", response_model=schemas.RegistrationPage)
def list_registrations(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    _: Identity = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.RegistrationPage:
    try:
        return aggregation.list_registrations(db, page=page, limit=limit)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc


@admin_router.get("/events", response_model=schemas.RecentEventsOut)
def list_events(
    limit: int = Query(100, ge=1, le=1000),
    _: Identity = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.RecentEventsOut:
    try:
        return aggregation.list_recent_events(db, limit=limit)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc


@admin_router.get("/visitor/{visitor_id}", response_model=schemas.VisitorDetailOut)
def get_visitor_detail(
    visitor_id: str,
    _: Identity = Depends(verify_admin),
    db: Session = Depends(get_db),
) -> schemas.VisitorDetailOut:
    try:
        return aggregation.get_visitor_detail(db, visitor_id)
    except AnalyticsError as exc:
        raise to_http_error(exc) from exc


def create_app(database: Optional[Database] = None) -> FastAPI:
    """Build the application around one store handle."""
    database = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info("Visitor analytics API started")
        yield
        database.dispose()
        logger.info("Visitor analytics API stopped")

    app = FastAPI(
        title="Visitor Analytics API",
        description="Tracks anonymous visitors and serves an authenticated dashboard read surface.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.database = database
    app.include_router(ingestion_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
