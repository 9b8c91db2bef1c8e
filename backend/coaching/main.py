"""FastAPI application entrypoint and HTTP controllers.

Controllers are intentionally thin: they accept requests, build the
caller's `RequestContext`, delegate to services, and return JSON
documents. Errors are returned as `{"error": "..."}`.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET /health
- POST /programs, GET /programs/{id}
- POST /programs/{id}/cohorts
- POST /programs/{id}/enrollments
- GET /instances
- GET, PATCH, DELETE /instances/{id}
- GET, PATCH /instances/{id}/weeks/{week_num}
- GET /instances/{id}/days/{global_day_index}
- GET, PATCH /coaching/clients/{client_id}
- GET /tasks
"""

import json
import logging
import time
import uuid
from datetime import date
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import repositories, services
from .auth import RequestContext, get_request_context, require_coach
from .config import settings
from .database import create_db_and_tables, get_session
from .schemas import (CoachingDataPatch, CohortIn, EnrollmentIn, InstanceUpdate, LoginIn, ProgramIn,
                      RegisterIn, WeekUpdateIn)

app = FastAPI(title="Coaching Programs API")
logger = logging.getLogger("coaching.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _log_fields(request: Request, req_id: str, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": req_id,
            "path": request.url.path,
            "method": request.method,
            **extra,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": request.client.host if request.client else "unknown",
        },
        ensure_ascii=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _log_fields(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _log_fields(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(services.NotFound)
async def not_found_handler(request: Request, exc: services.NotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(services.AccessDenied)
async def access_denied_handler(request: Request, exc: services.AccessDenied):
    return JSONResponse(status_code=403, content={"error": str(exc)})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal Error"})


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns the existing user if the username is already taken by the
    same organization, so automation can call it repeatedly.
    """
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        if existing.organization_id != payload.organization_id:
            raise HTTPException(status_code=409, detail='username already taken')
        return {'id': existing.id, 'username': existing.username}
    user = services.AuthService(db).register(
        payload.username, payload.password, payload.organization_id, payload.role,
        payload.first_name, payload.last_name,
    )
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


# --- programs -----------------------------------------------------------

def _program_document(program) -> dict:
    return {
        'id': program.id,
        'organizationId': program.organization_id,
        'name': program.name,
        'type': program.type,
        'lengthDays': program.length_days,
        'includeWeekends': program.include_weekends,
        'dailyFocusSlots': program.daily_focus_slots,
        'weeks': program.weeks or [],
    }


@app.post('/programs', status_code=201)
def create_program(payload: ProgramIn, db: Session = Depends(get_session), ctx: RequestContext = Depends(require_coach)):
    try:
        program = services.ProgramService(db).create_program(
            ctx.organization_id, payload.name, payload.type, payload.length_days,
            payload.include_weekends, payload.daily_focus_slots,
            [w.to_document() for w in payload.weeks],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _program_document(program)


@app.get('/programs/{program_id}')
def get_program(program_id: int, db: Session = Depends(get_session),
                ctx: RequestContext = Depends(get_request_context)):
    return _program_document(services.ProgramService(db).get_program(program_id, ctx.organization_id))


@app.post('/programs/{program_id}/cohorts', status_code=201)
def add_cohort(program_id: int, payload: CohortIn, db: Session = Depends(get_session),
               ctx: RequestContext = Depends(require_coach)):
    try:
        cohort = services.ProgramService(db).add_cohort(
            program_id, ctx.organization_id, payload.name, payload.start_date, payload.end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        'id': cohort.id,
        'programId': cohort.program_id,
        'name': cohort.name,
        'startDate': cohort.start_date.isoformat() if cohort.start_date else None,
        'endDate': cohort.end_date.isoformat() if cohort.end_date else None,
    }


@app.post('/programs/{program_id}/enrollments', status_code=201)
def enroll(program_id: int, payload: EnrollmentIn, db: Session = Depends(get_session),
           ctx: RequestContext = Depends(require_coach)):
    """Enroll a user and ensure the matching program instance.

    `instanceId` is null when the instance could not be created; the
    enrollment itself still succeeds.
    """
    try:
        enrollment, instance_id = services.EnrollmentService(db).enroll(
            program_id, payload.user_id, ctx.organization_id, payload.start_date, payload.cohort_id)
    except services.DuplicateEnrollment as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        'id': enrollment.id,
        'programId': enrollment.program_id,
        'userId': enrollment.user_id,
        'cohortId': enrollment.cohort_id,
        'status': enrollment.status,
        'startDate': enrollment.start_date.isoformat() if enrollment.start_date else None,
        'instanceId': instance_id,
    }


# --- instances ----------------------------------------------------------

@app.get('/instances')
def list_instances(
    program_id: Optional[int] = Query(default=None, alias='programId'),
    cohort_id: Optional[int] = Query(default=None, alias='cohortId'),
    enrollment_id: Optional[int] = Query(default=None, alias='enrollmentId'),
    user_id: Optional[int] = Query(default=None, alias='userId'),
    type: Optional[Literal['cohort', 'individual']] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_session),
    ctx: RequestContext = Depends(get_request_context),
):
    """List the organization's instances (summaries without weeks).

    Clients only see their own individual instances.
    """
    if not ctx.is_coach:
        user_id = ctx.user_id
    instances, has_more = services.ProgramInstanceService(db).list_instances(
        ctx.organization_id, program_id=program_id, cohort_id=cohort_id, enrollment_id=enrollment_id,
        user_id=user_id, type=type, limit=limit, offset=offset,
    )
    return {'instances': instances, 'hasMore': has_more, 'limit': limit, 'offset': offset}


def _visible_instance(svc: services.ProgramInstanceService, instance_id: int, ctx: RequestContext):
    instance = svc.get_instance(instance_id, ctx.organization_id)
    if not ctx.is_coach and instance.type == 'individual' and instance.user_id != ctx.user_id:
        raise services.InstanceNotFound("Instance not found")
    return instance


@app.get('/instances/{instance_id}')
def get_instance(instance_id: int, db: Session = Depends(get_session),
                 ctx: RequestContext = Depends(get_request_context)):
    svc = services.ProgramInstanceService(db)
    return _visible_instance(svc, instance_id, ctx).to_document()


@app.patch('/instances/{instance_id}')
def update_instance(instance_id: int, payload: InstanceUpdate, db: Session = Depends(get_session),
                    ctx: RequestContext = Depends(require_coach)):
    try:
        instance = services.ProgramInstanceService(db).update_instance(
            instance_id, ctx.organization_id, payload.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return instance.to_document(include_weeks=False)


@app.delete('/instances/{instance_id}', status_code=204)
def delete_instance(instance_id: int, db: Session = Depends(get_session),
                    ctx: RequestContext = Depends(require_coach)):
    services.ProgramInstanceService(db).delete_instance(instance_id, ctx.organization_id)
    return Response(status_code=204)


@app.get('/instances/{instance_id}/weeks/{week_num}')
def get_week(instance_id: int, week_num: int, db: Session = Depends(get_session),
             ctx: RequestContext = Depends(get_request_context)):
    svc = services.ProgramInstanceService(db)
    _visible_instance(svc, instance_id, ctx)
    return svc.get_week(instance_id, week_num, ctx.organization_id)


@app.patch('/instances/{instance_id}/weeks/{week_num}')
def update_week(instance_id: int, week_num: int, payload: WeekUpdateIn, db: Session = Depends(get_session),
                ctx: RequestContext = Depends(require_coach)):
    """Edit an instance week; with `distributeTasksNow` its tasks are re-placed.

    For individual instances the client's missing tasks are created and
    counted in `tasksCreated`.
    """
    svc = services.ProgramInstanceService(db)
    instance, created = svc.update_instance_week(instance_id, week_num, payload.to_updates(), ctx.organization_id)
    week = next(w for w in instance.weeks if w.get('weekNumber') == week_num)
    return {'success': True, 'week': week, 'tasksCreated': created}


@app.get('/instances/{instance_id}/days/{global_day_index}')
def get_day(instance_id: int, global_day_index: int, db: Session = Depends(get_session),
            ctx: RequestContext = Depends(get_request_context)):
    svc = services.ProgramInstanceService(db)
    _visible_instance(svc, instance_id, ctx)
    week, day = svc.get_day(instance_id, global_day_index, ctx.organization_id)
    return {'weekNumber': week.get('weekNumber'), 'weekTheme': week.get('theme'), 'day': day}


# --- coaching data ------------------------------------------------------

@app.get('/coaching/clients/{client_id}')
def get_coaching_data(client_id: int, db: Session = Depends(get_session),
                      ctx: RequestContext = Depends(get_request_context)):
    if not ctx.is_coach and client_id != ctx.user_id:
        raise HTTPException(status_code=403, detail='Access denied')
    data = services.CoachingDataService(db).get(client_id, ctx.organization_id)
    if data is None:
        raise HTTPException(status_code=404, detail='Coaching data not found')
    doc = data.to_document()
    if not ctx.is_coach:
        doc.pop('privateNotes', None)
    return doc


@app.patch('/coaching/clients/{client_id}')
def update_coaching_data(client_id: int, payload: CoachingDataPatch, db: Session = Depends(get_session),
                         ctx: RequestContext = Depends(require_coach)):
    data = services.CoachingDataService(db).update(
        client_id, ctx.organization_id, ctx.user_id, payload.to_patch(), can_view_all=ctx.can_view_all)
    return data.to_document()


# --- tasks --------------------------------------------------------------

@app.get('/tasks')
def list_tasks(on: Optional[date] = Query(default=None, alias='date'), db: Session = Depends(get_session),
               ctx: RequestContext = Depends(get_request_context)):
    """The caller's tasks, optionally restricted to one date."""
    tasks = repositories.TaskRepository(db).list_for_user(ctx.user_id, on)
    return [t.to_document() for t in tasks]
