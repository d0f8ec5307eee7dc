import logging
import os
from datetime import date, timedelta

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

from equipment_loans.db.deps import get_loan_db
from equipment_loans.db.store import SqlAlchemyStore
from equipment_loans.models.loan_models import User
from equipment_loans.schemas.actors import Actor
from equipment_loans.schemas.loans import (
    CreateLoanDto,
    DateRange,
    ProcessReturnDto,
    RejectLoanRequest,
    ReturnRequestDto,
)
from equipment_loans.services.equipment_ledger import serialize_equipment
from equipment_loans.services.errors import HTTP_STATUS_BY_KIND, LoanError
from equipment_loans.services.loan_state_machine import (
    activate_loan,
    approve_loan,
    create_loan,
    process_return,
    reject_loan,
    request_return,
    serialize_loan,
)
from equipment_loans.services.notification_service import (
    mark_notification_read,
    run_due_notifications,
    serialize_notification,
)
from equipment_loans.services.query_service import (
    available_equipment,
    dashboard_stats,
    equipment_usage_stats,
    loans_for,
    notifications_for,
    overdue_loans,
    student_activity_stats,
)

app = FastAPI()

API_LOGGER = logging.getLogger("equipment_loans.api")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(LoanError)
def handle_loan_error(request: Request, exc: LoanError):
    status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 400)
    API_LOGGER.info("%s %s -> %s %s", request.method, request.url.path, status_code, exc.kind)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def _require_actor_or_401(db: Session, x_actor_id: str | None) -> Actor:
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=401, detail="Not logged in.")
    user = db.get(User, actor_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user.")
    if not user.IsActive:
        raise HTTPException(status_code=403, detail="Account is inactive.")
    try:
        return Actor.from_user(user)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail=f"Unsupported role: {user.Role}") from exc


def _require_admin_or_403(actor: Actor) -> None:
    if actor.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required.")


def _date_range(start_date: date | None, end_date: date | None) -> DateRange:
    end = end_date or date.today()
    start = start_date or (end - timedelta(days=30))
    return DateRange(startDate=start, endDate=end)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_loan_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/equipment/available")
def get_available_equipment(
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    _require_actor_or_401(db, x_actor_id)
    return [serialize_equipment(unit) for unit in available_equipment(SqlAlchemyStore(db))]


@app.get("/api/loans")
def get_loans(
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return [serialize_loan(loan) for loan in loans_for(SqlAlchemyStore(db), actor)]


@app.get("/api/loans/overdue")
def get_overdue_loans(
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return [serialize_loan(loan) for loan in overdue_loans(SqlAlchemyStore(db), actor=actor)]


@app.post("/api/loans", status_code=201)
def post_loan(
    payload: CreateLoanDto,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    loan = create_loan(SqlAlchemyStore(db), actor, payload)
    return serialize_loan(loan)


@app.post("/api/loans/{loan_id}/approve")
def post_approve_loan(
    loan_id: str,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_loan(approve_loan(SqlAlchemyStore(db), actor, loan_id))


@app.post("/api/loans/{loan_id}/reject")
def post_reject_loan(
    loan_id: str,
    payload: RejectLoanRequest | None = None,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_loan(reject_loan(SqlAlchemyStore(db), actor, loan_id, payload))


@app.post("/api/loans/{loan_id}/activate")
def post_activate_loan(
    loan_id: str,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_loan(activate_loan(SqlAlchemyStore(db), actor, loan_id))


@app.post("/api/loans/{loan_id}/request-return")
def post_request_return(
    loan_id: str,
    payload: ReturnRequestDto | None = None,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_loan(request_return(SqlAlchemyStore(db), actor, loan_id, payload))


@app.post("/api/loans/{loan_id}/process-return")
def post_process_return(
    loan_id: str,
    payload: ProcessReturnDto,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_loan(process_return(SqlAlchemyStore(db), actor, loan_id, payload))


@app.get("/api/notifications")
def get_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    notifications = notifications_for(SqlAlchemyStore(db), actor, unread_only=unread_only)
    return [serialize_notification(n) for n in notifications]


@app.post("/api/notifications/{notification_id}/read")
def post_notification_read(
    notification_id: str,
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return serialize_notification(mark_notification_read(SqlAlchemyStore(db), actor, notification_id))


@app.post("/api/notifications/run")
def run_notifications(
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    _require_admin_or_403(actor)
    return {"created": run_due_notifications(SqlAlchemyStore(db))}


@app.get("/api/reports/equipment-usage")
def get_equipment_usage(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return equipment_usage_stats(SqlAlchemyStore(db), _date_range(start_date, end_date), actor)


@app.get("/api/reports/student-activity")
def get_student_activity(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return student_activity_stats(SqlAlchemyStore(db), _date_range(start_date, end_date), actor)


@app.get("/api/reports/summary")
def get_summary(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: Session = Depends(get_loan_db),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
):
    actor = _require_actor_or_401(db, x_actor_id)
    return dashboard_stats(SqlAlchemyStore(db), actor, _date_range(start_date, end_date))
