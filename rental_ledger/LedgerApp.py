import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from rental_ledger.db.deps import get_ledger_db
from rental_ledger.models.ledger_models import User
from rental_ledger.schemas.clients import ClientUpsert
from rental_ledger.schemas.equipment import EquipmentUpsert, MaintenanceAdjustRequest
from rental_ledger.schemas.payments import AddPaymentDto, UpdatePaymentDto
from rental_ledger.schemas.rentals import CreateRentalDto, UpdateRentalDto
from rental_ledger.schemas.returns import AddReturnDto, UpdateReturnDto
from rental_ledger.schemas.users import CreateUserRequest, LoginRequest
from rental_ledger.services import (
    activity_service,
    client_service,
    equipment_service,
    inventory_service,
    payment_service,
    rental_service,
    return_service,
    user_service,
)
from rental_ledger.services.errors import ContentionError, LedgerError, NotFoundError, UnauthorizedError
from rental_ledger.services.session_tokens import create_session, get_session

app = FastAPI(title="Rental Ledger")

API_LOGGER = logging.getLogger("rental_ledger.api")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
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
    allow_headers=["*"],
)


def _to_http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UnauthorizedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ContentionError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _run(operation, *args, **kwargs):
    try:
        return operation(*args, **kwargs)
    except LedgerError as exc:
        API_LOGGER.info("%s rejected: %s", getattr(operation, "__name__", operation), exc)
        raise _to_http_error(exc) from exc


def get_actor_id(x_session_token: str | None = Header(None, alias="X-Session-Token")) -> int | None:
    """Resolve the acting user from a signed session token; anonymous when absent."""
    if not x_session_token:
        return None
    session = get_session(x_session_token)
    if not session or not session.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")
    return int(session["userId"])


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.post("/api/auth/login")
def auth_login(payload: LoginRequest, db: Session = Depends(get_ledger_db)):
    try:
        user = user_service.authenticate(db, payload.username, payload.password)
    except UnauthorizedError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    token = create_session({"userId": user["id"], "role": user["role"]})
    return {"sessionToken": token, "user": user}


@app.get("/api/auth/me")
def auth_me(
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    if actor_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    user = db.get(User, actor_id)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return {"user": user_service.serialize_user(user)}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_ledger_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/clients")
def get_clients(
    page: int = Query(1),
    limit: int = Query(10),
    db: Session = Depends(get_ledger_db),
):
    return client_service.list_clients(db, page, limit)


@app.post("/api/clients")
def create_client(
    payload: ClientUpsert,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(client_service.add_client, db, payload, actor_id)


@app.put("/api/clients/{client_id}")
def update_client(
    client_id: int,
    payload: ClientUpsert,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(client_service.update_client, db, client_id, payload, actor_id)


@app.delete("/api/clients/{client_id}")
def delete_client(
    client_id: int,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(client_service.delete_client, db, client_id, actor_id)


@app.get("/api/equipment")
def get_equipment(db: Session = Depends(get_ledger_db)):
    return equipment_service.list_equipment(db)


@app.get("/api/equipment/available")
def get_available_equipment(db: Session = Depends(get_ledger_db)):
    return equipment_service.list_available_equipment(db)


@app.get("/api/equipment/{equipment_id}")
def get_equipment_item(equipment_id: int, db: Session = Depends(get_ledger_db)):
    return _run(equipment_service.get_equipment, db, equipment_id)


@app.post("/api/equipment")
def create_equipment(
    payload: EquipmentUpsert,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(equipment_service.add_equipment, db, payload, actor_id)


@app.put("/api/equipment/{equipment_id}")
def update_equipment(
    equipment_id: int,
    payload: EquipmentUpsert,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(equipment_service.update_equipment, db, equipment_id, payload, actor_id)


@app.delete("/api/equipment/{equipment_id}")
def delete_equipment(
    equipment_id: int,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(equipment_service.delete_equipment, db, equipment_id, actor_id)


@app.post("/api/equipment/{equipment_id}/maintenance")
def update_equipment_maintenance(
    equipment_id: int,
    payload: MaintenanceAdjustRequest,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(inventory_service.update_equipment_maintenance, db, equipment_id, payload, actor_id)


@app.get("/api/rentals")
def get_rentals(
    page: int = Query(1),
    limit: int = Query(10),
    status: str | None = Query(None),
    db: Session = Depends(get_ledger_db),
):
    return rental_service.list_rentals(db, page, limit, status)


@app.get("/api/rentals/active")
def get_active_rentals(db: Session = Depends(get_ledger_db)):
    return rental_service.list_active_rentals(db)


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: int, db: Session = Depends(get_ledger_db)):
    return _run(rental_service.get_rental, db, rental_id)


@app.post("/api/rentals")
def create_rental(
    payload: CreateRentalDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(rental_service.create_rental, db, payload, actor_id)


@app.put("/api/rentals/{rental_id}")
def update_rental(
    rental_id: int,
    payload: UpdateRentalDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(rental_service.update_rental, db, rental_id, payload, actor_id)


@app.delete("/api/rentals/{rental_id}")
def delete_rental(
    rental_id: int,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(rental_service.delete_rental, db, rental_id, actor_id)


@app.get("/api/rentals/{rental_id}/payments")
def get_rental_payments(rental_id: int, db: Session = Depends(get_ledger_db)):
    return payment_service.list_payments_by_rental(db, rental_id)


@app.get("/api/rentals/{rental_id}/reconciliation")
def get_rental_reconciliation(rental_id: int, db: Session = Depends(get_ledger_db)):
    return _run(payment_service.check_rental_reconciliation, db, rental_id)


@app.get("/api/payments")
def get_payments(
    page: int = Query(1),
    limit: int = Query(10),
    db: Session = Depends(get_ledger_db),
):
    return payment_service.list_payments(db, page, limit)


@app.post("/api/payments")
def create_payment(
    payload: AddPaymentDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(payment_service.add_payment, db, payload, actor_id)


@app.put("/api/payments/{payment_id}")
def update_payment(
    payment_id: int,
    payload: UpdatePaymentDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(payment_service.update_payment, db, payment_id, payload, actor_id)


@app.delete("/api/payments/{payment_id}")
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(payment_service.delete_payment, db, payment_id, actor_id)


@app.get("/api/returns")
def get_returns(
    page: int = Query(1),
    limit: int = Query(10),
    db: Session = Depends(get_ledger_db),
):
    return return_service.list_returns(db, page, limit)


@app.post("/api/returns")
def create_return(
    payload: AddReturnDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(return_service.add_return, db, payload, actor_id)


@app.put("/api/returns/{return_id}")
def update_return(
    return_id: int,
    payload: UpdateReturnDto,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(return_service.update_return, db, return_id, payload, actor_id)


@app.delete("/api/returns/{return_id}")
def delete_return(
    return_id: int,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(return_service.delete_return, db, return_id, actor_id)


@app.get("/api/audit-logs")
def get_audit_logs(
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_ledger_db),
):
    return activity_service.list_audit_logs(db, page, limit)


@app.get("/api/admin/users")
def list_admin_users(
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    _run(user_service.require_role, db, actor_id, "admin")
    return user_service.list_users(db)


@app.post("/api/admin/users")
def create_admin_user(
    payload: CreateUserRequest,
    db: Session = Depends(get_ledger_db),
    actor_id: int | None = Depends(get_actor_id),
):
    return _run(user_service.create_user, db, payload, actor_id)
