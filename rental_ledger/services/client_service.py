from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_ledger.models.ledger_models import Client, Rental
from rental_ledger.schemas.clients import ClientUpsert

from .activity_service import record_activity, snapshot
from .errors import InvalidStateError, NotFoundError
from .pagination import paginate
from .transaction import ledger_transaction


CLIENT_LOGGER = logging.getLogger("rental_ledger.clients")

CLIENT_FIELDS = ("name", "contact_number", "email", "project_site", "address")

_CLIENT_FIELD_MAP = {
    "name": "name",
    "contactNumber": "contact_number",
    "email": "email",
    "projectSite": "project_site",
    "address": "address",
}


def add_client(db: Session, payload: ClientUpsert, actor_id: int | None = None) -> dict:
    if not (payload.name or "").strip():
        raise InvalidStateError("Client name is required.")
    with ledger_transaction(db):
        client = Client(
            name=payload.name.strip(),
            contact_number=payload.contactNumber,
            email=payload.email,
            project_site=payload.projectSite,
            address=payload.address,
            created_at=datetime.now(),
        )
        db.add(client)
        db.flush()
        after = snapshot(client, CLIENT_FIELDS)

    record_activity(db, actor_id, "CreateClient", "clients", client.id, None, after)
    return {"id": client.id}


def update_client(db: Session, client_id: int, payload: ClientUpsert, actor_id: int | None = None) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    with ledger_transaction(db):
        client = db.get(Client, client_id)
        if not client:
            raise NotFoundError(f"Client {client_id} not found.")
        before = snapshot(client, CLIENT_FIELDS)
        for key, value in changes.items():
            column = _CLIENT_FIELD_MAP.get(key)
            if column is None:
                continue
            if column == "name" and not (value or "").strip():
                raise InvalidStateError("Client name is required.")
            setattr(client, column, value)
        client.updated_at = datetime.now()
        db.flush()
        after = snapshot(client, CLIENT_FIELDS)

    record_activity(db, actor_id, "UpdateClient", "clients", client_id, before, after)
    return {"affectedCount": 1}


def delete_client(db: Session, client_id: int, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        client = db.get(Client, client_id)
        if not client:
            return {"affectedCount": 0}
        rental_count = db.execute(select(func.count(Rental.id)).where(Rental.client_id == client_id)).scalar_one()
        if rental_count:
            raise InvalidStateError(f"Client {client_id} has {rental_count} rental(s) and cannot be deleted.")
        before = snapshot(client, CLIENT_FIELDS)
        db.delete(client)

    CLIENT_LOGGER.info("Client %s deleted", client_id)
    record_activity(db, actor_id, "DeleteClient", "clients", client_id, before, None)
    return {"affectedCount": 1}


def serialize_client(client: Client) -> dict:
    return {
        "id": client.id,
        "name": client.name,
        "contactNumber": client.contact_number,
        "email": client.email,
        "projectSite": client.project_site,
        "address": client.address,
        "createdAt": client.created_at,
    }


def list_clients(db: Session, page: int = 1, limit: int = 10) -> dict:
    stmt = select(Client).order_by(Client.created_at.desc(), Client.id.desc())
    return paginate(db, stmt, serialize_client, page, limit)
