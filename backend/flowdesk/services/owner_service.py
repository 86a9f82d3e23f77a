# Overview: Service-layer operations for owners (business accounts) and their settings.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Owner
from ..validation import NotFoundError, ConflictError

OWNER_MUTABLE_FIELDS = {"name", "email", "currency", "tax_rate_bps", "is_active"}


def get_owner(owner_id: int, *, active_only: bool = True) -> Owner:
    owner = db.session.get(Owner, owner_id)
    if owner is None or (active_only and not owner.is_active):
        raise NotFoundError("Owner not found")
    return owner


def create_owner(*, patch: dict) -> Owner:
    """
    Create a business account.

    currency and tax_rate_bps default to the app's configured business
    defaults (FLOWDESK_DEFAULT_CURRENCY / FLOWDESK_DEFAULT_TAX_RATE_BPS).
    """
    if patch.get("email"):
        existing = db.session.query(Owner).filter_by(email=patch["email"]).first()
        if existing:
            raise ConflictError("An owner with this email already exists.")

    owner = Owner(
        name=patch["name"],
        email=patch.get("email"),
        currency=patch.get("currency") or current_app.config["DEFAULT_CURRENCY"],
        tax_rate_bps=patch.get("tax_rate_bps", current_app.config["DEFAULT_TAX_RATE_BPS"]),
        is_active=patch.get("is_active", True),
    )
    db.session.add(owner)
    db.session.commit()
    current_app.logger.info("Created owner id=%s name=%r", owner.id, owner.name)
    return owner


def update_owner(*, owner_id: int, patch: dict) -> Owner:
    owner = get_owner(owner_id)

    if patch.get("email") and patch["email"] != owner.email:
        existing = (
            db.session.query(Owner)
            .filter(Owner.email == patch["email"], Owner.id != owner.id)
            .first()
        )
        if existing:
            raise ConflictError("An owner with this email already exists.")

    for k, v in patch.items():
        if k in OWNER_MUTABLE_FIELDS:
            setattr(owner, k, v)
    db.session.commit()
    return owner


def list_owners() -> list[Owner]:
    return db.session.query(Owner).order_by(Owner.id.asc()).all()
