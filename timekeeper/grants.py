from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta

from .db import Database
from .durations import utc_now
from .errors import AccessDenied, Expired, NotAuthenticated, NotFound, ValidationError
from .models import (
    GRANT_ACTIVE,
    GRANT_PENDING,
    GRANT_REVOKED,
    AccessGrant,
    PendingToken,
)

QR_APP = "onsite-timekeeper"
QR_ACTION = "link"
DEFAULT_TOKEN_TTL = timedelta(minutes=5)


def require_identity(user_id: str | None) -> str:
    if not user_id or not user_id.strip():
        raise NotAuthenticated("Not authenticated")
    return user_id.strip()


def build_qr_payload(token: PendingToken) -> str:
    return json.dumps(
        {
            "app": QR_APP,
            "action": QR_ACTION,
            "token": token.token,
            "owner_name": token.owner_name,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


def parse_qr_payload(text: str) -> str:
    """Return the token carried by a scanned QR payload, or raise ValidationError."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid QR code") from exc

    if not isinstance(data, dict):
        raise ValidationError("Invalid QR code")
    if data.get("app") != QR_APP or data.get("action") != QR_ACTION:
        raise ValidationError("Invalid QR code")

    token = data.get("token")
    if not isinstance(token, str) or not token:
        raise ValidationError("Invalid QR code")
    return token


class AccessManager:
    """Lifecycle of viewer access to an owner's timesheet.

    An owner generates a short-lived token (shown as a QR code). A viewer
    redeems it, which creates a grant that is either active straight away or,
    with ``require_owner_approval``, pending until the owner approves it.
    Owners may revoke at any time; revocation is final.
    """

    def __init__(
        self,
        db: Database,
        *,
        require_owner_approval: bool = False,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.require_owner_approval = require_owner_approval
        self.token_ttl = token_ttl
        self.logger = logger or logging.getLogger(__name__)

    def generate_token(self, owner_id: str, owner_name: str, now_utc: datetime | None = None) -> PendingToken:
        owner_id = require_identity(owner_id)
        now = now_utc or utc_now()
        token = self.db.insert_token(
            token=uuid.uuid4().hex,
            owner_id=owner_id,
            owner_name=owner_name or "User",
            created_at=now,
            expires_at=now + self.token_ttl,
        )
        self.logger.info("Token generated: owner=%s expires=%s", owner_id, token.expires_at.isoformat())
        return token

    def redeem(self, token: str, viewer_id: str, now_utc: datetime | None = None) -> AccessGrant:
        viewer_id = require_identity(viewer_id)
        now = now_utc or utc_now()

        pending = self.db.get_token(token)
        if pending is None:
            raise NotFound("Token invalid or expired")
        # Expired tokens are left in place; nothing sweeps them.
        if pending.expires_at <= now:
            raise Expired("Token invalid or expired")
        if pending.owner_id == viewer_id:
            raise ValidationError("You cannot link to your own timesheet")

        status = GRANT_PENDING if self.require_owner_approval else GRANT_ACTIVE
        grant = self.db.redeem_pending_token(pending.id, viewer_id, status, now)
        self.logger.info(
            "Token redeemed: owner=%s viewer=%s grant=%s status=%s",
            grant.owner_id,
            viewer_id,
            grant.id,
            grant.status,
        )
        return grant

    def redeem_qr_payload(self, payload: str, viewer_id: str, now_utc: datetime | None = None) -> AccessGrant:
        return self.redeem(parse_qr_payload(payload), viewer_id, now_utc)

    def approve(self, grant_id: str, owner_id: str, now_utc: datetime | None = None) -> AccessGrant:
        grant = self._owned_grant(grant_id, owner_id)
        if grant.status != GRANT_PENDING:
            raise ValidationError(f"Only pending requests can be approved (status is {grant.status})")

        self.db.update_grant(grant.id, {"status": GRANT_ACTIVE, "accepted_at": now_utc or utc_now()})
        self.logger.info("Grant approved: grant=%s viewer=%s", grant.id, grant.viewer_id)
        return self._owned_grant(grant_id, owner_id)

    def revoke(self, grant_id: str, owner_id: str, now_utc: datetime | None = None) -> AccessGrant:
        grant = self._owned_grant(grant_id, owner_id)
        if grant.status not in (GRANT_ACTIVE, GRANT_PENDING):
            raise ValidationError(f"Access is already {grant.status}")

        self.db.update_grant(grant.id, {"status": GRANT_REVOKED, "revoked_at": now_utc or utc_now()})
        self.logger.info("Grant revoked: grant=%s viewer=%s", grant.id, grant.viewer_id)
        return self._owned_grant(grant_id, owner_id)

    def check_access(self, owner_id: str, viewer_id: str) -> None:
        viewer_id = require_identity(viewer_id)
        if owner_id == viewer_id:
            return
        # Same answer whether or not the owner exists.
        if self.db.find_grant(owner_id, viewer_id, status=GRANT_ACTIVE) is None:
            raise AccessDenied("You don't have an active access grant to view this worker's hours.")

    def list_owner_grants(self, owner_id: str) -> list[AccessGrant]:
        return self.db.list_grants_by_owner(require_identity(owner_id))

    def list_viewable_owners(self, viewer_id: str) -> list[AccessGrant]:
        return self.db.list_grants_by_viewer(require_identity(viewer_id), GRANT_ACTIVE)

    def _owned_grant(self, grant_id: str, owner_id: str) -> AccessGrant:
        owner_id = require_identity(owner_id)
        grant = self.db.get_grant(grant_id)
        if grant is None:
            raise NotFound("Access grant not found")
        if grant.owner_id != owner_id:
            raise AccessDenied("Only the owner can change this access grant")
        return grant
