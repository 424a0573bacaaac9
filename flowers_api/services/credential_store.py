from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from flowers_api.logging_config import get_logger
from flowers_api.models import ROLE_CLIENT, User
from flowers_api.services.telegram_service import mask_token

logger = get_logger("credential_store")


@dataclass(frozen=True)
class TenantCredential:
    tenant_id: UUID
    credential: str


class TenantNotFoundError(Exception):
    def __init__(self, tenant_id: UUID):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")


class CredentialStore:
    """Bot tokens of vendor accounts, read from and written to the users table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def list_active(self) -> list[TenantCredential]:
        """Every client tenant whose telegram_token is set and non-blank."""
        db = self._session_factory()
        try:
            rows = (
                db.query(User.id, User.telegram_token)
                .filter(
                    User.role == ROLE_CLIENT,
                    User.telegram_token.isnot(None),
                    User.telegram_token != "",
                )
                .all()
            )
        finally:
            db.close()

        credentials = []
        for tenant_id, token in rows:
            token = (token or "").strip()
            if token:
                credentials.append(TenantCredential(tenant_id=tenant_id, credential=token))
        return credentials

    def upsert(self, tenant_id: UUID, credential: str) -> None:
        """Record the token on its tenant, creating a client tenant if none matches. Idempotent."""
        db = self._session_factory()
        try:
            user = db.query(User).filter(User.telegram_token == credential).first()
            if user is None:
                user = db.query(User).filter(User.id == tenant_id).first()

            if user is None:
                db.add(User(id=tenant_id, role=ROLE_CLIENT, telegram_token=credential))
                logger.info(
                    "Created tenant for bot token",
                    extra={"context": {"tenant_id": str(tenant_id), "token": mask_token(credential)}},
                )
            elif user.telegram_token != credential:
                user.telegram_token = credential
                user.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def set_token(self, tenant_id: UUID, credential: Optional[str]) -> User:
        """Set or clear (None) a tenant's token. The reconciler picks it up on its next run."""
        db = self._session_factory()
        try:
            user = db.query(User).filter(User.id == tenant_id).first()
            if user is None:
                raise TenantNotFoundError(tenant_id)
            user.telegram_token = credential
            user.updated_at = datetime.now(timezone.utc)
            db.commit()
            logger.info(
                "Tenant bot token updated",
                extra={
                    "context": {
                        "tenant_id": str(tenant_id),
                        "token": mask_token(credential),
                        "enabled": credential is not None,
                    }
                },
            )
            return user
        finally:
            db.close()
