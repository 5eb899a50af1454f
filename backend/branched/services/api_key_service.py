import logging

from sqlalchemy.orm import Session

from branched.config import get_settings
from branched.core.errors import NotFoundOrForbiddenError
from branched.core.security import generate_api_secret, hash_api_secret, verify_api_secret
from branched.models.api_key import ApiKey
from branched.models.chat_session import utcnow

logger = logging.getLogger(__name__)


class ApiKeyService:
    """API key issuing, listing, revocation and verification.

    A key reads ``<prefix><key id>.<secret>``. The id locates the row; the
    secret is checked against its bcrypt hash.
    """

    @staticmethod
    def generate(db: Session, user_id: str) -> tuple[ApiKey, str]:
        """Create a key for ``user_id``. Returns the row and the full key, shown only once."""
        secret = generate_api_secret()
        api_key = ApiKey(user_id=user_id, key_hash=hash_api_secret(secret))
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        logger.info(f"Generated API key {api_key.id} for user {user_id}")
        return api_key, f"{get_settings().api_key_prefix}{api_key.id}.{secret}"

    @staticmethod
    def list_keys(db: Session, user_id: str) -> list[ApiKey]:
        """All keys of ``user_id``, newest first, revoked ones included."""
        return db.query(ApiKey).filter(
            ApiKey.user_id == user_id
        ).order_by(ApiKey.created_at.desc(), ApiKey.id.desc()).all()

    @staticmethod
    def deactivate(db: Session, user_id: str, key_id: str) -> ApiKey:
        """Revoke a key. Keys of other users look missing."""
        api_key = db.query(ApiKey).filter(
            ApiKey.id == key_id,
            ApiKey.user_id == user_id
        ).first()
        if not api_key:
            raise NotFoundOrForbiddenError("API key not found")

        api_key.is_active = False
        db.commit()
        db.refresh(api_key)

        logger.info(f"Deactivated API key {key_id} of user {user_id}")
        return api_key

    @staticmethod
    def is_api_key(credential: str) -> bool:
        return credential.startswith(get_settings().api_key_prefix)

    @staticmethod
    def authenticate(db: Session, credential: str) -> str | None:
        """Owner of an active key, or None. Stamps ``last_used_at`` on success."""
        prefix = get_settings().api_key_prefix
        if not credential.startswith(prefix):
            return None

        key_id, _, secret = credential[len(prefix):].partition(".")
        if not key_id or not secret:
            return None

        api_key = db.query(ApiKey).filter(
            ApiKey.id == key_id,
            ApiKey.is_active.is_(True)
        ).first()
        if not api_key or not verify_api_secret(secret, api_key.key_hash):
            return None

        api_key.last_used_at = utcnow()
        db.commit()
        return api_key.user_id
