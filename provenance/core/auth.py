"""Wallet login: one-time nonce challenge, then a JWT session.

Signatures are only checked for shape here. Verifying them against the
wallet's key happens outside this package; the single-use nonce is what
stops a captured signature from being replayed.
"""

import logging
import re
import secrets
import time
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from provenance.config import Settings, settings as default_settings
from provenance.core.exceptions import BadRequestError, UnauthorizedError
from provenance.schemas.auth import NonceChallenge, SessionGrant
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^aleo1[a-z0-9]{58}$")

CHALLENGE_TEMPLATE = (
    "Sign this message to authenticate with your wallet.\n\n"
    "Nonce: {nonce}\nTimestamp: {timestamp}"
)


def create_session_token(address: str, cfg: Settings | None = None) -> str:
    cfg = cfg or default_settings
    now = datetime.now(timezone.utc)
    payload = {
        "sub": address,
        "exp": now + timedelta(hours=cfg.jwt_expire_hours),
        "iat": now,
    }
    return jwt.encode(payload, cfg.jwt_secret_key, algorithm=cfg.jwt_algorithm)


def decode_session_token(token: str, cfg: Settings | None = None) -> str:
    """Return the wallet address a session token was issued to."""
    cfg = cfg or default_settings
    try:
        payload = jwt.decode(token, cfg.jwt_secret_key, algorithms=[cfg.jwt_algorithm])
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")
    address = payload.get("sub")
    if not address:
        raise UnauthorizedError("Token missing subject")
    return address


class WalletSessions:
    def __init__(self, store: ProvenanceStore, cfg: Settings | None = None):
        self.store = store
        self.settings = cfg or default_settings

    def issue_nonce(self, address: str) -> NonceChallenge:
        if not ADDRESS_PATTERN.match(address or ""):
            raise BadRequestError("Invalid address format")
        nonce = secrets.token_hex(32)
        timestamp = int(time.time() * 1000)
        self.store.set_nonce(address, nonce)
        return NonceChallenge(
            nonce=nonce,
            message=CHALLENGE_TEMPLATE.format(nonce=nonce, timestamp=timestamp),
            timestamp=timestamp,
        )

    def verify_login(self, address: str, signature: str, nonce: str) -> SessionGrant:
        stored = self.store.get_nonce(address)
        if stored is None or not secrets.compare_digest(stored, nonce or ""):
            raise UnauthorizedError("Invalid or expired nonce")
        if not signature or len(signature) < self.settings.nonce_signature_min_length:
            raise UnauthorizedError("Invalid signature format")

        self.store.clear_nonce(address)
        brand = self.store.get_brand(address)
        logger.info("Session issued for %s... as %s", address[:12], "brand" if brand else "user")
        return SessionGrant(
            token=create_session_token(address, self.settings),
            address=address,
            role="brand" if brand else "user",
            brand=brand,
        )
