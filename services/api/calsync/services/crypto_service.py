"""Credential encryption at rest using libsodium (PyNaCl).

OAuth tokens never reach the database in clear text. The OAuth callback seals
the tokens Google hands back into an ``OAuthCredential``; the token manager
opens them when a provider call needs an access token and seals the refreshed
pair again. Nothing else reads the token columns.
"""

import base64
import binascii
import logging

import nacl.secret
import nacl.utils

from calsync.config import Settings
from calsync.models.oauth_credential import OAuthCredential

logger = logging.getLogger(__name__)


class CryptoService:
    """Seals and opens OAuth credential tokens with NaCl SecretBox (XSalsa20-Poly1305).

    Every ciphertext carries its own random nonce, so sealing the same token
    twice gives different bytes. Tampered or foreign-key ciphertext raises
    ``nacl.exceptions.CryptoError`` on open.

    Outside production a missing ``ENCRYPTION_KEY`` falls back to a per-process
    key, which makes stored credentials unreadable after a restart.
    """

    def __init__(self, settings: Settings) -> None:
        key_b64 = settings.encryption_key.get_secret_value()
        if not key_b64:
            if settings.app_env == "production":
                raise RuntimeError("ENCRYPTION_KEY must be set in production")
            logger.warning("No encryption key configured; stored credentials will not survive a restart")
            key = nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)
        else:
            try:
                key = base64.b64decode(key_b64, validate=True)
            except binascii.Error as exc:
                raise RuntimeError("ENCRYPTION_KEY must be base64") from exc
            if len(key) != nacl.secret.SecretBox.KEY_SIZE:
                raise RuntimeError(f"ENCRYPTION_KEY must decode to {nacl.secret.SecretBox.KEY_SIZE} bytes")
        self._box = nacl.secret.SecretBox(key)

    def encrypt(self, plaintext: str) -> bytes:
        """Ciphertext with the nonce prepended."""
        return self._box.encrypt(plaintext.encode("utf-8"))

    def decrypt(self, ciphertext: bytes) -> str:
        return self._box.decrypt(ciphertext).decode("utf-8")

    def encrypt_optional(self, plaintext: str | None) -> bytes | None:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: bytes | None) -> str | None:
        return self.decrypt(ciphertext) if ciphertext else None

    def seal_tokens(self, credential: OAuthCredential, access_token: str, refresh_token: str | None = None) -> None:
        """Store a token pair on the credential.

        Google omits the refresh token on repeat consent and on most refreshes;
        the stored one is kept then.
        """
        credential.encrypted_access_token = self.encrypt(access_token)
        if refresh_token:
            credential.encrypted_refresh_token = self.encrypt(refresh_token)

    def open_tokens(self, credential: OAuthCredential) -> tuple[str, str | None]:
        """(access_token, refresh_token) of a stored credential."""
        return (
            self.decrypt(credential.encrypted_access_token),
            self.decrypt_optional(credential.encrypted_refresh_token),
        )


_crypto_service: CryptoService | None = None


def get_crypto_service(settings: Settings) -> CryptoService:
    global _crypto_service
    if _crypto_service is None:
        _crypto_service = CryptoService(settings)
    return _crypto_service
