"""
Credential vault for stored marketplace sessions.

Session payloads are written by the API service when a user connects an
account. They are stored as AES-256-GCM ciphertext in the text form
``ivHex:authTagHex:cipherHex`` and decrypted here once per platform run.
"""

import os
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from api import database
from api.logging_config import logger
from core.error_handler import AccountNotConnected, DecryptionError
from core.models import AccountStatus, PlatformAccount, SessionPayload

IV_LENGTH = 16
TAG_LENGTH = 16


def derive_key(secret: str) -> bytes:
    """First 32 characters of the secret, right-padded with '0', as UTF-8."""
    return secret[:32].ljust(32, "0").encode("utf-8")


def encrypt_session_payload(payload: Dict[str, Any], secret: str) -> str:
    """Encrypt a session payload dict into the stored text form."""
    if not secret:
        raise DecryptionError("ENCRYPTION_KEY is not configured")
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, json.dumps(payload).encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_session_payload(text: str, secret: str) -> Dict[str, Any]:
    """
    Decrypt the stored text form back into a payload dict.

    Raises:
        DecryptionError: if the key is missing, the text is malformed, the
            authentication tag does not verify, or the plaintext is not a
            JSON object.
    """
    if not secret:
        raise DecryptionError("ENCRYPTION_KEY is not configured")
    if not text:
        raise DecryptionError("No session payload stored")

    parts = text.split(":")
    if len(parts) != 3:
        raise DecryptionError("Malformed session payload")

    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as e:
        raise DecryptionError("Malformed session payload") from e

    if not iv or len(tag) != TAG_LENGTH:
        raise DecryptionError("Malformed session payload")

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError("Session payload failed authentication") from e

    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecryptionError("Session payload is not valid JSON") from e

    if not isinstance(data, dict):
        raise DecryptionError("Session payload is not a JSON object")
    return data


class CredentialVault:
    """Reads and writes encrypted platform sessions in the account table."""

    def __init__(self, secret: str, db_path: Optional[Union[str, Path]] = None):
        self.secret = secret
        self.db_path = db_path

    async def get_account(self, user_id: str, platform: str) -> Optional[PlatformAccount]:
        row = await database.get_platform_account(user_id, platform, db_path=self.db_path)
        return PlatformAccount.from_row(row) if row else None

    async def get_decrypted_session(self, user_id: str, platform: str) -> SessionPayload:
        account = await self.get_account(user_id, platform)
        if account is None or account.status != AccountStatus.CONNECTED:
            raise AccountNotConnected(platform)
        if not account.session_payload_encrypted:
            raise DecryptionError(f"No session payload stored for {platform}")

        data = decrypt_session_payload(account.session_payload_encrypted, self.secret)
        return SessionPayload.from_dict(data)

    async def connect_account(
        self,
        user_id: str,
        platform: str,
        payload: Dict[str, Any],
        session_meta: Optional[Dict[str, Any]] = None,
    ):
        """Encrypt a captured session and store it as a connected account."""
        payload = dict(payload)
        payload.setdefault("capturedAt", datetime.now().isoformat())
        encrypted = encrypt_session_payload(payload, self.secret)
        await database.save_platform_account(
            user_id,
            platform,
            status=AccountStatus.CONNECTED.value,
            session_payload_encrypted=encrypted,
            session_meta=session_meta,
            db_path=self.db_path,
        )
        logger.info(f"Connected {platform} account for user {user_id}")
