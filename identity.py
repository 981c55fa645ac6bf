"""
Identity provider: accounts, passwords and bearer tokens.

Accounts live in their own collection (`comptes`), separate from the user
directory. Nothing outside this module ever sees a password or its hash.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", 60 * 24 * 14))  # 14 days

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class IdentityError(Exception):
    """Base class for identity-provider failures"""


class DuplicateEmail(IdentityError):
    pass


class DuplicatePhone(IdentityError):
    pass


class AccountNotFound(IdentityError):
    pass


class InvalidToken(IdentityError):
    pass


class InvalidCredentials(IdentityError):
    pass


class IdentityProvider:
    def __init__(
        self,
        accounts: Collection,
        secret: str = JWT_SECRET,
        algorithm: str = JWT_ALG,
        token_expire_min: int = TOKEN_EXPIRE_MIN,
    ):
        self.accounts = accounts
        self.secret = secret
        self.algorithm = algorithm
        self.token_expire_min = token_expire_min

    def ensure_indexes(self) -> None:
        self.accounts.create_index("email", unique=True)
        self.accounts.create_index("telephone", unique=True)

    # ---------------------- Tokens ----------------------
    def issue_token(self, uid: str) -> str:
        now = datetime.now(timezone.utc)
        exp = now + timedelta(minutes=self.token_expire_min)
        return jwt.encode({"sub": uid, "iat": now, "exp": exp}, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> str:
        """Return the uid a valid token was issued for."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidToken(str(e))
        uid = payload.get("sub")
        if not uid or self.accounts.find_one({"_id": uid}) is None:
            raise InvalidToken("Unknown subject")
        return uid

    # ---------------------- Accounts ----------------------
    @staticmethod
    def _raise_duplicate(e: DuplicateKeyError) -> None:
        """Map a unique-index violation (a concurrent write won the race) to its identity error."""
        key_pattern = (e.details or {}).get("keyPattern") or {}
        if "email" in key_pattern:
            raise DuplicateEmail(str(e)) from e
        if "telephone" in key_pattern:
            raise DuplicatePhone(str(e)) from e
        raise e

    def _check_unique(self, email: Optional[str], phone: Optional[str], exclude_uid: Optional[str] = None) -> None:
        if email:
            existing = self.accounts.find_one({"email": email.lower()})
            if existing and existing["_id"] != exclude_uid:
                raise DuplicateEmail(email)
        if phone:
            existing = self.accounts.find_one({"telephone": phone})
            if existing and existing["_id"] != exclude_uid:
                raise DuplicatePhone(phone)

    def create_account(self, email: str, password: str, display_name: str, phone: str) -> str:
        self._check_unique(email, phone)
        now = datetime.now(timezone.utc)
        uid = str(ObjectId())
        try:
            self.accounts.insert_one({
                "_id": uid,
                "email": email.lower(),
                "telephone": phone,
                "displayName": display_name,
                "passwordHash": pwd_context.hash(password),
                "emailVerified": False,
                "createdAt": now,
                "updatedAt": now,
            })
        except DuplicateKeyError as e:
            self._raise_duplicate(e)
        logger.info(f"Identity account created: {uid}")
        return uid

    def update_account(
        self,
        uid: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> None:
        self._check_unique(email, phone, exclude_uid=uid)
        fields: Dict[str, Any] = {}
        if email:
            fields["email"] = email.lower()
        if phone:
            fields["telephone"] = phone
        if password:
            fields["passwordHash"] = pwd_context.hash(password)
        if display_name:
            fields["displayName"] = display_name
        if not fields:
            return
        fields["updatedAt"] = datetime.now(timezone.utc)
        try:
            res = self.accounts.update_one({"_id": uid}, {"$set": fields})
        except DuplicateKeyError as e:
            self._raise_duplicate(e)
        if res.matched_count == 0:
            raise AccountNotFound(uid)

    def lookup_by_email(self, email: str) -> str:
        account = self.accounts.find_one({"email": email.lower()})
        if account is None:
            raise AccountNotFound(email)
        return account["_id"]

    def sign_in(self, email: str, password: str) -> str:
        """Check the password and hand back a fresh bearer token."""
        account = self.accounts.find_one({"email": email.lower()})
        if account is None or not pwd_context.verify(password, account["passwordHash"]):
            raise InvalidCredentials(email)
        return self.issue_token(account["_id"])

    def delete_account(self, uid: str) -> None:
        self.accounts.delete_one({"_id": uid})
        logger.warning(f"Identity account removed: {uid}")


_identity: Optional[IdentityProvider] = None


def init_identity(accounts: Optional[Collection]) -> Optional[IdentityProvider]:
    global _identity
    _identity = IdentityProvider(accounts) if accounts is not None else None
    return _identity


def get_identity() -> IdentityProvider:
    if _identity is None:
        raise HTTPException(status_code=500, detail="Identity provider not configured")
    return _identity
