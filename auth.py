"""
Authorization pipeline.

    get_current_user  -> bearer token -> uid -> `utilisateurs` document
    RoleChecker(...)  -> get_current_user + role membership

Both are FastAPI dependencies, so they run before the handler and before body
validation.
"""

import logging
from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.dependencies.models import Dependant
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.security.utils import get_authorization_scheme_param
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import UTILISATEURS, DocumentStore, get_store
from errors import NotFound, ServerError, Unauthenticated, Unauthorized
from identity import IdentityProvider, InvalidToken, get_identity

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """The authenticated caller, as resolved from the user directory"""
    uid: str
    email: Optional[str] = None
    nom: Optional[str] = None
    prenom: Optional[str] = None
    telephone: Optional[str] = None
    role: Optional[str] = None
    restaurantId: Optional[str] = None


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: DocumentStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity),
) -> CurrentUser:
    if not creds or not creds.credentials:
        raise Unauthenticated("Token manquant ou invalide")
    try:
        uid = identity.verify_token(creds.credentials)
    except InvalidToken as e:
        logger.info(f"Rejected bearer token: {e}")
        raise Unauthenticated("Token invalide ou expiré")
    except PyMongoError:
        logger.exception("Token verification failed")
        raise ServerError()

    try:
        doc = store.get_document(UTILISATEURS, uid)
    except PyMongoError:
        logger.exception("User directory lookup failed")
        raise ServerError()
    if doc is None:
        raise NotFound("Utilisateur non trouvé")
    return CurrentUser(uid=uid, **{k: v for k, v in doc.items() if k in CurrentUser.model_fields and k != "uid"})


def _requires_auth(dependant: Dependant) -> bool:
    return any(d.call is get_current_user or _requires_auth(d) for d in dependant.dependencies)


def unauthenticated_detail(request: Request) -> Optional[str]:
    """
    The 401 message a protected route owes this request, or None.

    A body that is not JSON at all fails before any dependency runs, so the
    exception handler asks here first to keep 401 ahead of 400.
    """
    dependant = getattr(request.scope.get("route"), "dependant", None)
    if dependant is None or not _requires_auth(dependant):
        return None
    scheme, token = get_authorization_scheme_param(request.headers.get("Authorization"))
    if scheme.lower() != "bearer" or not token:
        return "Token manquant ou invalide"
    provider = request.app.dependency_overrides.get(get_identity, get_identity)
    try:
        provider().verify_token(token)
    except InvalidToken:
        return "Token invalide ou expiré"
    except (HTTPException, PyMongoError):
        logger.exception("Token verification failed")
    return None


class RoleChecker:
    """Dependency that lets through only users whose role is in `allowed_roles`."""

    def __init__(self, allowed_roles: Iterable[str]):
        self.allowed_roles = frozenset(allowed_roles)

    def __call__(self, user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.role:
            raise Unauthorized("Rôle utilisateur non défini")
        if user.role not in self.allowed_roles:
            raise Unauthorized("Accès refusé : rôle non autorisé")
        return user


# Route-declared role sets
MenuWriter = RoleChecker(["restaurant_admin", "responsable"])
ResponsableOnly = RoleChecker(["responsable"])
AdminOnly = RoleChecker(["admin"])
