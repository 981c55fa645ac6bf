import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from auth import AdminOnly, CurrentUser, MenuWriter, ResponsableOnly, get_current_user
from database import (
    COMMANDES, COMPTES, DATABASE_NAME, MENUS, RESTAURANTS, UTILISATEURS,
    DocumentStore, current_store, get_store, init_store,
)
from errors import (
    Conflict, InvalidInput, NotFound, ServerError, Unauthenticated, Unauthorized,
    invalid_input, register_exception_handlers,
)
from identity import (
    AccountNotFound, DuplicateEmail, DuplicatePhone, IdentityError, IdentityProvider,
    InvalidCredentials, get_identity, init_identity,
)
from schemas import (
    Commande, CommandeCreate, CommandesOut, CreatedOut, MenuCreate, MenuItem, MenusOut,
    MessageOut, ProfilUpdate, ResponsableCreate, Restaurant, RestaurantCreate,
    RestaurantEtResponsableCreate, RestaurantEtResponsableOut, RestaurantsOut,
    SigninBody, SigninOut, SignupBody, StatutUpdate, UidOut, Utilisateur,
)

PORT = int(os.getenv("PORT", 8080))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = init_store()
    identity = init_identity(store.collection(COMPTES) if store is not None else None)
    if identity is not None:
        try:
            identity.ensure_indexes()
        except PyMongoError as e:
            logger.warning(f"Could not create identity indexes: {e}")
    yield


app = FastAPI(title="Restaurant Ordering API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# ---------------------- Helpers ----------------------
def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def display_name(prenom: str, nom: str) -> str:
    return f"{prenom} {nom}".strip()


def create_identity_account(
    identity: IdentityProvider,
    email: str,
    password: str,
    name: str,
    phone: str,
    phone_taken: str = "Ce numéro de téléphone est déjà utilisé",
) -> str:
    try:
        return identity.create_account(email, password, name, phone)
    except DuplicateEmail:
        raise Conflict("Cet email est déjà utilisé")
    except DuplicatePhone:
        raise Conflict(phone_taken)


def rollback_account(identity: IdentityProvider, uid: str) -> None:
    """Compensate a failed multi-write flow by removing the account it created."""
    try:
        identity.delete_account(uid)
    except PyMongoError:
        logger.exception(f"Rollback of identity account {uid} failed, account left orphaned")


# ---------------------- Menus ----------------------
@app.get("/menus/{restaurant_id}", response_model=MenusOut)
def list_menus(restaurant_id: str, store: DocumentStore = Depends(get_store)):
    try:
        menus = store.get_documents(MENUS, {"restaurantId": restaurant_id})
    except PyMongoError:
        logger.exception("Erreur récupération menus")
        raise ServerError()
    return {"menus": menus}


@app.post("/menus", status_code=201, response_model=CreatedOut)
@invalid_input("Données manquantes")
def create_menu(
    body: MenuCreate,
    user: CurrentUser = Depends(MenuWriter),
    store: DocumentStore = Depends(get_store),
):
    now = now_utc()
    model = MenuItem(
        nom=body.nom,
        prix=body.prix,
        categorie=body.categorie,
        disponible=True if body.disponible is None else body.disponible,
        restaurantId=body.restaurantId,
        createdAt=now,
        updatedAt=now,
    )
    try:
        mid = store.create_document(MENUS, model.model_dump())
    except PyMongoError:
        logger.exception("Erreur ajout menu")
        raise ServerError()
    logger.info(f"Menu {mid} added to restaurant {body.restaurantId} by {user.uid}")
    return {"message": "Plat ajouté", "id": mid}


# ---------------------- Restaurants ----------------------
@app.get("/restaurants", response_model=RestaurantsOut)
def list_restaurants(store: DocumentStore = Depends(get_store)):
    try:
        restaurants = store.get_documents(RESTAURANTS)
    except PyMongoError:
        logger.exception("Erreur récupération restaurants")
        raise ServerError()
    return {"restaurants": restaurants}


@app.post("/restaurants", status_code=201, response_model=CreatedOut)
@invalid_input("Tous les champs sont requis")
def create_restaurant(
    body: RestaurantCreate,
    user: CurrentUser = Depends(AdminOnly),
    store: DocumentStore = Depends(get_store),
):
    model = Restaurant(**body.model_dump(), createdAt=now_utc())
    try:
        rid = store.create_document(RESTAURANTS, model.model_dump(exclude_none=True))
    except PyMongoError:
        logger.exception("Erreur ajout restaurant")
        raise ServerError("Erreur lors de l'ajout du restaurant")
    logger.info(f"Restaurant {rid} created by {user.uid}")
    return {"message": "Restaurant ajouté avec succès", "id": rid}


# ---------------------- Commandes ----------------------
@app.post("/commandes", status_code=201, response_model=CreatedOut)
@invalid_input("Données manquantes ou invalides")
def create_commande(
    body: CommandeCreate,
    user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    if body.utilisateurId != user.uid:
        raise Unauthorized("Accès refusé : utilisateur non autorisé")
    now = now_utc()
    model = Commande(
        restaurantId=body.restaurantId,
        utilisateurId=body.utilisateurId,
        plats=body.plats,
        total=body.total,
        statut=body.statut or 'en attente',
        createdAt=now,
        updatedAt=now,
    )
    try:
        cid = store.create_document(COMMANDES, model.model_dump(exclude_none=True))
    except PyMongoError:
        logger.exception("Erreur création commande")
        raise ServerError()
    logger.info(f"Commande {cid} created for restaurant {body.restaurantId}")
    return {"message": "Commande créée avec succès", "id": cid}


@app.get("/commandes/utilisateur/{utilisateur_id}", response_model=CommandesOut)
def list_user_commandes(
    utilisateur_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    if utilisateur_id != user.uid:
        raise Unauthorized("Accès refusé")
    try:
        commandes = store.get_documents(
            COMMANDES, {"utilisateurId": utilisateur_id}, order_by="createdAt", descending=True
        )
    except PyMongoError:
        logger.exception("Erreur récupération commandes utilisateur")
        raise ServerError()
    return {"commandes": commandes}


@app.get("/commandes/{restaurant_id}", response_model=CommandesOut)
def list_restaurant_commandes(restaurant_id: str, store: DocumentStore = Depends(get_store)):
    try:
        commandes = store.get_documents(
            COMMANDES, {"restaurantId": restaurant_id}, order_by="createdAt", descending=True
        )
    except PyMongoError:
        logger.exception("Erreur récupération commandes")
        raise ServerError()
    return {"commandes": commandes}


@app.patch("/commandes/{commande_id}", response_model=MessageOut)
@invalid_input("Statut manquant ou invalide")
def update_commande_statut(
    commande_id: str,
    body: StatutUpdate,
    user: CurrentUser = Depends(ResponsableOnly),
    store: DocumentStore = Depends(get_store),
):
    try:
        found = store.update_document(COMMANDES, commande_id, {"statut": body.statut, "updatedAt": now_utc()})
    except PyMongoError:
        logger.exception("Erreur mise à jour commande")
        raise ServerError()
    if not found:
        raise NotFound("Commande non trouvée")
    logger.info(f"Commande {commande_id} set to '{body.statut}' by {user.uid}")
    return {"message": "Statut mis à jour avec succès"}


# ---------------------- Auth (mobile app) ----------------------
@app.post("/auth/signup", status_code=201, response_model=UidOut)
@invalid_input("Tous les champs obligatoires doivent être remplis")
def signup(
    body: SignupBody,
    store: DocumentStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity),
):
    try:
        uid = create_identity_account(
            identity, body.email, body.password, display_name(body.prenom, body.nom), body.telephone
        )
    except PyMongoError:
        logger.exception("Erreur inscription")
        raise ServerError("Erreur serveur lors de la création de l'utilisateur")

    now = now_utc()
    profile = Utilisateur(
        email=body.email,
        nom=body.nom,
        prenom=body.prenom,
        telephone=body.telephone,
        role=body.role,
        createdAt=now,
        updatedAt=now,
    )
    try:
        store.set_document(UTILISATEURS, uid, profile.model_dump(exclude_none=True))
    except PyMongoError:
        logger.exception("Erreur inscription")
        rollback_account(identity, uid)
        raise ServerError("Erreur serveur lors de la création de l'utilisateur")
    return {"message": "Utilisateur créé avec succès", "uid": uid}


@app.post("/auth/signin", response_model=SigninOut)
@invalid_input("Email et mot de passe requis")
def signin(body: SigninBody, identity: IdentityProvider = Depends(get_identity)):
    try:
        uid = identity.lookup_by_email(body.email)
        token = identity.sign_in(body.email, body.password)
    except (AccountNotFound, InvalidCredentials, PyMongoError) as e:
        logger.info(f"Erreur connexion: {type(e).__name__}")
        raise Unauthenticated("Email ou mot de passe incorrect")
    return {"message": "Connexion réussie", "uid": uid, "token": token}


@app.patch("/auth/profil", response_model=MessageOut)
@invalid_input("Données de profil invalides")
def update_profil(
    body: ProfilUpdate,
    user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity),
):
    supplied = body.model_dump(exclude_none=True)
    if not supplied:
        raise InvalidInput("Aucune donnée à mettre à jour")

    name = None
    if body.nom or body.prenom:
        name = display_name(body.prenom or user.prenom or "", body.nom or user.nom or "")

    try:
        identity.update_account(
            user.uid,
            email=body.email,
            phone=body.telephone,
            password=body.password,
            display_name=name,
        )
        updates = {k: v for k, v in supplied.items() if k in ("nom", "prenom", "telephone", "email")}
        if updates:
            updates["updatedAt"] = now_utc()
            store.update_document(UTILISATEURS, user.uid, updates)
    except DuplicateEmail:
        raise Conflict("Cet email est déjà utilisé")
    except DuplicatePhone:
        raise Conflict("Ce numéro est déjà utilisé")
    except AccountNotFound:
        raise NotFound("Utilisateur non trouvé")
    except (IdentityError, PyMongoError):
        logger.exception("Erreur mise à jour profil")
        raise ServerError("Erreur lors de la mise à jour du profil")
    return {"message": "Profil mis à jour avec succès"}


# ---------------------- Admin (web app) ----------------------
@app.post("/admin/creer-responsable", status_code=201, response_model=UidOut)
@invalid_input("Champs obligatoires manquants")
def creer_responsable(
    body: ResponsableCreate,
    admin: CurrentUser = Depends(AdminOnly),
    store: DocumentStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity),
):
    try:
        uid = create_identity_account(
            identity, body.email, body.password, display_name(body.prenom, body.nom), body.telephone
        )
    except PyMongoError:
        logger.exception("Erreur création responsable")
        raise ServerError()

    now = now_utc()
    profile = Utilisateur(
        email=body.email,
        nom=body.nom,
        prenom=body.prenom,
        telephone=body.telephone,
        role='responsable',
        restaurantId=body.restaurantId,
        createdAt=now,
        updatedAt=now,
    )
    try:
        store.set_document(UTILISATEURS, uid, profile.model_dump(exclude_none=True))
    except PyMongoError:
        logger.exception("Erreur création responsable")
        rollback_account(identity, uid)
        raise ServerError()
    logger.info(f"Responsable {uid} created for restaurant {body.restaurantId} by {admin.uid}")
    return {"message": "Responsable créé avec succès", "uid": uid}


@app.post("/admin/ajouter-restaurant-et-responsable", status_code=201, response_model=RestaurantEtResponsableOut)
@invalid_input("Champs obligatoires manquants")
def ajouter_restaurant_et_responsable(
    body: RestaurantEtResponsableCreate,
    admin: CurrentUser = Depends(AdminOnly),
    store: DocumentStore = Depends(get_store),
    identity: IdentityProvider = Depends(get_identity),
):
    """Account, then restaurant, then directory entry.

    Not atomic. If a store write fails the identity account is removed again,
    but a restaurant that was already inserted stays.
    """
    name = display_name(body.responsablePrenom, body.responsableNom)
    try:
        uid = create_identity_account(
            identity, body.responsableEmail, body.responsablePassword, name, body.telephone,
            phone_taken="Ce numéro est déjà utilisé",
        )
    except PyMongoError:
        logger.exception("Erreur création restaurant et responsable")
        raise ServerError()

    now = now_utc()
    restaurant = Restaurant(
        nom=body.nomRestaurant,
        adresse=body.adresse,
        responsableNom=name,
        emailResponsable=body.responsableEmail,
        responsableId=uid,
        createdAt=now,
    )
    try:
        rid = store.create_document(RESTAURANTS, restaurant.model_dump(exclude_none=True))
        profile = Utilisateur(
            nom=body.responsableNom,
            prenom=body.responsablePrenom,
            email=body.responsableEmail,
            telephone=body.telephone,
            role='responsable',
            restaurantId=rid,
            createdAt=now,
            updatedAt=now,
        )
        store.set_document(UTILISATEURS, uid, profile.model_dump(exclude_none=True))
    except PyMongoError:
        logger.exception("Erreur création restaurant et responsable")
        rollback_account(identity, uid)
        raise ServerError()

    logger.info(f"Restaurant {rid} and responsable {uid} created by {admin.uid}")
    return {
        "message": "Restaurant et responsable créés avec succès",
        "restaurantId": rid,
        "responsableUid": uid,
    }


# ---------------------- Misc ----------------------
@app.get("/")
def read_root():
    return {"message": "Restaurant Ordering API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": DATABASE_NAME,
        "collections": [],
    }
    store = current_store()
    if store is None:
        return response
    try:
        response["collections"] = store.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
