"""
Schemas for the Restaurant Ordering API

Document models, one per collection:
- Utilisateur -> utilisateurs (keyed by identity-provider uid)
- Restaurant -> restaurants
- MenuItem -> menus
- Commande -> commandes

followed by the request bodies and response envelopes of each route.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictStr, field_validator
from pydantic.networks import validate_email

Role = Literal['client', 'responsable', 'restaurant_admin', 'admin']

PHONE_PATTERN = r"^\+[1-9][0-9]{6,14}$"  # international format, e.g. +2376xxxxxxxx

# ints stay ints, so prices read back exactly as they were written
Price = Union[Annotated[int, Field(gt=0)], Annotated[float, Field(gt=0)]]
Amount = Union[Annotated[int, Field(ge=0)], Annotated[float, Field(ge=0)]]


class Utilisateur(BaseModel):
    """User directory entry. The document id is the identity-provider uid."""
    email: EmailStr
    nom: str
    prenom: str
    telephone: str
    role: Role = Field('client')
    restaurantId: Optional[str] = Field(None, description="Set for role 'responsable'")
    createdAt: datetime
    updatedAt: datetime


class Restaurant(BaseModel):
    nom: str
    adresse: str
    telephone: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    responsableId: Optional[str] = Field(None, description="Links to utilisateurs id")
    responsableNom: Optional[str] = None
    emailResponsable: Optional[str] = None
    createdAt: datetime


class MenuItem(BaseModel):
    nom: str
    prix: Price
    categorie: str
    disponible: bool = True
    restaurantId: str
    createdAt: datetime
    updatedAt: datetime


class Plat(BaseModel):
    """Order line item. No key is required; unknown keys sent by clients are kept."""
    model_config = ConfigDict(extra='allow')

    menuId: Optional[str] = None
    nom: Optional[str] = None
    prix: Optional[Amount] = None
    quantite: Optional[int] = Field(None, ge=1)


class Commande(BaseModel):
    restaurantId: str
    utilisateurId: str
    plats: List[Plat] = Field(..., min_length=1)
    total: Amount
    statut: str = 'en attente'
    createdAt: datetime
    updatedAt: datetime


# ---------------------- Request bodies ----------------------
class MenuCreate(BaseModel):
    nom: str = Field(..., min_length=1)
    prix: Price
    categorie: str = Field(..., min_length=1)
    restaurantId: str = Field(..., min_length=1)
    disponible: Optional[bool] = None


class RestaurantCreate(BaseModel):
    nom: str = Field(..., min_length=1)
    adresse: str = Field(..., min_length=1)
    telephone: str = Field(..., min_length=1)
    email: str
    description: str = Field(..., min_length=1)

    @field_validator('email')
    @classmethod
    def check_email(cls, v: str) -> str:
        validate_email(v)
        return v


class CommandeCreate(BaseModel):
    restaurantId: str = Field(..., min_length=1)
    utilisateurId: str = Field(..., min_length=1)
    plats: List[Plat] = Field(..., min_length=1)
    total: Amount
    statut: Optional[str] = None


class StatutUpdate(BaseModel):
    statut: StrictStr = Field(..., min_length=1)


class SignupBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    nom: str = Field(..., min_length=1)
    prenom: str = Field(..., min_length=1)
    telephone: str = Field(..., pattern=PHONE_PATTERN)
    role: Role = 'client'


class SigninBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ResponsableCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    nom: str = Field(..., min_length=1)
    prenom: str = Field(..., min_length=1)
    telephone: str = Field(..., pattern=PHONE_PATTERN)
    restaurantId: str = Field(..., min_length=1)


class RestaurantEtResponsableCreate(BaseModel):
    nomRestaurant: str = Field(..., min_length=1)
    adresse: str = Field(..., min_length=1)
    responsableNom: str = Field(..., min_length=1)
    responsablePrenom: str = Field(..., min_length=1)
    responsableEmail: EmailStr
    responsablePassword: str = Field(..., min_length=6)
    telephone: str = Field(..., pattern=PHONE_PATTERN)


class ProfilUpdate(BaseModel):
    nom: Optional[str] = Field(None, min_length=1)
    prenom: Optional[str] = Field(None, min_length=1)
    telephone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


# ---------------------- Responses ----------------------
class MessageOut(BaseModel):
    message: str


class CreatedOut(MessageOut):
    id: str


class UidOut(MessageOut):
    uid: str


class SigninOut(UidOut):
    token: str


class RestaurantEtResponsableOut(MessageOut):
    restaurantId: str
    responsableUid: str


class MenusOut(BaseModel):
    menus: List[Dict[str, Any]]


class RestaurantsOut(BaseModel):
    restaurants: List[Dict[str, Any]]


class CommandesOut(BaseModel):
    commandes: List[Dict[str, Any]]
