"""
Authentication and role checks shared by every protected route.
"""

from unittest.mock import patch

import pytest
from pymongo.errors import PyMongoError

from database import COMMANDES, MENUS, RESTAURANTS, UTILISATEURS
from tests.conftest import bearer

PROTECTED_ROUTES = [
    ("post", "/menus", {"nom": "Ndolé", "prix": 3500, "categorie": "plat", "restaurantId": "r1"}),
    ("post", "/restaurants", {"nom": "R", "adresse": "A", "telephone": "1", "email": "r@example.com", "description": "D"}),
    ("post", "/commandes", {"restaurantId": "r1", "utilisateurId": "u1", "plats": [{"nom": "x", "prix": 1}], "total": 1}),
    ("patch", "/commandes/c1", {"statut": "livrée"}),
    ("get", "/commandes/utilisateur/u1", None),
    ("post", "/admin/creer-responsable", {}),
    ("post", "/admin/ajouter-restaurant-et-responsable", {}),
    ("patch", "/auth/profil", {"nom": "X"}),
]

ROLE_RESTRICTED = [
    ("client", "post", "/menus", {"nom": "Ndolé", "prix": 3500, "categorie": "plat", "restaurantId": "r1"}, MENUS),
    ("admin", "post", "/menus", {"nom": "Ndolé", "prix": 3500, "categorie": "plat", "restaurantId": "r1"}, MENUS),
    ("responsable", "post", "/restaurants",
     {"nom": "R", "adresse": "A", "telephone": "1", "email": "r@example.com", "description": "D"}, RESTAURANTS),
    ("restaurant_admin", "patch", "/commandes/c1", {"statut": "livrée"}, COMMANDES),
    ("responsable", "post", "/admin/creer-responsable",
     {"email": "n@example.com", "password": "secret123", "nom": "N", "prenom": "P",
      "telephone": "+237600009999", "restaurantId": "r1"}, UTILISATEURS),
]


def _call(client, method, path, body, headers=None):
    kwargs = {"headers": headers or {}}
    if body is not None:
        kwargs["json"] = body
    return getattr(client, method)(path, **kwargs)


class TestAuthentication:
    @pytest.mark.parametrize("method,path,body", PROTECTED_ROUTES)
    def test_missing_token(self, client, method, path, body):
        response = _call(client, method, path, body)
        assert response.status_code == 401
        assert response.json() == {"error": "Token manquant ou invalide"}

    @pytest.mark.parametrize("method,path,body", PROTECTED_ROUTES)
    def test_invalid_token(self, client, method, path, body):
        response = _call(client, method, path, body, bearer("not-a-token"))
        assert response.status_code == 401
        assert response.json() == {"error": "Token invalide ou expiré"}

    def test_non_bearer_scheme(self, client, make_user):
        _, token = make_user()
        response = client.patch("/auth/profil", json={"nom": "X"}, headers={"Authorization": f"Basic {token}"})
        assert response.status_code == 401

    def test_token_for_user_without_directory_entry(self, client, make_user):
        uid, token = make_user(with_profile=False)
        response = client.get(f"/commandes/utilisateur/{uid}", headers=bearer(token))
        assert response.status_code == 404
        assert response.json() == {"error": "Utilisateur non trouvé"}

    def test_authentication_runs_before_body_validation(self, client):
        response = client.post("/menus", json={})
        assert response.status_code == 401

    @pytest.mark.parametrize("path", ["/commandes", "/menus", "/restaurants"])
    def test_malformed_body_without_token(self, client, path):
        response = client.post(path, content="{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 401
        assert response.json() == {"error": "Token manquant ou invalide"}

    def test_malformed_body_with_invalid_token(self, client):
        headers = {"Content-Type": "application/json", **bearer("not-a-token")}
        response = client.post("/commandes", content="{not json", headers=headers)
        assert response.status_code == 401
        assert response.json() == {"error": "Token invalide ou expiré"}

    def test_malformed_body_with_valid_token(self, client, make_user):
        _, token = make_user()
        headers = {"Content-Type": "application/json", **bearer(token)}
        response = client.post("/commandes", content="{not json", headers=headers)
        assert response.status_code == 400

    def test_malformed_body_on_public_route(self, client):
        response = client.post("/auth/signin", content="{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json() == {"error": "Email et mot de passe requis"}


class TestRoles:
    @pytest.mark.parametrize("role,method,path,body,collection", ROLE_RESTRICTED)
    def test_disallowed_role_is_rejected_without_mutation(self, client, db, make_user, role, method, path, body, collection):
        _, token = make_user(role=role)
        before = len(db[collection].docs)

        response = _call(client, method, path, body, bearer(token))

        assert response.status_code == 403
        assert response.json() == {"error": "Accès refusé : rôle non autorisé"}
        assert len(db[collection].docs) == before

    def test_user_without_role(self, client, make_user):
        _, token = make_user(role=None)
        response = client.patch("/commandes/c1", json={"statut": "livrée"}, headers=bearer(token))
        assert response.status_code == 403
        assert response.json() == {"error": "Rôle utilisateur non défini"}

    @pytest.mark.parametrize("role", ["restaurant_admin", "responsable"])
    def test_menu_writers(self, client, make_user, role):
        _, token = make_user(role=role)
        response = client.post(
            "/menus",
            json={"nom": "Ndolé", "prix": 3500, "categorie": "plat", "restaurantId": "r1"},
            headers=bearer(token),
        )
        assert response.status_code == 201

    def test_directory_failure(self, client, store, make_user):
        uid, token = make_user()
        with patch.object(store, "get_document", side_effect=PyMongoError("down")):
            response = client.get(f"/commandes/utilisateur/{uid}", headers=bearer(token))
        assert response.status_code == 500
        assert response.json() == {"error": "Erreur serveur"}
