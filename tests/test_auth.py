import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from webrana.core.config import settings
from webrana.core.security import TokenError, create_access_token, create_refresh_token, decode_token
from webrana.services import auth as auth_service


async def _register_and_login(client, email="Alice@Webrana.io", password="s3cretpass"):
    r = await client.post("/auth/register", json={"email": email, "password": password, "full_name": "Alice"})
    assert r.status_code == 201, r.text
    r = await client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


async def test_register_normalizes_email(client):
    r = await client.post(
        "/auth/register",
        json={"email": "Bob@Webrana.io", "password": "hunter22x", "full_name": "Bob"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["email"] == "bob@webrana.io"
    assert body["role"] == "customer"
    assert "password_hash" not in body

    r = await client.post(
        "/auth/register",
        json={"email": "bob@webrana.io", "password": "hunter22x", "full_name": "Bob again"},
    )
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "EMAIL_ALREADY_EXISTS"


@pytest.mark.parametrize("password", ["short1", "onlyletters", "12345678"])
async def test_weak_passwords_are_rejected(client, password):
    r = await client.post(
        "/auth/register",
        json={"email": "weak@webrana.io", "password": password, "full_name": "Weak"},
    )
    assert r.status_code == 422


async def test_login_returns_token_pair(client):
    tokens = await _register_and_login(client)

    assert tokens["token_type"] == "bearer"
    assert tokens["expires_in"] == 15 * 60
    claims = decode_token(tokens["access_token"])
    assert claims["email"] == "alice@webrana.io"
    assert claims["role"] == "customer"

    r = await client.get("/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert r.status_code == 200
    assert r.json()["balance"] == 0
    assert r.json()["last_login_at"] is not None


async def test_wrong_password(client):
    await _register_and_login(client)
    r = await client.post("/auth/login", json={"email": "alice@webrana.io", "password": "nope12345"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_CREDENTIALS"


async def test_refresh_rotates_tokens(client):
    tokens = await _register_and_login(client)

    r = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    rotated = r.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    r = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_TOKEN"


async def test_access_token_cannot_be_used_to_refresh(client):
    tokens = await _register_and_login(client)
    r = await client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert r.status_code == 401


async def test_unknown_refresh_token_is_rejected(client, customer):
    token, _ = create_refresh_token(user_id=customer.id)
    r = await client.post("/auth/refresh", json={"refresh_token": token})
    assert r.status_code == 401


async def test_logout_revokes_refresh_token(client):
    tokens = await _register_and_login(client)
    r = await client.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200

    r = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401


async def test_change_password_revokes_sessions(client):
    tokens = await _register_and_login(client)
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    r = await client.post(
        "/auth/change-password",
        json={"current_password": "wrong-one1", "new_password": "newpass123"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_CURRENT_PASSWORD"

    r = await client.post(
        "/auth/change-password",
        json={"current_password": "s3cretpass", "new_password": "newpass123"},
        headers=headers,
    )
    assert r.status_code == 200

    r = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 401
    r = await client.post("/auth/login", json={"email": "alice@webrana.io", "password": "newpass123"})
    assert r.status_code == 200


async def test_suspended_user_is_locked_out(client, admin_headers):
    tokens = await _register_and_login(client)
    user_id = tokens["user"]["id"]

    r = await client.patch(f"/admin/users/{user_id}", json={"status": "suspended"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "suspended"

    r = await client.get("/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert r.status_code == 401

    r = await client.post("/auth/login", json={"email": "alice@webrana.io", "password": "s3cretpass"})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "ACCOUNT_SUSPENDED"


async def test_profile_update(client, customer_headers):
    r = await client.patch("/me", json={"full_name": "Renamed", "telegram_chat_id": "12345"}, headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["full_name"] == "Renamed"
    assert r.json()["telegram_chat_id"] == "12345"


def test_tampered_token_is_rejected(customer_headers):
    token = customer_headers["Authorization"].split()[1]
    with pytest.raises(TokenError):
        decode_token(token[:-2] + "xx")


async def test_missing_bearer_token(client):
    r = await client.get("/me")
    assert r.status_code == 401
    assert r.json()["detail"] == "Missing bearer token"


async def test_profile_carries_balance_without_password(db, customer, fund):
    await fund(customer, 12_500)
    profile = await auth_service.get_profile(db, customer)

    assert profile["balance"] == 12_500
    assert profile["currency"] == "IDR"
    assert "password_hash" not in profile


@pytest.fixture
def rs256_keys(monkeypatch):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "RS256")
    # keys from env vars usually arrive with escaped newlines
    monkeypatch.setattr(settings, "JWT_PRIVATE_KEY", private_pem.replace("\n", "\\n"))
    monkeypatch.setattr(settings, "JWT_PUBLIC_KEY", public_pem)
    return private_pem, public_pem


def test_rs256_tokens_are_signed_with_private_key(rs256_keys):
    _, public_pem = rs256_keys
    token = create_access_token(user_id=7, email="rsa@webrana.io", role="admin", status="active")

    assert jwt.get_unverified_header(token)["alg"] == "RS256"
    claims = decode_token(token)
    assert (claims["sub"], claims["role"]) == ("7", "admin")
    assert jwt.decode(token, public_pem, algorithms=["RS256"], issuer=settings.JWT_ISSUER)["email"] == "rsa@webrana.io"

    head, payload, signature = token.split(".")
    forged = f"{head}.{payload}.{signature[::-1]}"
    with pytest.raises(TokenError):
        decode_token(forged)


def test_rs256_rejects_hs256_token_signed_with_shared_secret(rs256_keys):
    token = jwt.encode(
        {"sub": "7", "type": "access", "iss": settings.JWT_ISSUER, "exp": 4102444800},
        settings.JWT_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenError):
        decode_token(token)


def test_rs256_refresh_round_trip(rs256_keys):
    token, _ = create_refresh_token(user_id=3)
    assert decode_token(token, expected_type="refresh")["sub"] == "3"


def test_rs256_without_keys_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr(settings, "JWT_ALGORITHM", "RS256")
    monkeypatch.setattr(settings, "JWT_PRIVATE_KEY", None)
    with pytest.raises(RuntimeError):
        create_access_token(user_id=1, email="x@webrana.io", role="customer", status="active")
