from dataclasses import dataclass

import jwt
from fastapi import HTTPException, Request, status

from chorebank.core.env import RequireEnv

ROLE_PARENT = "Parent"
ROLE_CHILD = "Child"
ROLE_ADMIN = "Admin"
ALLOWED_ROLES = {ROLE_PARENT, ROLE_CHILD, ROLE_ADMIN}


def _decode_access_token(token: str) -> dict:
    secret = RequireEnv("JWT_SECRET_KEY")
    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def _read_int_claim(payload: dict, name: str, required: bool = True) -> int | None:
    value = payload.get(name)
    if value is None or value == "":
        if required:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


@dataclass
class UserContext:
    Id: int
    FamilyId: int | None
    Role: str
    ChildId: int | None = None


def BuildUserContext(payload: dict) -> UserContext:
    user_id = _read_int_claim(payload, "sub")
    role = payload.get("role")
    if role not in ALLOWED_ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    family_id = _read_int_claim(payload, "family_id", required=role != ROLE_ADMIN)
    child_id = _read_int_claim(payload, "child_id", required=role == ROLE_CHILD)
    return UserContext(Id=user_id, FamilyId=family_id, Role=role, ChildId=child_id)


def RequireAuthenticated(request: Request) -> UserContext:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    token = auth_header.replace("Bearer ", "", 1).strip()
    payload = _decode_access_token(token)
    return BuildUserContext(payload)
