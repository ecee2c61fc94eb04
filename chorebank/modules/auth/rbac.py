import hmac
import logging

from fastapi import Depends, HTTPException, Request, status

from chorebank.core.env import ReadEnv
from chorebank.modules.auth.deps import (
    ROLE_ADMIN,
    ROLE_CHILD,
    ROLE_PARENT,
    RequireAuthenticated,
    UserContext,
)

logger = logging.getLogger("auth")


def RequireParent():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if user.Role != ROLE_PARENT or user.FamilyId is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return _checker


def RequireChild():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if user.Role != ROLE_CHILD or user.FamilyId is None or user.ChildId is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return _checker


def RequireFamilyMember():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if user.Role not in {ROLE_PARENT, ROLE_CHILD} or user.FamilyId is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return _checker


def RequireAdmin():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if user.Role != ROLE_ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return _checker


def RequireSharedSecret(env_name: str, header_name: str):
    """Gate machine-to-machine routes on a secret header shared through `env_name`."""

    def _checker(request: Request) -> None:
        expected = ReadEnv(env_name)
        if not expected:
            logger.error("request rejected: %s not configured path=%s", env_name, request.url.path)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Not configured")
        provided = request.headers.get(header_name, "")
        if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return _checker


def ResolveChildId(user: UserContext, requested_child_id: int | None) -> int:
    if user.Role == ROLE_CHILD:
        if requested_child_id is not None and requested_child_id != user.ChildId:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user.ChildId
    if requested_child_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="ChildId is required")
    return requested_child_id
