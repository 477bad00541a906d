"""FastAPI dependencies for request authentication and service injection.

Every collaborator is created once in the application lifespan and stored on
``app.state``; these dependencies hand them to route handlers. Tests replace
the ``app.state`` attributes with fakes.
"""

from typing import Annotated, Callable

from fastapi import Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError

from photoforge.models.user_account import UserAccount
from photoforge.services.exceptions import PersistenceError, Unauthenticated
from photoforge.services.generation.orchestrator import FanOutOrchestrator
from photoforge.services.generation.reconciler import StatusReconciler
from photoforge.services.supabase_auth import SupabaseSessionVerifier
from photoforge.uow import UnitOfWork


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.users.get_by_id(user_id)
    """
    return request.app.state.uow_factory


def get_session_verifier(request: Request) -> SupabaseSessionVerifier:
    return request.app.state.session_verifier


def get_orchestrator(request: Request) -> FanOutOrchestrator:
    return request.app.state.orchestrator


def get_reconciler(request: Request) -> StatusReconciler:
    return request.app.state.reconciler


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    verifier: SupabaseSessionVerifier = Depends(get_session_verifier),
    uow_factory=Depends(get_uow_factory),
) -> UserAccount:
    """Resolve the bearer token to the caller's account.

    Raises:
        Unauthenticated: Missing/invalid token, or no account for the verified user
        AuthServiceUnavailable: Session verification API unreachable
        PersistenceError: Account lookup failed
    """
    token = _bearer_token(authorization)
    if token is None:
        raise Unauthenticated()

    user_id = await verifier.verify(token)
    if user_id is None:
        raise Unauthenticated()

    try:
        async with await uow_factory() as uow:
            user = await uow.users.get_by_id(user_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Error on user lookup", cause=e) from e

    if user is None:
        raise Unauthenticated("User account not found", user_id=str(user_id))
    return user
