from fastapi import Depends, Request

from todo_api.core.errors import UnauthorizedError
from todo_api.core.security import TokenSigner, get_token_signer


def _extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    scheme, _, param = auth_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not param.strip():
        raise UnauthorizedError("Invalid authorization header")
    return param.strip()


def get_current_user_id(
    request: Request,
    signer: TokenSigner = Depends(get_token_signer),
) -> int:
    """Resolve the caller from the access token alone; no store lookup."""
    token = _extract_bearer_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    return signer.subject_id(token)
