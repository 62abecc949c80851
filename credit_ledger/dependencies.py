"""
FastAPI dependencies for authentication.

Two callers reach this service:

  get_current_account_id (Bearer JWT -> account id)
      Presentation endpoints. The account id is the token's "sub" claim
      and is treated as opaque.

  require_internal_token (X-Internal-Token header)
      Billing endpoints called by the content-generation service. The
      account id comes from the URL because the caller acts on behalf of
      any account.

If a dependency fails, the request is rejected with 401 before the route
handler runs.
"""

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from credit_ledger.security import decode_access_token, internal_token_matches

# auto_error=False so a missing header yields our 401 instead of FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)

MAX_ACCOUNT_ID_LENGTH = 64


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """
    Validate the bearer token and return the account id it names.

    Raises:
        HTTPException 401: If the token is missing, invalid, expired, or
            has no usable "sub" claim.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    account_id = payload.get("sub")
    if not isinstance(account_id, str) or not account_id:
        raise credentials_exception
    if len(account_id) > MAX_ACCOUNT_ID_LENGTH:
        raise credentials_exception

    return account_id


async def require_internal_token(
    x_internal_token: str | None = Header(None),
) -> None:
    """
    Reject callers that do not present the shared internal token.

    Raises:
        HTTPException 401: If the header is missing or wrong.
    """
    if not internal_token_matches(x_internal_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )
