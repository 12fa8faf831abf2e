"""Shared FastAPI dependencies: process context and caller authentication."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyQuery, HTTPAuthorizationCredentials, HTTPBearer

from rag_gateway.context import GatewayContext
from rag_gateway.services.auth_resolver import AuthBackendError

bearer_scheme = HTTPBearer(auto_error=False)
api_key_query = APIKeyQuery(name="api_key", auto_error=False)
token_query = APIKeyQuery(name="token", auto_error=False)


@dataclass(frozen=True)
class Caller:
    """An authenticated caller. tenant_id is None in open mode."""
    tenant_id: Optional[str]
    credential: str


def get_context(request: Request) -> GatewayContext:
    return request.app.state.context


def extract_credential(
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    api_key: Optional[str] = Security(api_key_query),
    token: Optional[str] = Security(token_query),
) -> Optional[str]:
    """Credential from `Authorization: Bearer`, else `?api_key=`, else `?token=`."""
    if bearer and bearer.credentials:
        return bearer.credentials.strip()
    for value in (api_key, token):
        if value and value.strip():
            return value.strip()
    return None


async def require_caller(
    credential: Optional[str] = Depends(extract_credential),
    context: GatewayContext = Depends(get_context),
) -> Caller:
    """
    Resolve the request's credential to a tenant.

    Raises:
        HTTPException: 401 when no credential is sent, 403 when it is invalid,
            503 when the backing store cannot be reached
    """
    if not credential:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing credentials. Use 'Authorization: Bearer <mcp-api-key>' or ?api_key=<mcp-api-key>.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        result = await context.auth.resolve(credential)
    except AuthBackendError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication backend unavailable. Please retry shortly.",
        )

    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or inactive MCP API key.",
        )
    return Caller(tenant_id=result.tenant_id, credential=credential)
