from __future__ import annotations

import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request as UrlRequest
from urllib.request import urlopen

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.auth import Principal
from app.config import settings

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {'/health'}


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization') or ''
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def verify_access_token(token: str) -> Principal | None:
    """Ask the auth provider who owns ``token``.

    Returns None when the provider rejects the token and raises
    RuntimeError when the provider cannot be reached.
    """
    if not settings.auth_provider_url:
        raise RuntimeError('AUTH_PROVIDER_URL is required')

    headers = {'Authorization': f'Bearer {token}'}
    if settings.auth_provider_api_key:
        headers['apikey'] = settings.auth_provider_api_key

    req = UrlRequest(
        url=f"{settings.auth_provider_url.rstrip('/')}/auth/v1/user",
        headers=headers,
        method='GET',
    )
    try:
        with urlopen(req, timeout=settings.auth_timeout_seconds) as response:
            user = json.loads(response.read().decode('utf-8'))
    except HTTPError as exc:
        if exc.code in {401, 403}:
            return None
        raise RuntimeError(f'Auth provider error {exc.code}') from exc
    except URLError as exc:
        raise RuntimeError(f'Auth provider network error: {exc.reason}') from exc

    if not user.get('id'):
        return None
    return Principal(id=str(user['id']), email=user.get('email'), role=user.get('role'))


def install_bearer_auth_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def bearer_auth_middleware(request: Request, call_next):
        request.state.principal = None
        if request.url.path in AUTH_EXEMPT_PATHS:
            return await call_next(request)

        token = _bearer_token(request)
        if not token:
            return JSONResponse({'error': 'Access token required'}, status_code=401)
        try:
            principal = await run_in_threadpool(verify_access_token, token)
        except RuntimeError as exc:
            logger.error('Token verification failed: %s', exc)
            return JSONResponse({'error': 'Authentication service unavailable'}, status_code=503)
        if principal is None:
            return JSONResponse({'error': 'Invalid or expired access token'}, status_code=401)

        request.state.principal = principal
        return await call_next(request)
