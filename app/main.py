import logging

from fastapi import FastAPI

from app.config import settings
from app.routers import ledger, payments
from app.security.tokens import install_bearer_auth_middleware

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Payment Allocator')

install_bearer_auth_middleware(app)

app.include_router(payments.router)
app.include_router(ledger.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
