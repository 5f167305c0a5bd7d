from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.fees.router import router as fees_router
from app.api.v1.mpesa.router import router as mpesa_router
from app.core.log_config import configure_logging
from app.mpesa.gateway import MpesaGateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One HTTP pool and one token cache per process.
    app.state.mpesa_gateway = MpesaGateway.from_settings()
    try:
        yield
    finally:
        await app.state.mpesa_gateway.aclose()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Fee Ledger", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fees_router)
    app.include_router(mpesa_router)

    return app


app = create_app()
