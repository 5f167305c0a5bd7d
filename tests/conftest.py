import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Dict, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("MPESA_BASE_URL", "https://daraja.test")
os.environ.setdefault("MPESA_CONSUMER_KEY", "consumer-key")
os.environ.setdefault("MPESA_CONSUMER_SECRET", "consumer-secret")
os.environ.setdefault("MPESA_SHORTCODE", "174379")
os.environ.setdefault("MPESA_PASSKEY", "test-passkey")
os.environ.setdefault("MPESA_CALLBACK_URL", "https://school.test/api/v1/mpesa/callback")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core import models  # noqa: F401
from app.core.config import settings
from app.db.session import Base, get_db
from app.main import create_app
from app.mpesa.gateway import MpesaGateway, get_mpesa_gateway
from app.mpesa.stk_push import STK_PUSH_PATH
from app.mpesa.token_manager import TOKEN_PATH


class FakeDaraja:
    """In-process stand-in for the Daraja API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.token_calls = 0
        self.token_auth_headers: List[Optional[str]] = []
        self.token_status = 200
        self.token_delay = 0.0
        self.token_exception: Optional[Exception] = None
        self.expires_in = "3599"

        self.push_requests: List[httpx.Request] = []
        self.push_responses: List[httpx.Response] = []
        self.push_exception: Optional[Exception] = None
        self.checkout_seq = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            self.token_calls += 1
            self.token_auth_headers.append(request.headers.get("authorization"))
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            if self.token_exception is not None:
                raise self.token_exception
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"errorMessage": "Invalid Authentication passed"})
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_calls}", "expires_in": self.expires_in},
            )

        if request.url.path == STK_PUSH_PATH:
            self.push_requests.append(request)
            if self.push_exception is not None:
                raise self.push_exception
            if self.push_responses:
                return self.push_responses.pop(0)
            self.checkout_seq += 1
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": f"29115-34620561-{self.checkout_seq}",
                    "CheckoutRequestID": f"ws_CO_19122024_{self.checkout_seq:06d}",
                    "ResponseCode": "0",
                    "ResponseDescription": "Success. Request accepted for processing",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )

        return httpx.Response(404, json={"errorMessage": "Not found"})

    def reject_next_push(self, message: str, status_code: int = 400) -> None:
        self.push_responses.append(
            httpx.Response(
                status_code,
                json={"requestId": "1234-5678", "errorCode": "400.002.02", "errorMessage": message},
            )
        )


def stk_callback(
    checkout_request_id: str,
    result_code: int = 0,
    amount=500,
    receipt: str = "NLJ7RT61SV",
    phone: int = 254712345678,
) -> Dict:
    stk = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20241219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": stk}}


@pytest.fixture()
async def engine(tmp_path):
    """Fresh SQLite file database per test so separate sessions can run concurrently."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest.fixture()
async def gateway(fake_daraja: FakeDaraja) -> AsyncGenerator[MpesaGateway, None]:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_daraja.handler),
        base_url="https://daraja.test",
    )
    gateway = MpesaGateway.from_settings(client=client)
    yield gateway
    await gateway.aclose()


@pytest.fixture()
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app with test db and fake provider."""
    app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mpesa_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _make(role: str = "ADMIN", student_id: Optional[str] = None, email: str = "bursar@school.test") -> Dict[str, str]:
        claims = {"sub": "user-1", "email": email, "role": role}
        if student_id:
            claims["student_id"] = student_id
        claims["exp"] = datetime.now(timezone.utc) + timedelta(minutes=30)
        token = jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def admin_headers(auth_headers) -> Dict[str, str]:
    return auth_headers("ADMIN")
