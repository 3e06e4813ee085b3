"""Demo FastAPI application with the idempotency coordinator.

This application shows both integration styles:

- ``ASGIIdempotencyMiddleware`` keys POST/PUT/PATCH/DELETE requests by their
  ``Idempotency-Key`` header and replays recorded responses.
- ``with_idempotency`` protects a plain coroutine (the payment capture) keyed
  by fields of its event.

Records live in a SQLite file through the SQLAlchemy backend.

Run with: python demo_app.py
Then try:
    curl -X POST localhost:8000/api/orders -H 'Idempotency-Key: k1' \\
        -H 'content-type: application/json' -d '{"product_id": "p1", "quantity": 2}'
"""

import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import create_async_engine

from idempotent_coordinator import IdempotencyConfig, IdempotencyCoordinator, with_idempotency
from idempotent_coordinator.adapters.asgi import ASGIIdempotencyMiddleware
from idempotent_coordinator.core.cleanup import start_cleanup_task, stop_cleanup_task
from idempotent_coordinator.observability import configure_logging
from idempotent_coordinator.serialization import ResponseSerializer
from idempotent_coordinator.storage import SQLAlchemyPersistenceStore

configure_logging(level="INFO", json_output=False)

engine = create_async_engine("sqlite+aiosqlite:///./idempotency_demo.db")
store = SQLAlchemyPersistenceStore(engine)


class OrderRequest(BaseModel):
    product_id: str
    quantity: int


class PaymentCapture(BaseModel):
    payment_id: str
    amount: int
    captured_at: str


async def capture_payment(event: dict) -> PaymentCapture:
    time.sleep(0.1)
    return PaymentCapture(
        payment_id=f"pay_{int(time.time() * 1000)}",
        amount=event["amount"],
        captured_at=datetime.now(UTC).isoformat(),
    )


payments = IdempotencyCoordinator(
    store,
    IdempotencyConfig(
        event_key_path="[customer_id, invoice_id]",
        payload_validation_path="amount",
        use_local_cache=True,
    ),
    scope="demo.capture_payment",
    serializer=ResponseSerializer(PaymentCapture),
)
capture_payment_once = with_idempotency(payments, capture_payment)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await store.create_table()
    cleanup_task = await start_cleanup_task(store, interval_seconds=60)
    yield
    await stop_cleanup_task(cleanup_task)
    await engine.dispose()


app = FastAPI(
    title="Idempotency Coordinator Demo",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    ASGIIdempotencyMiddleware,
    store=store,
    config=IdempotencyConfig(
        event_key_path='headers."idempotency-key"',
        payload_validation_path="body",
        fail_on_missing_key=True,
        expiration_seconds=86400,
    ),
)


@app.get("/api/status")
async def get_status():
    """Safe methods bypass the middleware."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@app.post("/api/orders")
async def create_order(order: OrderRequest):
    time.sleep(0.1)
    return {
        "order_id": f"ord_{int(time.time() * 1000)}",
        "status": "confirmed",
        "product_id": order.product_id,
        "quantity": order.quantity,
        "created_at": datetime.now(UTC).isoformat(),
    }


@app.post("/api/invoices/{invoice_id}/capture")
async def capture_invoice(invoice_id: str, customer_id: str, amount: int):
    # Keyed by customer and invoice, independent of any request header
    capture = await capture_payment_once(
        {"customer_id": customer_id, "invoice_id": invoice_id, "amount": amount}
    )
    return capture


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
