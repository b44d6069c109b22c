from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, Response

from .config import get_settings
from .database import async_session
from .reclaimer import ExpiryReclaimer
from .routers import bookings
from .utils.request_id import REQUEST_ID_HEADER, bound_request_id


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    with bound_request_id(request.headers.get(REQUEST_ID_HEADER)) as request_id:
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    reclaimer = ExpiryReclaimer(async_session, interval_seconds=settings.reclaim_interval_seconds)
    app.state.reclaimer = reclaimer
    if settings.reclaimer_enabled:
        reclaimer.start()
    try:
        yield
    finally:
        await reclaimer.stop()


app = FastAPI(title="Booking API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(bookings.router)
