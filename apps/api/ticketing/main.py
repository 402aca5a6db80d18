from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from ticketing.api.v1.router import router as v1_router
from ticketing.core.config import settings
from ticketing.core.logging import configure_logging
from ticketing.middleware.rate_limit import RateLimitMiddleware
from ticketing.middleware.request_id import RequestIdMiddleware
from ticketing.middleware.security_headers import SecurityHeadersMiddleware

configure_logging()

app = FastAPI(title="IndulgeOut Ticketing API")

# Starlette runs the LAST added middleware FIRST (outermost):
# RequestId and SecurityHeaders wrap everything, CORS answers preflights,
# RateLimit sits closest to the routes.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIdMiddleware)

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
def root():
    return {"name": "IndulgeOut Ticketing API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(v1_router, prefix="/v1")
