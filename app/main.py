from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.checkout.routes import router as checkout_router
from app.checkout.errors import RelayError
from app.health.routes import router as health_router
from config import settings
import logging

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Klarna Network Relay",
    description="Payment orchestration relay for Klarna Network and Paytrail",
    version="1.0.0"
)

# Add CORS middleware for the storefront
origins = settings.cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Request validation failed for {request.url.path}: {len(details)} error(s)")
    return JSONResponse(
        status_code=400,
        content={"status": "ERROR", "message": "Invalid request body", "details": details},
    )


@app.exception_handler(RelayError)
async def relay_exception_handler(request: Request, exc: RelayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# Include routers
app.include_router(health_router, prefix="/api")
app.include_router(checkout_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Klarna Network relay 1.0.0"}
