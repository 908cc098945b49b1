from fastapi.responses import JSONResponse

from app.checkout.errors import RelayError
from app.checkout.schemas import RelayResult


def relay_response(result: RelayResult, success_status: int = 200) -> JSONResponse:
    """Serialize a RelayResult; error outcomes keep their own status"""
    status_code = result.http_status if result.is_error or result.http_status != 200 else success_status
    return JSONResponse(status_code=status_code, content=result.to_response())


def error_response(error: RelayError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response())


def internal_error_response(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"status": "ERROR", "message": message})
