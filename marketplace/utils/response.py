from typing import Any, Optional, Dict
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from marketplace.core.exceptions import PaymentError


def success_response(
    message: str = "Success",
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """
    Standard success response

    Args:
        message: Success message
        data: Response data (optional); models and datetimes are encoded
        status_code: HTTP status code (default: 200)

    Returns:
        JSONResponse with success format
    """
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = jsonable_encoder(data)

    return JSONResponse(content=response, status_code=status_code)


def error_response(
    message: str = "Error",
    status_code: int = 400,
    field: Optional[str] = None
) -> JSONResponse:
    """
    Standard error response

    Args:
        message: Error message
        status_code: HTTP status code (default: 400)
        field: Offending request field, if known

    Returns:
        JSONResponse with error format
    """
    content: Dict[str, Any] = {
        "success": False,
        "message": message
    }
    if field:
        content["field"] = field

    return JSONResponse(content=content, status_code=status_code)


def payment_error_response(error: PaymentError) -> JSONResponse:
    """Map a service-layer error onto the error envelope"""
    return error_response(
        message=error.message,
        status_code=error.status_code,
        field=getattr(error, "field", None)
    )


def validation_error_response(
    message: str = "Validation error",
    errors: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """
    Standard validation error response

    Args:
        message: Validation error message
        errors: Dictionary of validation errors (optional)

    Returns:
        JSONResponse with validation error format (400)
    """
    response: Dict[str, Any] = {
        "success": False,
        "message": message
    }

    if errors:
        response["errors"] = errors

    return JSONResponse(content=response, status_code=400)
