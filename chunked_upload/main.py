import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from chunked_upload.config import settings
from chunked_upload.models.errors import ControlPlaneError, UploadValidationError
from chunked_upload.models.upload_models import (
    AbortRequest,
    CompleteRequest,
    GetPartUrlRequest,
    InitiateRequest,
)
from chunked_upload.services.upload_service import UploadService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ENDPOINT = "/functions/v1/multipart-upload"
VALID_ACTIONS = ("initiate", "getPartUrl", "complete", "abort")

app = FastAPI(title="Multipart Upload Control Plane")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

_upload_service: Optional[UploadService] = None


def get_upload_service() -> UploadService:
    global _upload_service
    if _upload_service is None:
        _upload_service = UploadService.from_settings(settings)
    return _upload_service


def error_response(status_code: int, error: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "code": code})


def verify_auth(authorization: Optional[str]) -> Optional[str]:
    """Return the user id for a valid bearer token, else None."""
    if not authorization:
        return None
    token = authorization.replace("Bearer ", "", 1).strip()
    return settings.control_plane_tokens.get(token)


@app.post(ENDPOINT)
async def multipart_upload(request: Request, upload_service: UploadService = Depends(get_upload_service)):
    """Single endpoint multiplexing initiate | getPartUrl | complete | abort"""
    authorization = request.headers.get("authorization")
    if not authorization:
        return error_response(401, "Missing authorization header", "UNAUTHORIZED")
    user_id = verify_auth(authorization)
    if user_id is None:
        return error_response(401, "Invalid or expired token", "UNAUTHORIZED")

    try:
        body = await request.json()
    except ValueError:
        return error_response(400, "Invalid JSON body", "INVALID_REQUEST")

    action = body.get("action") if isinstance(body, dict) else None
    if action not in VALID_ACTIONS:
        return error_response(
            400, f"Invalid action. Must be one of: {', '.join(VALID_ACTIONS)}", "INVALID_ACTION"
        )

    try:
        if action == "initiate":
            result = upload_service.initiate(user_id, InitiateRequest(**body))
        elif action == "getPartUrl":
            result = upload_service.generate_part_url(GetPartUrlRequest(**body))
        elif action == "complete":
            result = upload_service.complete(CompleteRequest(**body))
        else:
            upload_service.abort(AbortRequest(**body))
            return {"success": True}
        return result.model_dump()
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        return error_response(400, f"Missing or invalid fields: {missing}", "INVALID_REQUEST")
    except UploadValidationError as e:
        return error_response(400, e.message, e.code)
    except ControlPlaneError as e:
        return error_response(e.status_code or 500, e.message, e.code)
    except Exception as e:
        logger.error(f"Error in multipart upload handler: {e}")
        return error_response(500, f"Multipart upload operation failed: {e}", "SERVER_ERROR")


@app.api_route(ENDPOINT, methods=["GET", "PUT", "PATCH", "DELETE"])
async def method_not_allowed():
    return error_response(405, "Method not allowed", "METHOD_NOT_ALLOWED")
