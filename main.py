from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.endpoints import router
from config import logger
from models.schemas import ErrorResponse
from services.errors import (
    CompositionFailure,
    MedicationNotFound,
    MissingRequiredField,
    PrescriptionError,
)

# Initialize FastAPI
app = FastAPI(
    title="Prescription Authoring API",
    description="API for authoring, dictating, composing and sharing prescriptions",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict this in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    MedicationNotFound: status.HTTP_404_NOT_FOUND,
    MissingRequiredField: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CompositionFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(PrescriptionError)
async def prescription_error_handler(request: Request, exc: PrescriptionError):
    """Turn domain failures into user-facing messages; the draft is left as it was."""
    logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    body = ErrorResponse(
        error=exc.code,
        message=exc.message,
        fields=getattr(exc, "fields", None),
    )
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        content=body.model_dump(),
    )


# Include API router
app.include_router(router, prefix="/api/v1")

# Entry point
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=5175, log_level="info", reload=True)
