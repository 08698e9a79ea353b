import time
from dataclasses import asdict
from typing import Optional
from urllib.parse import quote
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from fastapi.security import APIKeyHeader

from config import settings, logger
from models.schemas import (
    DraftCreateRequest,
    DraftResponse,
    FieldUpdateRequest,
    FinalizeResponse,
    MedicationResponse,
    NotesUpdateRequest,
    PrescriptionDocument,
    ShareRequest,
    ShareResponse,
)
from services.dictation_controller import DictationController, Notification
from services.output_sinks import build_print_view, share_prescription
from services.pdf_composer import compose_with_retry
from services.prescription_editor import (
    add_medication,
    remove_medication,
    update_medication,
    update_notes,
    update_patient_info,
    validate_for_finalize,
)
from services.profile_mapper import profile_from_storage
from services.recognition_relay import RelayRecognitionEngine
from services.text_processor import build_prescription_text
from utils.job_store import ARTIFACT_STORE, DRAFT_STORE, drop_artifacts

router = APIRouter()

# API Key security
api_key_header = APIKeyHeader(name="X-API-Key")

def verify_api_key(api_key: str = Depends(api_key_header)):
    """Verify the API key for protected endpoints."""
    if api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return api_key


def _get_draft(draft_id: str) -> dict:
    if draft_id not in DRAFT_STORE:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Prescription draft {draft_id} not found"
        )
    return DRAFT_STORE[draft_id]


def _get_artifact(artifact_id: str) -> dict:
    if artifact_id not in ARTIFACT_STORE:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Prescription PDF {artifact_id} not found"
        )
    return ARTIFACT_STORE[artifact_id]


def _draft_response(draft_id: str) -> DraftResponse:
    draft = DRAFT_STORE[draft_id]
    return DraftResponse(draft_id=draft_id, document=draft["document"], profile=draft["profile"])


@router.get("/health", tags=["Info"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.post("/prescriptions", response_model=DraftResponse, status_code=status.HTTP_201_CREATED, tags=["Prescriptions"])
async def create_draft(payload: Optional[DraftCreateRequest] = None, api_key: str = Depends(verify_api_key)):
    """Start a new prescription draft."""
    draft_id = str(uuid4())
    profile_row = payload.profile if payload else None
    DRAFT_STORE[draft_id] = {
        "document": PrescriptionDocument(),
        "profile": profile_from_storage(profile_row),
    }
    logger.info(f"Created prescription draft {draft_id}")
    return _draft_response(draft_id)


@router.get("/prescriptions/{draft_id}", response_model=DraftResponse, tags=["Prescriptions"])
async def get_draft(draft_id: str, api_key: str = Depends(verify_api_key)):
    _get_draft(draft_id)
    return _draft_response(draft_id)


@router.delete("/prescriptions/{draft_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Prescriptions"])
async def delete_draft(draft_id: str, api_key: str = Depends(verify_api_key)):
    """Discard a draft together with its composed PDFs."""
    _get_draft(draft_id)
    del DRAFT_STORE[draft_id]
    dropped = drop_artifacts(draft_id)
    logger.info(f"Deleted prescription draft {draft_id} and {dropped} artifact(s)")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/prescriptions/{draft_id}/patient", response_model=DraftResponse, tags=["Prescriptions"])
async def patch_patient(draft_id: str, payload: FieldUpdateRequest, api_key: str = Depends(verify_api_key)):
    """Replace one patient field."""
    draft = _get_draft(draft_id)
    try:
        draft["document"] = update_patient_info(draft["document"], payload.field, payload.value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _draft_response(draft_id)


@router.put("/prescriptions/{draft_id}/notes", response_model=DraftResponse, tags=["Prescriptions"])
async def put_notes(draft_id: str, payload: NotesUpdateRequest, api_key: str = Depends(verify_api_key)):
    """Manual edit of the doctor's notes; replaces the field verbatim."""
    draft = _get_draft(draft_id)
    draft["document"] = update_notes(draft["document"], payload.text)
    return _draft_response(draft_id)


@router.put("/prescriptions/{draft_id}/profile", response_model=DraftResponse, tags=["Prescriptions"])
async def put_profile(draft_id: str, row: dict, api_key: str = Depends(verify_api_key)):
    """Refresh the doctor profile snapshot from a provider row."""
    draft = _get_draft(draft_id)
    draft["profile"] = profile_from_storage(row)
    return _draft_response(draft_id)


@router.post(
    "/prescriptions/{draft_id}/medications",
    response_model=MedicationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Medications"],
)
async def post_medication(draft_id: str, api_key: str = Depends(verify_api_key)):
    """Append a blank medication."""
    draft = _get_draft(draft_id)
    draft["document"], entry = add_medication(draft["document"])
    return MedicationResponse(draft_id=draft_id, medication=entry, document=draft["document"])


@router.patch("/prescriptions/{draft_id}/medications/{medication_id}", response_model=DraftResponse, tags=["Medications"])
async def patch_medication(
    draft_id: str,
    medication_id: str,
    payload: FieldUpdateRequest,
    api_key: str = Depends(verify_api_key)
):
    draft = _get_draft(draft_id)
    try:
        draft["document"] = update_medication(draft["document"], medication_id, payload.field, payload.value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _draft_response(draft_id)


@router.delete("/prescriptions/{draft_id}/medications/{medication_id}", response_model=DraftResponse, tags=["Medications"])
async def delete_medication(draft_id: str, medication_id: str, api_key: str = Depends(verify_api_key)):
    draft = _get_draft(draft_id)
    draft["document"] = remove_medication(draft["document"], medication_id)
    return _draft_response(draft_id)


@router.get("/prescriptions/{draft_id}/text", response_class=PlainTextResponse, tags=["Prescriptions"])
async def get_prescription_text(draft_id: str, api_key: str = Depends(verify_api_key)):
    """Plain-text prescription for copying."""
    draft = _get_draft(draft_id)
    return build_prescription_text(draft["document"])


@router.post("/prescriptions/{draft_id}/finalize", response_model=FinalizeResponse, tags=["Prescriptions"])
async def finalize_prescription(draft_id: str, request: Request, api_key: str = Depends(verify_api_key)):
    """Validate the draft and compose its PDF."""
    draft = _get_draft(draft_id)
    start_time = time.time()

    # Raises MissingRequiredField before any composition is attempted
    validate_for_finalize(draft["document"])

    artifact = await run_in_threadpool(compose_with_retry, draft["document"], draft["profile"])
    artifact_id = str(uuid4())
    # Only the latest PDF of a draft is kept
    drop_artifacts(draft_id)
    ARTIFACT_STORE[artifact_id] = {"draft_id": draft_id, "artifact": artifact}

    processing_time = (time.time() - start_time) * 1000  # Convert to milliseconds
    logger.info(f"Finalized draft {draft_id} as {artifact_id} in {processing_time:.2f}ms")

    return FinalizeResponse(
        success=True,
        artifact_id=artifact_id,
        url=str(request.url_for("get_artifact", artifact_id=artifact_id)),
        print_url=str(request.url_for("get_print_view", artifact_id=artifact_id)),
        filename=artifact.filename,
        processing_time_ms=processing_time
    )


# Artifact ids are unguessable; these are opened directly by the browser without headers.

@router.get("/artifacts/{artifact_id}", tags=["Artifacts"])
async def get_artifact(artifact_id: str, download: bool = False):
    """Serve a composed PDF inline, or as an attachment when download=true."""
    artifact = _get_artifact(artifact_id)["artifact"]
    disposition = "attachment" if download else "inline"
    return Response(
        content=artifact.pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(artifact.filename)}"},
    )


@router.get("/artifacts/{artifact_id}/print", response_class=HTMLResponse, tags=["Artifacts"])
async def get_print_view(artifact_id: str, request: Request):
    """Page that prints the PDF once it has loaded."""
    artifact = _get_artifact(artifact_id)["artifact"]
    pdf_url = str(request.url_for("get_artifact", artifact_id=artifact_id))
    return build_print_view(pdf_url, artifact.layout.title)


@router.post("/prescriptions/{draft_id}/share", response_model=ShareResponse, tags=["Prescriptions"])
async def share(draft_id: str, payload: ShareRequest, api_key: str = Depends(verify_api_key)):
    """Build a prefilled WhatsApp message link for the chosen recipient."""
    draft = _get_draft(draft_id)
    result = share_prescription(draft["document"], draft["profile"], payload.recipient)
    return ShareResponse(success=True, method=result.method, url=result.url, message=result.message)


@router.websocket("/prescriptions/{draft_id}/dictation")
async def dictation(websocket: WebSocket, draft_id: str):
    """Relay between the browser's speech recognition and the draft's notes field."""
    api_key = websocket.query_params.get("api_key") or websocket.headers.get("x-api-key")
    if api_key != settings.api_key or draft_id not in DRAFT_STORE:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    engine = RelayRecognitionEngine()

    def store_text(text: str) -> None:
        draft = DRAFT_STORE.get(draft_id)
        if draft is not None:
            draft["document"] = update_notes(draft["document"], text)

    def notify(notification: Notification) -> None:
        engine.send({"type": "notification", **asdict(notification)})

    controller = DictationController(
        engine,
        text_sink=store_text,
        notifier=notify,
        initial_text=DRAFT_STORE[draft_id]["document"].notes,
    )
    logger.info(f"Dictation connected for draft {draft_id}")

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError as e:
                logger.warning(f"Ignoring malformed dictation message: {e}")
                continue
            if not isinstance(message, dict):
                continue

            kind = message.get("type")
            if kind == "hello":
                engine.supported = bool(message.get("supported", False))
            elif kind == "toggle":
                controller.toggle()
            elif kind == "edit":
                controller.edit_text(str(message.get("text", "")))
            else:
                try:
                    handled = engine.dispatch(message)
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Ignoring malformed '{kind}' dictation event: {e}")
                    continue
                if not handled:
                    logger.debug(f"Unknown dictation message type: {kind}")

            engine.send({
                "type": "transcript",
                "text": controller.text,
                "isListening": controller.is_listening,
            })
            for outgoing in engine.drain():
                await websocket.send_json(outgoing)
    except WebSocketDisconnect:
        logger.info(f"Dictation disconnected for draft {draft_id}")
    finally:
        controller.close()
