from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..deps import current_participant_id, get_engine, optional_participant_id
from ..schemas import CommentRequest, PhotoSubmissionRequest, PrivacyRequest
from ..services.engine import PairingEngine

router = APIRouter()


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


@router.get("/pairings/{pairing_id}")
def get_pairing(
    pairing_id: str,
    viewer_id: str | None = Depends(optional_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    pairing, comments = engine.view_pairing(pairing_id, viewer_id)
    return _json({"pairing": pairing, "comments": comments})


@router.post("/pairings/{pairing_id}/photo")
def submit_photo(
    pairing_id: str,
    payload: PhotoSubmissionRequest,
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    return _json({"pairing": engine.submit_photo(pairing_id, participant_id, payload.photo_ref)})


@router.post("/pairings/{pairing_id}/reactions")
def toggle_reaction(
    pairing_id: str,
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = engine.toggle_reaction(pairing_id, participant_id)
    return {"pairing_id": result.pairing_id, "liked": result.liked, "likes_count": result.likes_count}


@router.post("/pairings/{pairing_id}/comments", status_code=201)
def add_comment(
    pairing_id: str,
    payload: CommentRequest,
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    return _json({"comment": engine.add_comment(pairing_id, participant_id, payload.body)})


@router.post("/pairings/{pairing_id}/privacy")
def set_privacy(
    pairing_id: str,
    payload: PrivacyRequest,
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    return _json({"pairing": engine.set_privacy(pairing_id, participant_id, payload.is_private)})


@router.get("/participants/me/pairing")
def get_current_pairing(
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    pairing = engine.current_pairing_for(participant_id)
    if pairing is None:
        return {"pairing": None, "message": "No pairing has been assigned for today yet"}
    return _json({"pairing": pairing, "partner_id": pairing.partner_of(participant_id)})


@router.get("/participants/me/stats")
def get_stats(
    participant_id: str = Depends(current_participant_id),
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    return {"participant_id": participant_id, **engine.participant_stats(participant_id)}
