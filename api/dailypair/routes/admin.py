from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..deps import get_engine, require_admin
from ..schemas import ReplacePartnerRequest
from ..services.engine import PairingEngine

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.post("/pairings/run-daily")
def run_daily_match(force: bool = False, engine: PairingEngine = Depends(get_engine)) -> dict[str, Any]:
    return jsonable_encoder(engine.run_daily_match(force=force))


@router.post("/pairings/reap")
def reap_expired_pairings(engine: PairingEngine = Depends(get_engine)) -> dict[str, Any]:
    return jsonable_encoder(engine.reap_expired_pairings())


@router.post("/pairings/{pairing_id}/replace")
def replace_partner(
    pairing_id: str,
    payload: ReplacePartnerRequest,
    engine: PairingEngine = Depends(get_engine),
) -> dict[str, Any]:
    return jsonable_encoder({"replaced": pairing_id, "pairing": engine.replace_partner(pairing_id, payload.keeper_id)})


@router.post("/participants/{participant_id}/pair-waitlisted")
def pair_with_waitlisted(participant_id: str, engine: PairingEngine = Depends(get_engine)) -> dict[str, Any]:
    return jsonable_encoder({"pairing": engine.pair_with_waitlisted(participant_id)})
