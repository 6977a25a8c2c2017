from __future__ import annotations
from fastapi import APIRouter, Depends

from ..deps import Services, caller_id, get_claims, get_services
from ..core.errors import Malformed
from ..models import Member
from ..schemas import FaceRegister, MemberRead, NFCBind
from .attendance import decode_image

router = APIRouter(prefix="/members", tags=["members"])

def _read(m: Member) -> MemberRead:
    return MemberRead(id=m.id, name=m.name, has_face=bool(m.face_descriptor), nfc_id=m.nfc_id)

@router.get("/me", response_model=MemberRead)
async def me(claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    return _read(await svc.directory.ensure_member(caller_id(claims), claims.get("name")))

@router.post("/me/face", response_model=MemberRead)
async def register_face(payload: FaceRegister, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    if payload.descriptor is not None:
        face = payload.descriptor
    elif payload.image:
        face = decode_image(payload.image)
    else:
        raise Malformed("Please provide an image or a descriptor")
    return _read(await svc.dispatcher.register_face(caller_id(claims), face))

@router.put("/me/nfc", response_model=MemberRead)
async def bind_nfc(payload: NFCBind, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    return _read(await svc.directory.bind_tag(caller_id(claims), payload.nfc_id.strip()))
