from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends

from ..deps import Services, caller_id, get_claims, get_services
from ..core.errors import NotAuthorized
from ..schemas import GroupCreate, GroupMembersAdd, GroupRead

router = APIRouter(prefix="/groups", tags=["groups"])

@router.post("", response_model=GroupRead, status_code=201)
async def create_group(payload: GroupCreate, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    group = await svc.directory.create_group(
        owner_id=caller_id(claims), name=payload.name, code=payload.code, member_ids=payload.member_ids
    )
    _, members = await svc.directory.get_group(group.id)
    return GroupRead(id=group.id, name=group.name, code=group.code, owner_id=group.owner_id, member_ids=members)

@router.get("/{group_id}", response_model=GroupRead)
async def get_group(group_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    group, members = await svc.directory.get_group(group_id)
    uid = caller_id(claims)
    if group.owner_id != uid and uid not in members:
        raise NotAuthorized()
    return GroupRead(id=group.id, name=group.name, code=group.code, owner_id=group.owner_id, member_ids=members)

@router.post("/{group_id}/members", response_model=GroupRead)
async def add_members(group_id: uuid.UUID, payload: GroupMembersAdd, claims: dict = Depends(get_claims),
                      svc: Services = Depends(get_services)):
    group, _ = await svc.directory.get_group(group_id)
    if group.owner_id != caller_id(claims):
        raise NotAuthorized()
    members = await svc.directory.add_members(group_id, payload.member_ids)
    return GroupRead(id=group.id, name=group.name, code=group.code, owner_id=group.owner_id, member_ids=members)
