from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from mcqgen.routes.deps import require_admin
from mcqgen.services.key_pool import KeyStatus, UnknownKeyError, ValidationResult
from mcqgen.services.registry import get_key_pool

router = APIRouter(prefix="/keys", tags=["keys"], dependencies=[Depends(require_admin)])


class BulkKeysIn(BaseModel):
    keys: List[str] = Field(default_factory=list)


class KeyPoolOut(BaseModel):
    total: int
    available: int
    keys: List[KeyStatus]


def _pool_out() -> KeyPoolOut:
    pool = get_key_pool()
    statuses = pool.statuses()
    return KeyPoolOut(total=len(statuses), available=pool.available_count(), keys=statuses)


@router.get("", response_model=KeyPoolOut, summary="List API keys", description="Masked keys with rotation status and recovery progress.")
def list_keys():
    return _pool_out()


@router.post("/bulk", response_model=List[ValidationResult], summary="Add API keys",
             description="Validates keys in order; processing stops at the first malformed key or when the pool is full.")
def add_keys(data: BulkKeysIn):
    return get_key_pool().add(data.keys)


@router.post("/refresh", response_model=KeyPoolOut, summary="Re-check key health")
def refresh_keys():
    get_key_pool().refresh_health()
    return _pool_out()


@router.delete("/{key_id}", response_model=KeyPoolOut)
def remove_key(key_id: str):
    try:
        get_key_pool().remove(key_id)
    except UnknownKeyError:
        raise HTTPException(status_code=404, detail="key not found")
    return _pool_out()


@router.delete("", response_model=KeyPoolOut)
def clear_keys():
    get_key_pool().clear()
    return _pool_out()
