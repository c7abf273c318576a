from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel

from alphabase.async_store import AsyncAlphaBase

from .auth_endpoints import require_user

router = APIRouter(tags=["kv"])
logger = logging.getLogger(__name__)

_MISSING = object()


class SetValueRequest(BaseModel):
    value: Any
    ttl: float | None = None


class BatchRequest(BaseModel):
    ops: list[Any]
    atomic: bool = True


def _store(request: Request) -> AsyncAlphaBase:
    return request.app.state.store


def _audit(request: Request, operation: str, key: str | None, actor: str, metadata: dict[str, Any] | None = None) -> None:
    sink = request.app.state.audit
    if sink is not None:
        sink.record(operation, key, actor, metadata)


@router.get("/stats")
async def stats(request: Request, actor: str = Depends(require_user)):
    result = await _store(request).statistics()
    return result.model_dump(mode="json")


@router.get("/api")
async def list_all(request: Request, actor: str = Depends(require_user)):
    data = await _store(request).all()
    _audit(request, "getAll", None, actor, {"keys": len(data)})
    return data


@router.get("/api/{key}")
async def get_value(key: str, request: Request, actor: str = Depends(require_user)):
    value = await _store(request).get(key, _MISSING)
    _audit(request, "get", key, actor, {"found": value is not _MISSING})
    if value is _MISSING:
        raise HTTPException(status_code=404, detail=f"key not found: {key}")
    return {"key": key, "value": value}


@router.put("/api/{key}")
@router.post("/api/{key}")
async def set_value(key: str, body: SetValueRequest, request: Request, actor: str = Depends(require_user)):
    await _store(request).set(key, body.value, body.ttl)
    _audit(request, "set", key, actor, {"ttl": body.ttl} if body.ttl else None)
    return {"success": True, "key": key}


@router.delete("/api/{key}")
async def delete_value(key: str, request: Request, actor: str = Depends(require_user)):
    existed = await _store(request).delete(key)
    _audit(request, "delete", key, actor, {"existed": existed})
    return {"success": True, "key": key, "existed": existed}


@router.get("/api/{key}/ttl")
async def get_ttl(key: str, request: Request, actor: str = Depends(require_user)):
    remaining = await _store(request).get_ttl(key)
    return {"key": key, "ttl": remaining}


@router.post("/batch")
async def batch(body: BatchRequest, request: Request, actor: str = Depends(require_user)):
    store = _store(request)
    if body.atomic:
        applied = await store.transactionally(body.ops)
    else:
        applied = await store.apply_batch(body.ops)
    _audit(request, "batch", None, actor, {"operations": applied, "atomic": body.atomic})
    return {"success": True, "applied": applied}


@router.post("/backup")
async def backup(request: Request, actor: str = Depends(require_user)):
    path = await _store(request).backup()
    _audit(request, "backup", None, actor, {"path": str(path)})
    return {"success": True, "path": str(path)}


@router.get("/export")
async def export(request: Request, actor: str = Depends(require_user)):
    envelope = await _store(request).export_envelope()
    _audit(request, "export", None, actor, {"keys": len(envelope["data"])})
    return envelope


@router.post("/import")
async def import_data(request: Request, body: dict[str, Any] = Body(...), actor: str = Depends(require_user)):
    await _store(request).import_bulk(body)
    _audit(request, "import", None, actor)
    return {"success": True}
