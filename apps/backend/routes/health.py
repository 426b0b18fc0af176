from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from apps.backend.repositories.ledger_repository import LedgerRepository
from apps.backend.services.core_service import get_cache, get_repository

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/store")
def health_store(repo: LedgerRepository = Depends(get_repository), cache=Depends(get_cache)):
    checks = repo.check_tables()
    ok = all(checks.values())
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"ok": ok, "checks": checks, "cache_entries": len(cache)},
    )
