from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledger.application.services.health_service import get_health_status
from ledger.infrastructure.cache.redis_client import get_redis_client
from ledger.infrastructure.db.session import get_db

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Health check", description="Report database and Redis connectivity.")
def ping(db: Session = Depends(get_db)):
    return get_health_status(db=db, redis_client=get_redis_client())
