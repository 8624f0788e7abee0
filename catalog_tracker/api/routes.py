# catalog_tracker/api/routes.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..db import get_db
from ..errors import RunAlreadyActive
from ..models import TriggerType
from ..utils import logger

router = APIRouter()


def get_coordinator(request: Request):
    return request.app.state.coordinator


def get_run_scheduler(request: Request):
    return request.app.state.run_scheduler


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/scraper/start")
def start_scraper(coordinator=Depends(get_coordinator)):
    try:
        run_id = coordinator.start(TriggerType.MANUAL)
    except RunAlreadyActive as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception("Failed to start scraper: %s", e)
        raise HTTPException(status_code=500, detail="Failed to start scraper")
    return {"run_id": run_id, "message": "Scraper started"}


@router.delete("/scraper/start")
def stop_scraper(coordinator=Depends(get_coordinator)):
    return {"stopped": coordinator.stop()}


@router.get("/scraper/status")
def scraper_status(coordinator=Depends(get_coordinator)):
    return {"is_running": coordinator.is_running(), "current_run_id": coordinator.current_run_id}


@router.get("/scraper/runs", response_model=List[schemas.ScraperRunOut])
def scraper_runs(db: Session = Depends(get_db)):
    return crud.list_runs(db, limit=50)


@router.get("/scheduler", response_model=schemas.SchedulerConfigOut)
def get_schedule(run_scheduler=Depends(get_run_scheduler)):
    return run_scheduler.get_config()


@router.post("/scheduler", response_model=schemas.SchedulerConfigOut)
def update_schedule(payload: schemas.SchedulerConfigIn, run_scheduler=Depends(get_run_scheduler)):
    try:
        return run_scheduler.update(payload.enabled, payload.cron_expr)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/listings", response_model=List[schemas.ListingOut])
def listings(
    skip: int = 0,
    limit: int = 20,
    seller_phone: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    model_name: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    db: Session = Depends(get_db)
):
    filters = {
        "seller_phone": seller_phone,
        "is_active": is_active,
        "model_name": model_name,
        "min_price": min_price,
        "max_price": max_price,
    }
    res = crud.list_listings(db, skip=skip, limit=limit, filters=filters)
    return res["items"]


@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: str, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.get("/listings/{listing_id}/history", response_model=List[schemas.ListingHistoryOut])
def listing_history(listing_id: str, db: Session = Depends(get_db)):
    if not crud.get_listing(db, listing_id):
        raise HTTPException(status_code=404, detail="Listing not found")
    return crud.list_listing_history(db, listing_id)


@router.get("/sellers", response_model=List[schemas.SellerOut])
def sellers(db: Session = Depends(get_db)):
    return crud.list_sellers(db)


@router.get("/scan-logs", response_model=List[schemas.ScanLogOut])
def scan_logs(
    seller_phone: Optional[str] = Query(None),
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db)
):
    return crud.list_scan_logs(db, seller_phone=seller_phone, skip=skip, limit=limit)
