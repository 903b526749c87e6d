from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.data import CANCELLATION_REASONS, LOCATIONS
from app.models import Category, ServiceType
from app.services.request_store import request_store

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/services", response_model=list[ServiceType])
def list_services(category: Optional[Category] = Query(default=None)):
    return request_store.list_service_types(category=category)


@router.get("/services/{service_id}", response_model=ServiceType)
def service_details(service_id: str):
    service = request_store.get_service_type(service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.get("/locations", response_model=list[str])
def list_locations():
    return LOCATIONS


@router.get("/cancellation-reasons", response_model=list[str])
def list_cancellation_reasons():
    return CANCELLATION_REASONS
