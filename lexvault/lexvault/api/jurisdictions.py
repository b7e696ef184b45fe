from uuid import UUID

from fastapi import APIRouter, Depends

from lexvault.dependencies import Services, get_services
from lexvault.schemas import JurisdictionDetail, JurisdictionTreeNode

router = APIRouter()


@router.get("", response_model=list[JurisdictionTreeNode])
async def get_jurisdiction_tree(
    services: Services = Depends(get_services),
) -> list[JurisdictionTreeNode]:
    """Full hierarchy, nested from the federal root down."""
    tree = await services.jurisdictions.get_tree()
    return tree.to_nested()


@router.get("/{jurisdiction_id}", response_model=JurisdictionDetail)
async def get_jurisdiction(
    jurisdiction_id: UUID,
    services: Services = Depends(get_services),
) -> JurisdictionDetail:
    return await services.jurisdictions.get_by_id(jurisdiction_id)
