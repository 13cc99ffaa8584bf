from fastapi import APIRouter, Depends, HTTPException

from invoice_intake.core.dependencies import get_template_service
from invoice_intake.schemas.template import (
    Template,
    TemplateInsights,
    TemplateListResponse,
)
from invoice_intake.services.template_service import TemplateService

router = APIRouter()


@router.get(
    "/",
    response_model=TemplateListResponse,
    summary="List learned supplier templates",
)
async def list_templates(
    service: TemplateService = Depends(get_template_service),
) -> TemplateListResponse:
    templates = await service.list_templates()
    return TemplateListResponse(total=len(templates), templates=templates)


@router.get(
    "/{counterparty_id}",
    response_model=Template,
    summary="Get a supplier's template",
)
async def get_template(
    counterparty_id: str,
    service: TemplateService = Depends(get_template_service),
) -> Template:
    template = await service.get_template(counterparty_id)
    if template is None:
        raise HTTPException(
            status_code=404,
            detail=f"No template for counterparty {counterparty_id}",
        )
    return template


@router.get(
    "/{counterparty_id}/insights",
    response_model=TemplateInsights,
    summary="Reliability and recommendations for a supplier",
)
async def get_template_insights(
    counterparty_id: str,
    service: TemplateService = Depends(get_template_service),
) -> TemplateInsights:
    return await service.get_insights(counterparty_id)
