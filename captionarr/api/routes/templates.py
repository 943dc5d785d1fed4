"""Template validation and application endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from captionarr.api.dependencies import get_selector
from captionarr.api.models import (
    ApplyTemplateRequest,
    TemplateModel,
    ValidationResponse,
)
from captionarr.core.types import AudioAnalysisData, BatchSelectionOptions, SubtitleTemplate
from captionarr.templates import AnimationSelector

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_template(model: TemplateModel) -> SubtitleTemplate:
    return SubtitleTemplate.from_dict(model.model_dump(by_alias=True))


@router.post("/templates/validate", response_model=ValidationResponse)
def validate_template(
    template: TemplateModel,
    selector: AnimationSelector = Depends(get_selector),
):
    """Validate a template without applying it."""
    result = selector.validate_template(template.model_dump(by_alias=True))
    return result.to_dict()


@router.post("/templates/apply")
def apply_template(
    request: ApplyTemplateRequest,
    selector: AnimationSelector = Depends(get_selector),
) -> dict:
    """Apply a template to a transcript.

    Rule and expression failures are reported inside the result
    (success=false, errors, warnings), not as HTTP errors.
    """
    try:
        options = (
            BatchSelectionOptions.from_dict(request.options.model_dump(exclude_none=True))
            if request.options
            else BatchSelectionOptions()
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None

    template = _to_template(request.template)
    audio_data = AudioAnalysisData.from_dict(request.audio_data.model_dump(by_alias=True))

    result = selector.apply_template(template, audio_data, options)
    logger.debug(
        f"Applied template '{template.id}' via API: success={result.success}, "
        f"{len(result.applied_rules)} applied rule(s)"
    )
    return result.to_dict()


@router.delete("/cache")
def clear_cache(selector: AnimationSelector = Depends(get_selector)) -> dict:
    """Drop compiled templates, cached variables and rule statistics."""
    selector.clear_caches()
    return {"cleared": True}


@router.get("/stats")
def get_stats(selector: AnimationSelector = Depends(get_selector)) -> dict:
    """Snapshot of cache and rule statistics."""
    return selector.get_performance_stats().to_dict()
