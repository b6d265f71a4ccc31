"""Preview inspection endpoint.

Routes
------
POST /email-preview    Body: {"brazeUrl": "https://..."}    → parsed preview
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from emailqc.api.routers.common import enforce_rate_limit, validate_preview_url
from emailqc.parser import fetch_preview_html, parse_email
from emailqc.utils import describe_run_error, normalise_string

logger = logging.getLogger(__name__)

router = APIRouter()


class PreviewRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    braze_url: Optional[str] = None


@router.post("")
def inspect_preview(body: PreviewRequest, request: Request) -> dict[str, Any]:
    """Fetch a template preview and return its subject, preheader, links and CTAs.

    Callers use this to collect the email's links before submitting a run.
    """
    enforce_rate_limit(request)
    url = validate_preview_url(normalise_string(body.braze_url))

    try:
        html = fetch_preview_html(url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("[email-preview] fetch failed for %s: %s", url, exc)
        raise HTTPException(status_code=502, detail=describe_run_error(exc)) from exc

    parsed = parse_email(html)
    return {
        "subject": parsed.subject,
        "preheader": parsed.preheader,
        "links": list(parsed.links),
        "ctas": [{"label": c.label, "href": c.href} for c in parsed.ctas],
    }
