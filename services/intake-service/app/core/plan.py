import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

logger = logging.getLogger(__name__)

Number = Union[int, float, str]


class DiyOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    tools: Optional[List[str]] = None
    effort_hours: Optional[Number] = None
    est_cost_usd_monthly: Optional[Number] = None


class LimboOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    timeline_weeks_total: Optional[Number] = None
    price_band_usd: Optional[str] = None


class Plan(BaseModel):
    model_config = ConfigDict(extra="allow")

    problem_statement: Optional[str] = None
    diy_option: Optional[DiyOption] = None
    limbo_option: Optional[LimboOption] = None


def plan_issues(raw: Dict[str, Any]) -> List[str]:
    """Describe where a plan departs from the expected shape."""
    try:
        Plan.model_validate(raw)
    except ValidationError as exc:
        return [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return []


def coerce_plan(raw: Any) -> Optional[Dict[str, Any]]:
    # Plans are passed through untouched; shape problems are only logged.
    if not isinstance(raw, dict):
        return None
    issues = plan_issues(raw)
    if issues:
        logger.info("plan shape differs from schema: %s", "; ".join(issues))
    return raw
