"""Attribute Lookups - typed accessors for the known ABAC attribute paths"""
import re
from typing import Any, Callable, Dict, Optional

from ..domain.enums import AttributePath
from ..domain.models import EvaluationContext

AttributeLookup = Callable[[EvaluationContext], Any]

ATTRIBUTE_LOOKUPS: Dict[AttributePath, AttributeLookup] = {
    AttributePath.USER_DEPARTMENT_ID: lambda ctx: ctx.user.department_id,
    AttributePath.USER_DIVISION_ID: lambda ctx: ctx.user.division_id,
    AttributePath.USER_JOB_LEVEL: lambda ctx: ctx.user.job_level,
    AttributePath.USER_APPROVAL_LIMIT_AMOUNT: lambda ctx: ctx.user.approval_limit_amount,
    AttributePath.RESOURCE_DEPARTMENT_ID: lambda ctx: ctx.resource.department_id,
    AttributePath.RESOURCE_AMOUNT: lambda ctx: ctx.resource.amount,
    AttributePath.RESOURCE_STATUS: lambda ctx: ctx.resource.status,
    AttributePath.RESOURCE_CREATED_BY: lambda ctx: ctx.resource.created_by,
}

# {{user.department_id}} style references in condition values
_REFERENCE_PATTERN = re.compile(r"^\{\{\s*([a-z_]+\.[a-z_]+)\s*\}\}$")


def parse_attribute_path(path: str) -> Optional[AttributePath]:
    """Return the known path, or None for typos and unsupported paths"""
    try:
        return AttributePath(path.strip())
    except (ValueError, AttributeError):
        return None


def resolve_attribute(path: str, context: EvaluationContext) -> Any:
    """
    Look up an attribute for a dotted path

    Only paths in AttributePath resolve; anything else is reported by the
    graph validator and reads as absent here.

    Returns:
        The value, or None when the attribute is absent or unknown
    """
    known = parse_attribute_path(path)
    if known is None:
        return None
    return ATTRIBUTE_LOOKUPS[known](context)


def reference_path(value: Any) -> Optional[str]:
    """Extract the path from a `{{side.field}}` reference value"""
    if not isinstance(value, str):
        return None
    match = _REFERENCE_PATTERN.match(value.strip())
    return match.group(1) if match else None
