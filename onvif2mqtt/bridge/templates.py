"""
Template Renderer
=================

Substitution of {name} placeholders in operator-supplied publish templates.

Tokens available to templates:
    {onvifDeviceId}  configured device name
    {eventType}      event kind (e.g. motion, people)
    {eventState}     observed state, rendered as true/false

Unknown placeholders are left in the output untouched.
"""

import re
from enum import Enum
from typing import Any, Mapping

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class TemplateRenderError(ValueError):
    """Template could not be rendered."""
    pass


def format_value(value: Any) -> str:
    """
    Render one substitution value.

    Examples:
        >>> format_value(True)
        'true'
        >>> format_value(None)
        'null'
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def render(template: str, values: Mapping[str, Any]) -> str:
    """
    Render a template.

    Args:
        template: Pattern containing {name} placeholders
        values: Substitution values by placeholder name

    Returns:
        Rendered string

    Raises:
        TemplateRenderError: If template is not a string

    Examples:
        >>> render("{onvifDeviceId}/{eventType}", {"onvifDeviceId": "cam1", "eventType": "motion"})
        'cam1/motion'
        >>> render("{onvifDeviceId}/{unknownToken}", {"onvifDeviceId": "cam1"})
        'cam1/{unknownToken}'
    """
    if not isinstance(template, str):
        raise TemplateRenderError(
            f"Template must be a string, got {type(template).__name__}"
        )

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        return format_value(values[name])

    return PLACEHOLDER_PATTERN.sub(_substitute, template)
