"""Channel label rendering. Pure functions only, no I/O."""

from __future__ import annotations

import re

from rolecounter.models import LabelVars

# Discord rejects channel names longer than this
MAX_LABEL_LENGTH = 100

_PLACEHOLDER = re.compile(r"\{(count|roleid|role|guild)\}", re.IGNORECASE)


def render(template: str, variables: LabelVars) -> str:
    """
    Substitute ``{count}``, ``{role}``, ``{roleid}`` and ``{guild}`` in one pass.
    Placeholders match case-insensitively; anything else is left verbatim,
    including braces inside substituted values.
    """
    values = {
        "count": str(variables.count),
        "role": variables.role_name,
        "roleid": variables.role_id,
        "guild": variables.community_name,
    }
    return _PLACEHOLDER.sub(lambda m: values[m.group(1).lower()], template)


def fit_label(label: str, limit: int = MAX_LABEL_LENGTH) -> str:
    """
    Clamp a label to ``limit`` characters.
    The tail is kept when the label ends in a number so the count stays visible.
    """
    if len(label) <= limit:
        return label
    match = re.search(r"\s*\d+$", label)
    if match and len(match.group(0)) < limit:
        suffix = match.group(0)
        return (label[: limit - len(suffix)]).rstrip() + suffix
    return label[:limit].rstrip()
