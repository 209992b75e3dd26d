"""
Placeholder substitution for notification templates.

Templates use ``{{name}}`` placeholders. Only names present in the variables
mapping are substituted; anything else is left in the text untouched so a
typo in a template stays visible in the delivered message.
"""

import re
from collections.abc import Mapping
from typing import Any


def render(template: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``{{key}}`` for the keys in ``variables``.

    Substitution is a single pass: placeholder-looking text inside a
    substituted value is not expanded again. ``None`` renders as an empty
    string.
    """
    if not variables:
        return template

    pattern = re.compile(
        r"\{\{(" + "|".join(re.escape(key) for key in variables) + r")\}\}"
    )

    def _substitute(match: re.Match) -> str:
        value = variables[match.group(1)]
        return "" if value is None else str(value)

    return pattern.sub(_substitute, template)
