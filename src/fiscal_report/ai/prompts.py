"""Literal placeholder substitution for stage prompt templates."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

CURRENT_REPORT = "{CURRENT_REPORT}"
INSTRUCTION = "{INSTRUCTION}"
FEEDBACK = "{FEEDBACK}"
CHANGE_COUNT = "{CHANGE_COUNT}"
RAW_INPUT = "{RAW_INPUT}"


def stage_placeholder(stage_id: str) -> str:
    """Placeholder that expands to a prior stage's raw output."""
    return f"{{STAGE_{stage_id}}}"


def render_prompt(template: str, values: Mapping[str, str]) -> str:
    """Replace each placeholder token with its value in a single pass.

    Substituted values are never rescanned, and tokens without a value are
    left in place and sent as literal text.
    """
    if not values:
        return template
    pattern = re.compile("|".join(re.escape(token) for token in values))
    rendered = pattern.sub(lambda match: values[match.group(0)], template)
    logger.debug("Prompt rendered — placeholders=%d length=%d", len(values), len(rendered))
    return rendered
