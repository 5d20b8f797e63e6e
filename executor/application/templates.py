from __future__ import annotations

from typing import Sequence

from executor.core.logging import get_logger
from executor.core.schema import Session, Template

logger = get_logger("templates")

DEFAULT_TEMPLATE_KEYWORD = "keruta"


def _matches_tag(template: Template, tag: str) -> bool:
    needle = tag.lower()
    return any(needle in (text or "").lower() for text in (template.name, template.display_name, template.description))


def select_best_template(
    templates: Sequence[Template],
    session: Session,
    *,
    keyword: str = DEFAULT_TEMPLATE_KEYWORD,
) -> Template | None:
    """Pick a provisioning template for ``session``.

    Session tags are tried in order against name, display name and
    description; then the house template family (``keyword`` in the name);
    then the first template offered.
    """

    if not templates:
        logger.warning("No templates available: session_id=%s", session.id)
        return None

    for tag in session.tags:
        if not tag:
            continue
        for template in templates:
            if _matches_tag(template, tag):
                logger.info("Template matched tag: session_id=%s tag=%s template_id=%s", session.id, tag, template.id)
                return template

    lowered = keyword.lower()
    if lowered:
        for template in templates:
            if lowered in template.name.lower():
                logger.info("Using %s template: session_id=%s template_id=%s", keyword, session.id, template.id)
                return template

    fallback = templates[0]
    logger.info("Using first available template: session_id=%s template_id=%s", session.id, fallback.id)
    return fallback
