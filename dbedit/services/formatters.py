# dbedit/services/formatters.py
import logging
from typing import Dict

from markupsafe import Markup

from dbedit.models.columns import reference_name
from dbedit.services.renderer import Formatter

logger = logging.getLogger(__name__)

# Display callbacks available to column configs by name
formatters: Dict[str, Formatter] = {}


def register_formatter(name: str):
    """Decorator making a display callback available under `name`"""

    def decorator(func):
        if name in formatters:
            logger.warning(f"Formatter '{name}' replaced by {func.__module__}.{func.__name__}")
        formatters[name] = func
        return func

    return decorator


@register_formatter("mailto")
def mailto(pk, row, suffix, field, col, charset):
    """Render an e-mail address as a link"""
    address = row.get(reference_name(field))
    if not address:
        return None
    return Markup('<a href="mailto:{0}">{0}</a>').format(address)


@register_formatter("truncate")
def truncate(output, pk, row, suffix, field, col, charset, length=50):
    """Shorten long values for the list view"""
    if output is None or isinstance(output, Markup):
        return output
    output = str(output)
    return output if len(output) <= length else output[:length - 1].rstrip() + "…"
