# dbedit/services/renderer.py
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from markupsafe import Markup, escape

from dbedit.core.exceptions import EditorConfigError
from dbedit.models.columns import (
    CheckboxColumn, ColumnBase, DateColumn, DropdownColumn, SqlColumn, is_writable, reference_name
)
from dbedit.services.sql_builder import PRIMARY_KEY_ALIAS, sql_alias, unixtime_alias
from dbedit.templates import templates

logger = logging.getLogger(__name__)

Formatter = Callable[..., Any]

NEWLINE = re.compile(r"(\r\n|\n\r|\n|\r)")


def resolve_formatter(formatters: Optional[Mapping[str, Formatter]], name: str) -> Formatter:
    try:
        return (formatters or {})[name]
    except KeyError:
        raise EditorConfigError(f"No formatter registered under the name '{name}'")


def is_checked(value: Any) -> bool:
    return value not in (None, 0, "0", "", False)


def format_timestamp(timestamp: Any, fmt: str) -> Optional[str]:
    """Format epoch seconds in the local timezone"""
    if timestamp is None or timestamp == "":
        return None
    return datetime.fromtimestamp(int(timestamp)).strftime(fmt)


def to_html(value: Any, no_esc: bool = False) -> Markup:
    if value is None:
        return Markup("")
    if no_esc:
        return Markup(str(value))
    return escape(value)


def nl2br(html: Markup) -> Markup:
    return Markup(NEWLINE.sub(r"<br />\1", str(html)))


def render_cell(row: Mapping[str, Any], suffix: str, field: str, col: ColumnBase,
                charset: str = "utf-8", formatters: Optional[Mapping[str, Formatter]] = None) -> Markup:
    """
    One <td> of a displayed row. Empty for columns that are not displayed.

    A `formatter` callback replaces the editor's own resolution of the value;
    a `post_formatter` callback sees the resolved value before escaping.
    """
    if not col.displayable:
        return Markup("")

    ref = reference_name(field)
    pk = row.get(PRIMARY_KEY_ALIAS)
    no_esc = col.no_esc
    is_date = False

    if col.formatter:
        output = resolve_formatter(formatters, col.formatter)(pk, row, suffix, field, col, charset)
    elif isinstance(col, SqlColumn):
        output = row.get(sql_alias(field, suffix))
    elif isinstance(col, DateColumn) and col.as_timestamp:
        output = format_timestamp(row.get(unixtime_alias(field, suffix)), col.date_format)
        is_date = True
    elif isinstance(col, CheckboxColumn):
        output = col.labels.get(int(is_checked(row.get(ref))), "")
        no_esc = True
    elif isinstance(col, DropdownColumn):
        output = col.label_for(row.get(ref))
    else:
        output = row.get(ref)

    if col.post_formatter:
        output = resolve_formatter(formatters, col.post_formatter)(output, pk, row, suffix, field, col, charset)

    html = to_html(output, no_esc)

    if col.trim:
        html = Markup(html.strip())

    if col.nl2br:
        html = nl2br(html)

    if col.bold:
        html = Markup("<strong>{}</strong>").format(html)

    if is_date:
        timestamp = row.get(unixtime_alias(field, suffix))
        return Markup('<td data-order="{}">{}</td>').format("" if timestamp is None else timestamp, html)
    return Markup("<td>{}</td>").format(html)


def input_classes(col: ColumnBase) -> List[str]:
    classes = list(col.input_classes)
    input_type = getattr(col, "input_type", None)
    if input_type in ("date", "time", "datetime"):
        classes.append(input_type)
    return classes


def form_fields(cols: Mapping[str, ColumnBase], attr_prefix: str, values: Mapping[str, Any],
                disabled: Optional[Mapping[str, bool]] = None) -> List[Dict[str, Any]]:
    """Inputs for an add or edit form. Constraint, extra and joined columns never appear."""
    disabled = disabled or {}
    fields = []
    for field, col in cols.items():
        if not col.in_forms or not is_writable(field, col):
            continue
        value = values.get(field)
        fields.append({
            "field": field,
            "col": col,
            "kind": col.kind,
            "el_id": f"{attr_prefix}{field}",
            "label": col.label(field),
            "value": "" if value is None else value,
            "checked": is_checked(value),
            "disabled": bool(disabled.get(field)),
            "classes": " ".join(input_classes(col)),
        })
    return fields


def render_template(name: str, **context) -> Markup:
    return Markup(templates.get_template(f"editor/{name}").render(**context))
