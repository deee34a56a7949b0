# dbedit/services/sql_builder.py
"""
SQL assembly for the table editor.

Table names, field names, predicates, WHERE and ORDER BY fragments come from
the editor configuration and are trusted. Everything that arrives with a
request is bound as a parameter.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from dbedit.models.columns import (
    CheckboxColumn, ColumnBase, DateColumn, OtherColumn, PlainColumn, SqlColumn,
    is_writable, reference_name
)
from dbedit.models.editor import EditorState

logger = logging.getLogger(__name__)

PRIMARY_KEY_ALIAS = "dbedit_primary_key"
ALLOW_EDIT_ALIAS = "dbedit_allow_edit"
ALLOW_DELETE_ALIAS = "dbedit_allow_delete"

INT_PATTERN = re.compile(r"^-?\d+$")
FLOAT_PATTERN = re.compile(r"^-?(\d+\.\d*|\.\d+)([eE][-+]?\d+)?$")


@dataclass
class SelectParts:
    fields: List[str]
    tables: str
    where: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def where_sql(self) -> str:
        return " AND ".join(self.where)


def origin_field(state: EditorState, field_name: str) -> str:
    """Qualify a field with the base table unless it already names a table"""
    if "." in field_name:
        return field_name
    return f"{state.table}.{field_name}"


def uses_join(state: EditorState, field_name: str, col: ColumnBase) -> bool:
    """Does displaying this column need a joined table?"""
    if col.is_joined:
        return True
    if "." in field_name:
        return field_name.rsplit(".", 1)[0] != state.table
    return False


def sql_alias(field_name: str, suffix: str) -> str:
    return f"{reference_name(field_name)}_sql{suffix}"


def unixtime_alias(field_name: str, suffix: str) -> str:
    return f"{reference_name(field_name)}_unixtime{suffix}"


def allow_edit_alias(field_name: str, suffix: str = "") -> str:
    return f"allow_edit_of_{reference_name(field_name)}{suffix}"


def timestamp_expression(expression: str, dialect: str) -> str:
    """Epoch seconds of a date/datetime expression"""
    if dialect == "postgresql":
        return f"CAST(EXTRACT(EPOCH FROM {expression}) AS BIGINT)"
    if dialect == "sqlite":
        return f"CAST(strftime('%s', {expression}) AS INTEGER)"
    return f"UNIX_TIMESTAMP({expression})"


def select_fields(state: EditorState, suffix: str, include_joins: bool, dialect: str) -> List[str]:
    """Field list for displaying rows"""
    fields = []
    for field_name, col in state.cols.items():
        if col.has_constraint or (not include_joins and uses_join(state, field_name, col)):
            continue

        origin = origin_field(state, field_name)

        if isinstance(col, SqlColumn):
            fields.append(f"({col.sql}) AS {sql_alias(field_name, suffix)}")
        elif isinstance(col, DateColumn) and col.as_timestamp:
            # Formatted later in the application's timezone, which must match the database's
            fields.append(f"{timestamp_expression(origin, dialect)} AS {unixtime_alias(field_name, suffix)}")
        else:
            fields.append(f"{origin} AS {reference_name(field_name)}")
    return fields


def constraint_conditions(state: EditorState) -> Tuple[List[str], Dict[str, Any]]:
    """Restrict rows to the partition fixed by constraint columns"""
    conditions = []
    params = {}
    for i, (field_name, col) in enumerate(state.cols.items()):
        if col.has_constraint:
            param = f"constraint_{i}"
            conditions.append(f"{origin_field(state, field_name)} = :{param}")
            params[param] = col.constraint
    return conditions, params


def build_select(state: EditorState, suffix: str, include_joins: bool, dialect: str) -> SelectParts:
    """Fields, tables and WHERE for viewing rows"""
    join_tables = []
    join_conditions = []
    if include_joins:
        for col in state.cols.values():
            for join in col.tables:
                join_tables.append(join.render())
                if not join.explicit:
                    join_conditions.append(join.on)

    tables = " ".join([state.table] + join_tables)

    where = []
    if state.where:
        where.append(f"({state.where})")
    constraints, params = constraint_conditions(state)
    where.extend(constraints)
    where.extend(f"({condition})" for condition in join_conditions)

    return SelectParts(
        fields=select_fields(state, suffix, include_joins, dialect),
        tables=tables,
        where=where,
        params=params
    )


def _condition(sql_condition: Optional[str]) -> str:
    return f" AND ({sql_condition})" if sql_condition else ""


def _flag(sql_condition: str, alias: str) -> str:
    return f"CASE WHEN ({sql_condition}) THEN 1 ELSE 0 END AS {alias}"


def view_query(state: EditorState, suffix: str, dialect: str) -> Tuple[str, Dict[str, Any]]:
    parts = build_select(state, suffix, True, dialect)

    fields = [f"{state.table}.{state.primary} AS {PRIMARY_KEY_ALIAS}"]
    if state.delete_condition:
        fields.append(_flag(state.delete_condition, ALLOW_DELETE_ALIAS))
    if state.edit_condition:
        fields.append(_flag(state.edit_condition, ALLOW_EDIT_ALIAS))
    fields.extend(parts.fields)

    sql = f"SELECT {', '.join(fields)} FROM {parts.tables}"
    if parts.where:
        sql += f" WHERE {parts.where_sql}"
    sql += f" ORDER BY {state.order or f'{state.table}.{state.primary} ASC'}"
    return sql, parts.params


def delete_confirm_query(state: EditorState, suffix: str, dialect: str, row_id: int) -> Tuple[str, Dict[str, Any]]:
    """One row for the delete confirmation. Joined columns are left out."""
    parts = build_select(state, suffix, False, dialect)

    fields = [f"{state.table}.{state.primary} AS {PRIMARY_KEY_ALIAS}"] + parts.fields
    where = parts.where + [f"{state.table}.{state.primary} = :pk"]

    sql = f"SELECT {', '.join(fields)} FROM {parts.tables} WHERE {' AND '.join(where)}"
    sql += _condition(state.delete_condition)
    return sql, dict(parts.params, pk=row_id)


def _row_filter(state: EditorState, row_id: int, sql_condition: Optional[str]) -> Tuple[str, Dict[str, Any]]:
    constraints, params = constraint_conditions(state)
    where = " AND ".join([f"{state.primary} = :pk"] + constraints)
    return f"WHERE {where}{_condition(sql_condition)}", dict(params, pk=row_id)


def column_permission_fields(state: EditorState, suffix: str = "") -> List[str]:
    return [
        f"({col.allow_edit}) AS {allow_edit_alias(field_name, suffix)}"
        for field_name, col in state.cols.items()
        if col.allow_edit
    ]


def edit_query(state: EditorState, suffix: str, row_id: int) -> Tuple[str, Dict[str, Any]]:
    """The row to edit, with each per-column edit predicate evaluated"""
    fields = [f"{state.table}.*", f"{state.table}.{state.primary} AS {PRIMARY_KEY_ALIAS}"]
    fields.extend(column_permission_fields(state, suffix))
    where, params = _row_filter(state, row_id, state.edit_condition)
    return f"SELECT {', '.join(fields)} FROM {state.table} {where}", params


def permission_query(state: EditorState, row_id: int) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    Re-evaluate edit permissions for a submitted row.

    Returns None when no predicate is configured.
    """
    fields = column_permission_fields(state)
    if not fields and not state.edit_condition:
        return None
    if not fields:
        fields = [f"{state.table}.{state.primary} AS {PRIMARY_KEY_ALIAS}"]
    where, params = _row_filter(state, row_id, state.edit_condition)
    return f"SELECT {', '.join(fields)} FROM {state.table} {where}", params


def insert_statement(state: EditorState, values: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    names = list(values)
    params = {f"v{i}": values[name] for i, name in enumerate(names)}
    placeholders = ", ".join(f":v{i}" for i in range(len(names)))
    return f"INSERT INTO {state.table} ({', '.join(names)}) VALUES ({placeholders})", params


def update_statement(state: EditorState, values: Mapping[str, Any], expressions: Mapping[str, str],
                     row_id: int) -> Tuple[str, Dict[str, Any]]:
    """UPDATE of bound `values` plus raw SQL `expressions` such as CURRENT_TIMESTAMP"""
    assignments = []
    params = {}
    for i, (name, value) in enumerate(values.items()):
        assignments.append(f"{name} = :v{i}")
        params[f"v{i}"] = value
    for name, expression in expressions.items():
        assignments.append(f"{name} = {expression}")

    where, where_params = _row_filter(state, row_id, state.edit_condition)
    params.update(where_params)
    return f"UPDATE {state.table} SET {', '.join(assignments)} {where}", params


def delete_statement(state: EditorState, row_id: int) -> Tuple[str, Dict[str, Any]]:
    where, params = _row_filter(state, row_id, state.delete_condition)
    return f"DELETE FROM {state.table} {where}", params


def coerce_numeric(value: Any) -> Any:
    """Numeric-looking strings become numbers, anything else is left alone"""
    if isinstance(value, str):
        stripped = value.strip()
        if INT_PATTERN.match(stripped):
            return int(stripped)
        if FLOAT_PATTERN.match(stripped):
            return float(stripped)
    return value


def parse_input_date(value: str, fmt: str, include_time: bool = False) -> str:
    """Convert a submitted date in `fmt` to the database's YYYY-MM-DD[ HH:MM:SS] form"""
    try:
        parsed = datetime.strptime(value.strip(), fmt)
    except ValueError:
        logger.warning(f"Submitted date {value!r} does not match format {fmt!r}")
        return value
    return parsed.strftime("%Y-%m-%d %H:%M:%S" if include_time else "%Y-%m-%d")


def normalise_value(col: ColumnBase, value: Any) -> Any:
    """Value to store for a field present in the submitted form"""
    if isinstance(col, CheckboxColumn):
        return 1
    if isinstance(col, DateColumn) and col.input_date:
        return parse_input_date(value, col.input_date, col.input_type == "datetime")
    if col.numeric or (isinstance(col, (PlainColumn, SqlColumn)) and col.input_type == "number"):
        return coerce_numeric(value)
    return value


def collect_values(state: EditorState, form: Mapping[str, Any], attr_prefix: str,
                   permitted: Optional[Callable[[str], bool]] = None,
                   include_constraints: bool = False) -> Dict[str, Any]:
    """
    Values to write from a submitted form.

    Only prefixed names of writable columns shown in forms are taken. A
    checkbox missing from the form was unchecked and is written as 0.
    """
    permitted = permitted or (lambda field_name: True)
    values = {}

    for name, value in form.items():
        if not name.startswith(attr_prefix):
            continue
        field_name = name[len(attr_prefix):]
        col = state.cols.get(field_name)
        if col is None or not col.in_forms or not is_writable(field_name, col) or not permitted(field_name):
            continue
        values[field_name] = normalise_value(col, value)

    for field_name, col in state.cols.items():
        if (isinstance(col, CheckboxColumn) and attr_prefix + field_name not in form and col.in_forms
                and is_writable(field_name, col) and permitted(field_name)):
            values[field_name] = 0
        elif include_constraints and col.has_constraint:
            values[field_name] = col.constraint

    return values


def other_column_values(other_cols: Mapping[str, OtherColumn]) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Split caller-set columns into bound values and SQL expressions"""
    values = {}
    expressions = {}
    for name, col in other_cols.items():
        if col.val == "NOW()":
            if col.type == "date":
                expressions[name] = "CURRENT_DATE"
            elif col.type in ("datetime", "timestamp"):
                expressions[name] = "CURRENT_TIMESTAMP"
        elif col.type == "number":
            values[name] = coerce_numeric(col.val)
        else:
            values[name] = col.val
    return values, expressions
