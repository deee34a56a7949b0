# dbedit/services/editor.py
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

from markupsafe import Markup, escape
from sqlalchemy import text
from sqlalchemy.engine import Connection, Result
from sqlalchemy.exc import SQLAlchemyError

from dbedit.core.config import settings
from dbedit.core.exceptions import EditorQueryError, EditorRedirect
from dbedit.core.request import EditorRequest, build_url
from dbedit.core.store import KeyValueStore
from dbedit.models.columns import OtherColumn, load_columns
from dbedit.models.editor import EditorState
from dbedit.services import sql_builder as sqlb
from dbedit.services.renderer import (
    Formatter, form_fields, is_checked, render_cell, render_template
)

# Set up logging
logger = logging.getLogger(__name__)

# Request action codes and their canonical names
ACTIONS = {
    "v": "view", "view": "view",
    "a": "add", "add": "add",
    "i": "insert", "insert": "insert",
    "e": "edit", "edit": "edit",
    "p": "post", "post": "post",
    "dc": "deleteconfirm", "deleteconfirm": "deleteconfirm",
    "d": "delete", "delete": "delete",
}

ACTION_CODES = {name: code for code, name in ACTIONS.items() if len(code) <= 2}

ROW_ID_PATTERN = re.compile(r"^[0-9]+$")


def objects_key(uid: str) -> str:
    return f"objects:{uid}"


def params_key(uid: str) -> str:
    return f"params:{uid}"


def initial_uri_key(uid: str) -> str:
    return f"initial_uri:{uid}"


def parse_row_id(value: Any) -> Optional[int]:
    """Row ids must be all digits; anything else is treated as absent"""
    if value is None:
        return None
    value = str(value)
    return int(value) if ROW_ID_PATTERN.match(value) else None


class DbEditor:
    """
    Table editor for one database table.

    Use `init_editor()` to create or restore an instance; it keeps the
    editor's configuration in the session store between requests.
    """

    def __init__(self, state: EditorState, conn: Connection, store: Optional[KeyValueStore] = None,
                 request: Optional[EditorRequest] = None, is_new: bool = True,
                 formatters: Optional[Mapping[str, Formatter]] = None):
        self.state = state
        self.conn = conn
        self.store = store
        self.request = request or EditorRequest()
        self.is_new = is_new
        self.formatters = dict(formatters or {})
        self.other_cols: Dict[str, OtherColumn] = {}

        self.id_param = settings.ID_PARAM
        self.action_param = settings.ACTION_PARAM
        self.instance_param = settings.INSTANCE_PARAM

        self.outer_classes = {"v": None, "a": None, "dc": None, "e": None}

        self.delete_header_html = Markup("Delete")
        self.delete_html = Markup("Delete")
        self.add_html = Markup('<a href="[+add_url+]">Add</a>')
        self.cancel_html = Markup(
            '<button type="submit" name="[+name+]" value="v" '
            'onclick="this.type=\'button\'; window.location.href=\'[+url+]\';">Cancel</button>'
        )
        self.reset_html = Markup('<button type="reset">Reset</button>')

        self.debug = False
        self.sql_log: List[str] = []

    @property
    def uid(self) -> str:
        return self.state.uid

    @property
    def dialect(self) -> str:
        return self.conn.dialect.name

    # Persistence

    def save(self):
        """Store the configuration, but only while the editor is being created"""
        if self.is_new and self.store is not None:
            self.store.set(objects_key(self.uid), self.state.model_dump(mode="json"))

    def touch(self):
        """Record use of the editor so it is not evicted"""
        self.state.atime = time.time()
        if self.store is None:
            return
        if self.is_new:
            self.save()
            return
        stored = self.store.get(objects_key(self.uid))
        if stored is not None:
            stored["atime"] = self.state.atime
            self.store.set(objects_key(self.uid), stored)

    # Configuration

    def allow_add(self, allow: bool):
        """
        Set whether rows can be added.

        Called while the editor is being created this becomes the default for
        later requests, otherwise it only lasts for this request.
        """
        self.state.allow_add = bool(allow)
        self.save()

    def allow_edit(self, allow: bool, sql_condition: Optional[str] = None):
        """Set whether rows can be edited; `sql_condition` must hold for a row to be editable"""
        self.state.allow_edit = bool(allow)
        self.state.edit_condition = sql_condition
        self.save()

    def allow_delete(self, allow: bool, sql_condition: Optional[str] = None):
        """Set whether rows can be deleted; `sql_condition` must hold for a row to be deletable"""
        self.state.allow_delete = bool(allow)
        self.state.delete_condition = sql_condition
        self.save()

    def set_cols(self, cols: Mapping[str, Any]):
        """Replace the column config. Ignored once the editor has been created."""
        if self.is_new:
            self.state.cols = load_columns(cols)
            self.save()

    def set_order(self, sql_order: Optional[str]):
        self.state.order = sql_order
        self.save()

    def set_other_cols(self, other_cols: Mapping[str, Any]):
        """Values written on every row update that the editor's forms do not supply"""
        self.other_cols = {
            name: col if isinstance(col, OtherColumn) else OtherColumn.model_validate(col)
            for name, col in other_cols.items()
        }

    def param(self, name: str, value: Any = None) -> Any:
        """
        Keep data for the calling code alongside the editor.

        On the request that creates the editor `value` is stored and returned;
        on later requests the stored value is returned instead.
        """
        if self.store is None:
            return value

        stored = self.store.get(params_key(self.uid)) or {}
        if not self.is_new:
            return stored.get(name)

        stored[name] = value
        self.store.set(params_key(self.uid), stored)
        return value

    # Database access

    def _query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Result:
        self.sql_log.append(sql)
        logger.debug(f"SQL: {sql} | params: {params}")
        try:
            return self.conn.execute(text(sql), params or {})
        except SQLAlchemyError as e:
            self.conn.rollback()
            message = str(getattr(e, "orig", None) or e)
            logger.error(f"Query failed: {message} | SQL: {sql}")
            raise EditorQueryError(sql, message) from e

    def _fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        row = self._query(sql, params).mappings().first()
        return dict(row) if row is not None else None

    def _fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._query(sql, params).mappings()]

    def _write(self, sql: str, params: Dict[str, Any]) -> int:
        result = self._query(sql, params)
        self.conn.commit()
        return result.rowcount

    # URLs

    def url(self, params: Optional[Mapping[str, Any]] = None, add_handle: bool = True) -> str:
        """URL of the next editor request, keeping the caller's own query parameters"""
        reserved = (self.action_param, self.id_param, "updated", self.instance_param)
        return build_url(
            self.request.url, params, reserved,
            self.instance_param, self.uid if add_handle else None
        )

    def _redirect(self, params: Optional[Mapping[str, Any]] = None):
        raise EditorRedirect(self.url(params))

    def _cancel_html(self) -> Markup:
        html = str(self.cancel_html)
        html = html.replace("[+name+]", str(escape(self.action_param)))
        html = html.replace("[+url+]", str(escape(self.url())))
        return Markup(html)

    # Dispatch

    def execute(self, attr_prefix: str, charset: str = "utf-8", action: Optional[str] = None,
                row_id: Any = None) -> Markup:
        """
        Run the editor and return its HTML.

        Mutating actions (insert, post, delete) never return: they raise
        EditorRedirect back to the list view.
        """
        self.touch()

        if not action:
            action = self.request.param(self.action_param) or "v"

        if row_id is None:
            row_id = self.request.param(self.id_param)
        row_id = parse_row_id(row_id)

        action = ACTIONS.get(action)
        if action is None:
            return Markup("")

        if row_id is None and action == "edit":
            action = "view"

        code = ACTION_CODES[action]
        if code in self.outer_classes:
            current = self.outer_classes[code]
            self.outer_classes[code] = f"{current} {attr_prefix}action_{code}" if current else f"{attr_prefix}action_{code}"

        # Keeps synthetic column aliases unique to this render pass
        suffix = uuid.uuid4().hex[:13]

        handler = getattr(self, f"_{action}")
        output = handler(attr_prefix, charset, row_id, suffix)

        if self.debug:
            output += render_template("sql_log.html", statements=self.sql_log)

        return output

    def _view(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        sql, params = sqlb.view_query(state, suffix, self.dialect)

        rows = []
        for row in self._fetch_all(sql, params):
            pk = row[sqlb.PRIMARY_KEY_ALIAS]
            editable = state.allow_edit and (
                not state.edit_condition or is_checked(row.get(sqlb.ALLOW_EDIT_ALIAS)))
            deletable = state.allow_delete and (
                not state.delete_condition or is_checked(row.get(sqlb.ALLOW_DELETE_ALIAS)))
            rows.append({
                "pk": pk,
                "edit_url": self.url({self.action_param: "e", self.id_param: pk}) if editable else None,
                "delete_url": self.url({self.action_param: "dc", self.id_param: pk}) if deletable else None,
                "cells": [
                    render_cell(row, suffix, field, col, charset, self.formatters)
                    for field, col in state.cols.items()
                    if col.displayable
                ],
            })

        add_html = None
        if state.allow_add:
            add_url = str(escape(self.url({self.action_param: "a"})))
            add_html = Markup(str(self.add_html).replace("[+add_url+]", add_url))

        return render_template(
            "view.html",
            prefix=attr_prefix,
            outer_class=self.outer_classes["v"],
            updated=is_checked(self.request.query.get("updated")),
            headers=[col.label(field) for field, col in state.cols.items() if col.displayable],
            allow_delete=state.allow_delete,
            delete_header_html=Markup(self.delete_header_html),
            delete_html=Markup(self.delete_html),
            rows=rows,
            add_html=add_html,
        )

    def _render_form(self, attr_prefix, fields, outer_class, submit_action, submit_label,
                     row_id=None, submit_id=None, reset_html=None):
        return render_template(
            "form.html",
            prefix=attr_prefix,
            fields=fields,
            outer_class=outer_class,
            action_url=self.url(add_handle=False),
            action_param=self.action_param,
            id_param=self.id_param,
            instance_param=self.instance_param,
            uid=self.uid,
            row_id=row_id,
            submit_action=submit_action,
            submit_label=submit_label,
            submit_id=submit_id,
            reset_html=reset_html,
            cancel_html=self._cancel_html(),
        )

    def _add(self, attr_prefix, charset, row_id, suffix):
        defaults = {field: col.default for field, col in self.state.cols.items()}
        fields = form_fields(self.state.cols, attr_prefix, defaults)
        return self._render_form(attr_prefix, fields, self.outer_classes["a"], "i", "Add")

    def _edit(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        if not state.allow_edit:
            return Markup("")

        row = self._fetch_one(*sqlb.edit_query(state, suffix, row_id))
        if row is None:
            return Markup("")

        disabled = {
            field: not is_checked(row.get(sqlb.allow_edit_alias(field, suffix)))
            for field, col in state.cols.items()
            if col.allow_edit
        }
        fields = form_fields(state.cols, attr_prefix, row, disabled)
        return self._render_form(
            attr_prefix, fields, self.outer_classes["e"], "p", "Edit",
            row_id=row_id, submit_id=f"{attr_prefix}submit", reset_html=self.reset_html
        )

    def _post(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        if row_id is None:
            self._redirect()
        if not state.allow_edit:
            logger.info(f"Edit of {state.table} row {row_id} refused: editing not allowed")
            self._redirect({"updated": "0"})

        # Column predicates are evaluated again here; the form's disabled inputs prove nothing
        permissions = None
        query = sqlb.permission_query(state, row_id)
        if query is not None:
            permissions = self._fetch_one(*query)
            if permissions is None:
                logger.info(f"Edit of {state.table} row {row_id} refused by row condition")
                self._redirect({"updated": "0"})

        def permitted(field):
            col = state.cols[field]
            if permissions is None or not col.allow_edit:
                return True
            return is_checked(permissions.get(sqlb.allow_edit_alias(field)))

        values = sqlb.collect_values(state, self.request.form, attr_prefix, permitted)
        other_values, expressions = sqlb.other_column_values(self.other_cols)
        values.update(other_values)

        if values or expressions:
            self._write(*sqlb.update_statement(state, values, expressions, row_id))
            logger.info(f"Updated {state.table} row {row_id}: {', '.join(list(values) + list(expressions))}")

        self._redirect({"updated": "1"})

    def _insert(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        if not state.allow_add:
            logger.info(f"Insert into {state.table} refused: adding not allowed")
            self._redirect({"updated": "0"})

        values = sqlb.collect_values(state, self.request.form, attr_prefix, include_constraints=True)
        if values:
            self._write(*sqlb.insert_statement(state, values))
            logger.info(f"Inserted row into {state.table}")

        self._redirect({"updated": "1"})

    def _deleteconfirm(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        if row_id is None:
            return self._view(attr_prefix, charset, row_id, suffix)
        if not state.allow_delete:
            return Markup("")

        row = self._fetch_one(*sqlb.delete_confirm_query(state, suffix, self.dialect, row_id))
        if row is None:
            return Markup("")

        cells = [
            (col.label(field), render_cell(row, suffix, field, col, charset, self.formatters))
            for field, col in state.cols.items()
            if col.displayable and not sqlb.uses_join(state, field, col)
        ]
        return render_template(
            "delete_confirm.html",
            prefix=attr_prefix,
            outer_class=self.outer_classes["dc"],
            cells=cells,
            action_url=self.url(add_handle=False),
            action_param=self.action_param,
            id_param=self.id_param,
            instance_param=self.instance_param,
            uid=self.uid,
            row_id=row_id,
            cancel_html=self._cancel_html(),
        )

    def _delete(self, attr_prefix, charset, row_id, suffix):
        state = self.state
        if row_id is not None and state.allow_delete:
            deleted = self._write(*sqlb.delete_statement(state, row_id))
            logger.info(f"Deleted {deleted} row(s) from {state.table} with {state.primary} = {row_id}")
        self._redirect()
