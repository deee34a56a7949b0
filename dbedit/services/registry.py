# dbedit/services/registry.py
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.engine import Connection

from dbedit.core.exceptions import EditorConfigError
from dbedit.core.request import EditorRequest
from dbedit.core.store import KeyValueStore
from dbedit.models.columns import ColumnMap, OtherColumn, load_columns
from dbedit.services.editor import DbEditor
from dbedit.services.instances import init_editor
from dbedit.services.renderer import Formatter

logger = logging.getLogger(__name__)


class EditorDefinition(BaseModel):
    """A named editor as declared in the editors file"""
    title: Optional[str] = None
    table: str
    primary: str = "id"
    cols: ColumnMap
    where: Optional[str] = None
    order: Optional[str] = None
    attr_prefix: Optional[str] = None
    charset: str = "utf-8"

    allow_add: bool = False
    allow_edit: bool = False
    edit_condition: Optional[str] = None
    allow_delete: bool = False
    delete_condition: Optional[str] = None

    other_cols: Dict[str, OtherColumn] = Field(default_factory=dict)

    @field_validator("cols", mode="before")
    @classmethod
    def normalise_cols(cls, value):
        return load_columns(value or {})

    def prefix_for(self, name: str) -> str:
        return self.attr_prefix if self.attr_prefix is not None else f"{name}_"


def parse_definitions(data: Mapping[str, Any]) -> Dict[str, EditorDefinition]:
    definitions = {}
    for name, raw in data.items():
        try:
            definitions[name] = EditorDefinition.model_validate(raw)
        except ValidationError as e:
            raise EditorConfigError(f"Invalid editor definition '{name}': {e}") from e
    return definitions


def load_definitions(path: Path) -> Dict[str, EditorDefinition]:
    """Read editor definitions from a JSON file"""
    try:
        data = orjson.loads(Path(path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise EditorConfigError(f"Cannot read editors file {path}: {e}") from e

    definitions = parse_definitions(data)
    logger.info(f"Loaded {len(definitions)} editor definition(s) from {path}")
    return definitions


def open_editor(definition: EditorDefinition, conn: Connection, store: KeyValueStore,
                request: EditorRequest, formatters: Optional[Mapping[str, Formatter]] = None) -> DbEditor:
    """Create or restore the editor for a definition, applying its permissions on creation"""
    editor = init_editor(
        conn, store, request, definition.table, definition.primary,
        definition.cols, definition.where, formatters
    )

    if editor.is_new:
        editor.set_order(definition.order)
        editor.allow_add(definition.allow_add)
        editor.allow_edit(definition.allow_edit, definition.edit_condition)
        editor.allow_delete(definition.allow_delete, definition.delete_condition)

    if definition.other_cols:
        editor.set_other_cols(definition.other_cols)

    return editor
