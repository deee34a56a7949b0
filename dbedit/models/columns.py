# dbedit/models/columns.py
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from dbedit.core.exceptions import EditorConfigError


class JoinTable(BaseModel):
    """
    A table joined in for display.

    May be given positionally as [table, condition, alias, kind]. Without a
    kind the join is rendered as an INNER JOIN whose condition goes to WHERE.
    """
    table: str
    on: str
    alias: Optional[str] = None
    kind: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_sequence(cls, data):
        if isinstance(data, (list, tuple)):
            return dict(zip(("table", "on", "alias", "kind"), data))
        return data

    @property
    def explicit(self) -> bool:
        return bool(self.kind)

    def render(self) -> str:
        join = f"{(self.kind or 'INNER').upper()} JOIN {self.table}"
        if self.alias:
            join += f" AS {self.alias}"
        if self.explicit:
            join += f" ON {self.on}"
        return join


class ColumnBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    in_view: bool = True
    constraint: Optional[Union[int, float, str]] = None
    extra: bool = False
    tables: List[JoinTable] = Field(default_factory=list)
    allow_edit: Optional[str] = None  # SQL predicate, may differ per row
    input_classes: List[str] = Field(default_factory=list)
    default: Optional[Any] = None

    # Output
    no_esc: bool = False
    trim: bool = False
    nl2br: bool = False
    bold: bool = False
    formatter: Optional[str] = None
    post_formatter: Optional[str] = None

    # Input
    numeric: bool = False

    @property
    def has_constraint(self) -> bool:
        return self.constraint is not None

    @property
    def displayable(self) -> bool:
        return not self.has_constraint and self.in_view

    @property
    def in_forms(self) -> bool:
        return not self.has_constraint and not self.extra

    @property
    def is_joined(self) -> bool:
        return bool(self.tables)

    def label(self, field: str) -> str:
        return self.name or field


class PlainColumn(ColumnBase):
    kind: Literal["plain"] = "plain"
    input_type: str = "text"
    step: Optional[Union[int, float, str]] = None


class SqlColumn(ColumnBase):
    """Displays the result of an SQL expression instead of the stored value"""
    kind: Literal["sql"] = "sql"
    sql: str
    input_type: str = "text"
    step: Optional[Union[int, float, str]] = None


class DateColumn(ColumnBase):
    kind: Literal["date"] = "date"
    input_type: Literal["date", "datetime"] = "date"
    date_format: Optional[str] = None  # strftime format for display
    input_date: Optional[str] = None  # strptime format of submitted values

    @property
    def as_timestamp(self) -> bool:
        return self.date_format is not None


class CheckboxColumn(ColumnBase):
    kind: Literal["checkbox"] = "checkbox"
    labels: Dict[int, str] = Field(default_factory=lambda: {0: "No", 1: "Yes"})


class DropdownColumn(ColumnBase):
    kind: Literal["dropdown"] = "dropdown"
    options: Dict[str, Any]  # label -> stored value, in display order

    def label_for(self, value) -> Optional[str]:
        """First label whose value matches. Values are compared as strings."""
        if value is None:
            return None
        for label, option in self.options.items():
            if str(option) == str(value):
                return label
        return None


class TextareaColumn(ColumnBase):
    kind: Literal["textarea"] = "textarea"
    rows: int = 4
    cols: int = 40


Column = Annotated[
    Union[PlainColumn, SqlColumn, DateColumn, CheckboxColumn, DropdownColumn, TextareaColumn],
    Field(discriminator="kind")
]

ColumnMap = Dict[str, Column]

COLUMN_KINDS = {
    "plain": PlainColumn,
    "sql": SqlColumn,
    "date": DateColumn,
    "checkbox": CheckboxColumn,
    "dropdown": DropdownColumn,
    "textarea": TextareaColumn,
}

columns_adapter = TypeAdapter(ColumnMap)


class OtherColumn(BaseModel):
    """A value set by the calling code rather than the editor's forms"""
    type: Literal["date", "datetime", "timestamp", "number", "text"] = "text"
    val: Any


def reference_name(field: str) -> str:
    """Name used for aliases: the part after the last table qualifier"""
    return field.rsplit(".", 1)[-1]


def is_writable(field: str, col: ColumnBase) -> bool:
    """Can a submitted value be written to this column?"""
    return not col.has_constraint and not col.is_joined and "." not in field


def _normalise(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate the loose key style (type, dropdown, textarea, date...) to a tagged column"""
    col = dict(raw)
    if "kind" in col:
        return col

    input_type = col.pop("type", None)

    if "php" in col:
        col["formatter"] = col.pop("php")
    if "php_after" in col:
        col["post_formatter"] = col.pop("php_after")
    if "checkbox_value_html" in col:
        col["labels"] = col.pop("checkbox_value_html")

    if "sql" in col:
        col["kind"] = "sql"
    elif "dropdown" in col:
        col["kind"] = "dropdown"
        col["options"] = col.pop("dropdown")
    elif "textarea" in col:
        col["kind"] = "textarea"
        size = col.pop("textarea") or {}
        col.update({k: v for k, v in size.items() if k in ("rows", "cols")})
    elif input_type == "checkbox":
        col["kind"] = "checkbox"
    elif input_type in ("date", "datetime"):
        col["kind"] = "date"
        if "date" in col:
            col["date_format"] = col.pop("date")
    else:
        col["kind"] = "plain"

    model = COLUMN_KINDS[col["kind"]]
    if input_type and "input_type" in model.model_fields:
        col["input_type"] = input_type

    # Options that only matter to other kinds
    for key in ("date", "input_date", "step", "labels"):
        if key in col and key not in model.model_fields:
            del col[key]

    return col


def load_columns(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a column config, accepting model instances, tagged dicts or loose dicts"""
    data = {}
    for field, col in raw.items():
        if isinstance(col, ColumnBase):
            data[field] = col
        else:
            data[field] = _normalise(col)

    try:
        return columns_adapter.validate_python(data)
    except ValidationError as e:
        raise EditorConfigError(f"Invalid column configuration: {e}") from e
