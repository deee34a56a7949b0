# dbedit/models/editor.py
import time
import uuid
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from dbedit.models.columns import ColumnMap, load_columns


def generate_uid() -> str:
    return uuid.uuid4().hex


class EditorState(BaseModel):
    """
    Everything needed to rebuild an editor on a later request.

    Holds no live resources: the database connection and the callback
    registry are attached when the editor is rebuilt.
    """
    table: str
    primary: str
    cols: ColumnMap = Field(default_factory=dict)
    where: Optional[str] = None
    order: Optional[str] = None

    allow_add: bool = False
    allow_edit: bool = False
    allow_delete: bool = False
    edit_condition: Optional[str] = None  # A row must satisfy this to be edited
    delete_condition: Optional[str] = None  # A row must satisfy this to be deleted

    uid: str = Field(default_factory=generate_uid)
    atime: float = Field(default_factory=time.time)

    @field_validator("cols", mode="before")
    @classmethod
    def normalise_cols(cls, value):
        return load_columns(value or {})

    def idle_for(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.atime
