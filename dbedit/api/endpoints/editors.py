# dbedit/api/endpoints/editors.py
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.engine import Connection

from dbedit.api.dependencies import get_definitions, get_editor_request, get_session_store
from dbedit.core.db import get_connection
from dbedit.core.request import EditorRequest
from dbedit.core.store import KeyValueStore
from dbedit.services.formatters import formatters
from dbedit.services.registry import EditorDefinition, open_editor
from dbedit.templates import templates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/editors", tags=["editors"])


def run_editor(name: str, definition: EditorDefinition, conn: Connection, store: KeyValueStore,
               editor_request: EditorRequest) -> str:
    editor = open_editor(definition, conn, store, editor_request, formatters)
    return editor.execute(definition.prefix_for(name), definition.charset)


@router.get("")
async def list_editors(
        request: Request,
        definitions: Dict[str, EditorDefinition] = Depends(get_definitions)
):
    """Index of the configured editors"""
    return templates.TemplateResponse(
        request,
        "index.html",
        {"definitions": definitions}
    )


@router.api_route("/{name}", methods=["GET", "POST"])
async def editor_page(
        name: str,
        request: Request,
        editor_request: EditorRequest = Depends(get_editor_request),
        definitions: Dict[str, EditorDefinition] = Depends(get_definitions),
        conn: Connection = Depends(get_connection),
        store: KeyValueStore = Depends(get_session_store)
):
    """
    Render an editor inside the page.

    Mutating actions end in a redirect, raised as EditorRedirect and turned
    into a 303 by the application's exception handler.
    """
    definition = definitions.get(name)
    if definition is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Editor {name} not found"
        )

    content = await run_in_threadpool(run_editor, name, definition, conn, store, editor_request)

    return templates.TemplateResponse(
        request,
        "page.html",
        {
            "title": definition.title or name,
            "content": content
        }
    )
