# dbedit/api/dependencies.py
from functools import lru_cache
from typing import Dict

from fastapi import HTTPException, Request, status

from dbedit.core.config import settings
from dbedit.core.request import EditorRequest
from dbedit.core.store import KeyValueStore, get_store
from dbedit.services.registry import EditorDefinition, load_definitions


async def get_editor_request(request: Request) -> EditorRequest:
    """Snapshot the request for the editor, reading the form body on POST"""
    form = {}
    if request.method == "POST":
        form_data = await request.form()
        # File uploads are not editor input
        form = {name: value for name, value in form_data.items() if isinstance(value, str)}

    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    return EditorRequest(
        method=request.method,
        url=url,
        query=dict(request.query_params),
        form=form,
        host=request.url.hostname or ""
    )


def get_session_store(request: Request) -> KeyValueStore:
    """Session-scoped view of the editor store"""
    session_id = getattr(request.state, "session_id", None)
    if not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No session"
        )
    return get_store().scoped(session_id)


@lru_cache
def get_definitions() -> Dict[str, EditorDefinition]:
    """Editor definitions from EDITORS_FILE, read once"""
    if settings.EDITORS_FILE is None:
        return {}
    return load_definitions(settings.EDITORS_FILE)
