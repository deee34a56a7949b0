# dbedit/services/instances.py
import logging
import time
from typing import Any, Mapping, Optional

from sqlalchemy.engine import Connection

from dbedit.core.config import settings
from dbedit.core.exceptions import EditorRedirect
from dbedit.core.request import EditorRequest, build_url
from dbedit.core.store import KeyValueStore
from dbedit.models.editor import EditorState
from dbedit.services.editor import (
    DbEditor, initial_uri_key, objects_key, params_key
)
from dbedit.services.renderer import Formatter

# Set up logging
logger = logging.getLogger(__name__)


def sweep_expired(store: KeyValueStore, now: Optional[float] = None, timeout: Optional[int] = None,
                  origin_timeout: Optional[int] = None) -> int:
    """
    Remove editor instances that have not been used for `timeout` seconds.

    Their params go with them. The recorded origin URL is kept, so that a late
    request can still be sent back to the start, until `origin_timeout`
    seconds after the editor was last used.
    """
    now = time.time() if now is None else now
    timeout = settings.EDITOR_IDLE_TIMEOUT if timeout is None else timeout
    origin_timeout = settings.ORIGIN_URL_TIMEOUT if origin_timeout is None else origin_timeout

    removed = 0
    for key in store.keys("objects:"):
        data = store.get(key)
        if data is None:
            continue
        atime = data.get("atime", 0)
        if now - atime > timeout:
            uid = key[len("objects:"):]
            store.delete(objects_key(uid), params_key(uid))
            origin = store.get(initial_uri_key(uid))
            if origin is not None:
                store.set(initial_uri_key(uid), dict(origin, atime=atime))
            removed += 1
            logger.info(f"Evicted idle editor {uid} for table {data.get('table')}")

    for key in store.keys("initial_uri:"):
        uid = key[len("initial_uri:"):]
        origin = store.get(key)
        if origin is None or store.get(objects_key(uid)) is not None:
            continue
        if now - origin.get("atime", 0) > origin_timeout:
            store.delete(key)
            logger.debug(f"Dropped origin URL of editor {uid}")

    return removed


def init_editor(conn: Connection, store: KeyValueStore, request: EditorRequest, table: str, primary: str,
                cols: Mapping[str, Any], where: Optional[str] = None,
                formatters: Optional[Mapping[str, Formatter]] = None) -> DbEditor:
    """
    Create an editor, or restore the one the request refers to.

    `store` must be scoped to the caller's browser session. Raises
    EditorRedirect when the request names an editor that no longer exists.
    """
    sweep_expired(store)

    uid = request.param(settings.INSTANCE_PARAM)

    if not uid:
        state = EditorState(table=table, primary=primary, cols=cols, where=where)
        editor = DbEditor(state, conn, store, request, is_new=True, formatters=formatters)
        editor.save()
        store.set(initial_uri_key(state.uid), {"url": request.url, "atime": state.atime})
        logger.info(f"Created editor {state.uid} for table {table}")
        return editor

    data = store.get(objects_key(uid))
    if data is not None:
        state = EditorState.model_validate(data)
        logger.debug(f"Restored editor {uid} for table {state.table}")
        return DbEditor(state, conn, store, request, is_new=False, formatters=formatters)

    # Evicted or never existed: start again from where the editor was created
    origin = store.get(initial_uri_key(uid))
    location = origin.get("url") if origin else None
    if not location:
        reserved = (settings.ACTION_PARAM, settings.ID_PARAM, "updated", settings.INSTANCE_PARAM)
        location = build_url(request.url, None, reserved)
    logger.info(f"Editor {uid} not found, restarting at {location}")
    raise EditorRedirect(location)
