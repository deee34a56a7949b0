# dbedit/cli.py
import argparse
import logging
import sys

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from dbedit.core.config import settings
from dbedit.core.db import get_engine
from dbedit.core.exceptions import EditorConfigError
from dbedit.models.editor import EditorState
from dbedit.services import sql_builder

logger = logging.getLogger(__name__)


def serve(args):
    """Start the FastAPI server"""
    import uvicorn

    uvicorn.run(
        "dbedit.main:app",
        host=args.host or settings.HOST,
        port=args.port or settings.PORT,
        log_level=settings.LOG_LEVEL,
        reload=args.reload
    )


def check(args):
    """Validate the editors file and run each editor's list query once"""
    from dbedit.services.registry import load_definitions

    path = args.file or settings.EDITORS_FILE
    if path is None:
        print("No editors file given (use --file or set EDITORS_FILE)")
        return 1

    try:
        definitions = load_definitions(path)
    except EditorConfigError as e:
        print(f"Invalid editors file: {e}")
        return 1

    failures = 0
    engine = get_engine()
    with engine.connect() as conn:
        for name, definition in definitions.items():
            state = EditorState(
                table=definition.table,
                primary=definition.primary,
                cols=definition.cols,
                where=definition.where,
                order=definition.order,
                edit_condition=definition.edit_condition,
                delete_condition=definition.delete_condition
            )
            sql, params = sql_builder.view_query(state, "check", engine.dialect.name)
            try:
                rows = conn.execute(text(sql), params).fetchall()
                print(f"{name}: OK ({len(rows):,} rows in {definition.table})")
            except SQLAlchemyError as e:
                failures += 1
                print(f"{name}: FAILED\n  {sql}\n  {e}")

    return 1 if failures else 0


def main(argv=None):
    """Main entry point for the dbedit command"""
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    parser = argparse.ArgumentParser(description="Generic database table editor")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the web server")
    serve_parser.add_argument("--host", help="Interface to bind")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Check command
    check_parser = subparsers.add_parser("check", help="Validate editor definitions against the database")
    check_parser.add_argument("--file", help="Editors JSON file (defaults to EDITORS_FILE)")

    args = parser.parse_args(argv)

    if args.command == "serve":
        serve(args)
        return 0
    elif args.command == "check":
        return check(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
