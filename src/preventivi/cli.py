"""
@file cli.py
@brief CLI per export preventivi e gestione template.
@ingroup cli_module

@details
Comandi:
- export: genera il .docx di un preventivo e lo scrive su file
- dump-context: stampa il contesto di sostituzione (JSON) senza render
- template-upload: salva un template su SQLite (sovrascrive a parità di nome)
- template-check: verifica un template .docx (struttura e tag sconosciuti)
- template-delete: elimina un template salvato
- serve: avvia le API HTTP con uvicorn

Errori del core: exit code 1 e {kind, message} JSON su stderr.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

from preventivi.document.engine import TemplateEngine
from preventivi.domain.errors import RenderError, TemplateNotFound
from preventivi.logging_config import setup_logging
from preventivi.render.pipeline import QuoteRenderer, check_template
from preventivi.settings import get_settings
from preventivi.storage.db import connect
from preventivi.storage.repository import (
    SqliteQuoteProvider,
    SqliteTemplateStore,
    delete_template,
    upsert_template,
)

logger = logging.getLogger(__name__)


def _renderer(args: argparse.Namespace) -> QuoteRenderer:
    settings = get_settings()
    conn = connect(args.db)
    return QuoteRenderer(
        SqliteQuoteProvider(conn),
        SqliteTemplateStore(conn),
        template_name=args.template_name,
        default_validity_days=settings.default_validity_days,
        engine=TemplateEngine(strict=not args.lenient),
    )


def cmd_export(args: argparse.Namespace) -> int:
    result = _renderer(args).render_quote(args.quote_id)
    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / result.filename
    path.write_bytes(result.data)
    print(json.dumps({"file": str(path), "size": len(result.data)}, ensure_ascii=False))
    return 0


def cmd_dump_context(args: argparse.Namespace) -> int:
    context = _renderer(args).context_for(args.quote_id)
    print(context.model_dump_json(indent=2))
    return 0


def cmd_template_upload(args: argparse.Namespace) -> int:
    src = Path(args.file)
    data = src.read_bytes()
    report = check_template(data)
    conn = connect(args.db)
    template = upsert_template(conn, args.name or src.stem, src.name, data)
    print(json.dumps(
        {"name": template.name, "filename": template.filename, "tags": report.tags, "unknown_tags": report.unknown},
        ensure_ascii=False,
    ))
    return 0


def cmd_template_check(args: argparse.Namespace) -> int:
    report = check_template(Path(args.file).read_bytes())
    print(json.dumps({"ok": report.ok, "tags": report.tags, "unknown_tags": report.unknown}, ensure_ascii=False))
    return 0 if report.ok else 2


def cmd_template_delete(args: argparse.Namespace) -> int:
    conn = connect(args.db)
    if not delete_template(conn, args.name):
        raise TemplateNotFound(args.name)
    print(json.dumps({"name": args.name, "deleted": True}, ensure_ascii=False))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn
    uvicorn.run("preventivi.api.main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    p = argparse.ArgumentParser(prog="preventivi")
    p.add_argument("--db", default=settings.db_path, help=f"Path DB SQLite (default: {settings.db_path})")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    export = sub.add_parser("export", help="Genera il .docx di un preventivo")
    export.add_argument("--quote-id", type=int, required=True)
    export.add_argument("--out-dir", default=".", help="Directory di output (default: corrente)")
    export.add_argument("--template-name", default=settings.template_name)
    export.add_argument(
        "--lenient",
        action="store_true",
        help="Sostituisce i tag sconosciuti con stringa vuota invece di fallire",
    )
    export.set_defaults(func=cmd_export)

    dump = sub.add_parser("dump-context", help="Stampa il contesto di sostituzione (JSON)")
    dump.add_argument("--quote-id", type=int, required=True)
    dump.set_defaults(func=cmd_dump_context, template_name=settings.template_name, lenient=False)

    upload = sub.add_parser("template-upload", help="Carica un template .docx su SQLite")
    upload.add_argument("--file", required=True)
    upload.add_argument("--name", default=None, help="Nome logico (default: nome file senza estensione)")
    upload.set_defaults(func=cmd_template_upload)

    check = sub.add_parser("template-check", help="Verifica un template .docx")
    check.add_argument("--file", required=True)
    check.set_defaults(func=cmd_template_check)

    delete = sub.add_parser("template-delete", help="Elimina un template salvato")
    delete.add_argument("--name", required=True)
    delete.set_defaults(func=cmd_template_delete)

    serve = sub.add_parser("serve", help="Avvia le API HTTP")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    """
    @brief Entry point CLI.
    @return Exit code (0 ok, 1 errore del core, 2 template con tag sconosciuti).
    """
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(args.log_level, settings.log_json)
    try:
        return args.func(args)
    except RenderError as exc:
        logger.error("%s: %s", exc.kind, exc.message)
        print(json.dumps({"error": exc.to_dict()}, ensure_ascii=False), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
