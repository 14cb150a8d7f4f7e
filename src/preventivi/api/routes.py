"""
@file routes.py
@brief Endpoints HTTP per export preventivo, gestione template e health.
@ingroup api_module

@details
Espone API minimali:
- GET  /api/health
- POST /api/export/{quote_id}
- POST /api/templates
- GET  /api/templates
- GET  /api/templates/{name}/check
- GET  /api/templates/{name}/download
- DELETE /api/templates/{name}

Mappatura errori del core:
- QuoteNotFound, TemplateNotFound -> 404
- ArchiveCorrupt, MalformedTemplate, UnresolvedTag, FormattingError -> 400
- qualsiasi altro errore -> 500
"""

from __future__ import annotations
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from preventivi.document.engine import TemplateEngine
from preventivi.domain.errors import QuoteNotFound, RenderError, TemplateNotFound
from preventivi.domain.models import DOCX_MIME_TYPE
from preventivi.render.pipeline import QuoteRenderer, check_template
from preventivi.settings import Settings, get_settings
from preventivi.storage.db import connect
from preventivi.storage.repository import (
    SqliteQuoteProvider,
    SqliteTemplateStore,
    delete_template,
    get_template,
    list_templates,
    upsert_template,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_NOT_FOUND = (QuoteNotFound, TemplateNotFound)


def get_conn(settings: Settings = Depends(get_settings)) -> Iterator[sqlite3.Connection]:
    """
    @brief Connessione SQLite per richiesta.
    """
    conn = connect(settings.db_path)
    try:
        yield conn
    finally:
        conn.close()


def render_error_handler(request: Request, exc: RenderError) -> JSONResponse:
    """
    @brief Traduce gli errori del core in risposte {kind, message}.
    """
    status = 404 if isinstance(exc, _NOT_FOUND) else 400
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


@router.get("/health")
def health():
    """
    @brief Healthcheck semplice.
    @return {"status": "ok", "timestamp": ...}
    """
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/export/{quote_id}")
def export_quote(
    quote_id: int,
    conn: sqlite3.Connection = Depends(get_conn),
    settings: Settings = Depends(get_settings),
):
    """
    @brief Genera il .docx del preventivo e lo restituisce come allegato.
    @param quote_id ID del preventivo.
    @return File .docx (Content-Disposition: attachment).
    """
    renderer = QuoteRenderer(
        SqliteQuoteProvider(conn),
        SqliteTemplateStore(conn),
        template_name=settings.template_name,
        default_validity_days=settings.default_validity_days,
        engine=TemplateEngine(strict=settings.strict_tags),
    )
    result = renderer.render_quote(quote_id)
    return Response(
        content=result.data,
        media_type=result.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@router.post("/templates", status_code=201)
def upload_template(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    conn: sqlite3.Connection = Depends(get_conn),
):
    """
    @brief Carica (o sovrascrive) un template.
    @param file File .docx.
    @param name Nome logico; default: nome file senza estensione.
    @return Metadati del template e tag trovati.

    @note
    Il template viene validato prima del salvataggio: un archivio non valido
    o con loop sbilanciati viene rifiutato con 400.
    """
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Nessun file caricato")
    filename = file.filename or "template.docx"
    report = check_template(data)
    template = upsert_template(
        conn,
        name or Path(filename).stem,
        filename,
        data,
        file.content_type or DOCX_MIME_TYPE,
    )
    return {
        "name": template.name,
        "filename": template.filename,
        "mime_type": template.mime_type,
        "size": len(data),
        "tags": report.tags,
        "unknown_tags": report.unknown,
    }


@router.get("/templates")
def templates(conn: sqlite3.Connection = Depends(get_conn)):
    return list_templates(conn)


@router.get("/templates/{name}/check")
def template_check(name: str, conn: sqlite3.Connection = Depends(get_conn)):
    """
    @brief Controlla un template salvato contro il vocabolario del preventivo.
    """
    template = get_template(conn, name)
    if template is None:
        raise TemplateNotFound(name)
    report = check_template(template.data)
    return {"name": name, "ok": report.ok, "tags": report.tags, "unknown_tags": report.unknown}


@router.get("/templates/{name}/download")
def template_download(name: str, conn: sqlite3.Connection = Depends(get_conn)):
    """
    @brief Scarica il file .docx di un template salvato.
    @throws TemplateNotFound Se il nome non esiste (404).
    """
    template = get_template(conn, name)
    if template is None:
        raise TemplateNotFound(name)
    return Response(
        content=template.data,
        media_type=template.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{template.filename}"'},
    )


@router.delete("/templates/{name}")
def template_delete(name: str, conn: sqlite3.Connection = Depends(get_conn)):
    if not delete_template(conn, name):
        raise TemplateNotFound(name)
    logger.info("Template %s eliminato", name, extra={"template": name})
    return {"success": True}
