"""
@file pipeline.py
@brief Pipeline di export: preventivo -> documento .docx compilato.
@ingroup render_module

@details
Unico algoritmo di render, indipendente dal trasporto (API, CLI).
Passi:
- recupero preventivo + cliente + righe dal data provider
- recupero template dal template store
- costruzione contesto tipizzato
- apertura archivio, sostituzione tag nelle parti XML, ricompressione
- nome file derivato da numero preventivo e ragione sociale

Qualsiasi errore interrompe l'operazione: nessun documento parziale.
Il render è in sola lettura rispetto al modello dati.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

from preventivi.document.archive import DocxArchive
from preventivi.document.engine import TemplateEngine
from preventivi.domain.errors import QuoteNotFound, TemplateNotFound
from preventivi.domain.models import QuoteBundle, RenderResult, Template
from preventivi.render.context import DEFAULT_VALIDITY_DAYS, TEMPLATE_VOCABULARY, QuoteContext, build_context

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_NAME = "preventivo_template"
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9]")


class QuoteDataProvider(Protocol):
    def get_quote_with_client_and_items(self, quote_id: int) -> Optional[QuoteBundle]:
        """Ritorna il preventivo completo (righe ordinate per sort_order) o None."""
        ...


class TemplateStore(Protocol):
    def get_template_by_name(self, name: str) -> Optional[Template]:
        """Ritorna il template o None."""
        ...


def build_filename(quote_number: int, company_name: Optional[str]) -> str:
    """
    @brief Nome file del documento: Preventivo_<numero>_<ragione sociale>.docx
    @details Ogni carattere fuori da [A-Za-z0-9] diventa '_'; senza ragione sociale si usa 'Cliente'.
    """
    safe = _UNSAFE_FILENAME_RE.sub("_", company_name) if company_name else "Cliente"
    return f"Preventivo_{quote_number}_{safe}.docx"


def render_document(template_data: bytes, context: QuoteContext, engine: TemplateEngine) -> bytes:
    """
    @brief Compila un template .docx con un contesto già costruito.
    @param template_data Byte del template.
    @param context Contesto tipizzato.
    @param engine Motore di sostituzione.
    @return Byte del documento compilato.

    @throws ArchiveCorrupt, MalformedTemplate, UnresolvedTag
    """
    archive = DocxArchive.from_bytes(template_data)
    mapping = context.to_mapping()
    rendered = {}
    for part in archive.template_parts():
        rendered[part] = engine.render(archive.read_part(part), mapping, part=part)
    # scrittura solo a render completato: nessuna parte modificata a metà
    for part, text in rendered.items():
        archive.write_part(part, text)
    return archive.to_bytes()


class QuoteRenderer:
    """
    @brief Orchestratore del render di un preventivo.
    @details
    Le dipendenze (data provider, template store) sono iniettate: lo stesso
    renderer serve API, CLI e test senza duplicazioni.
    """

    def __init__(
        self,
        provider: QuoteDataProvider,
        store: TemplateStore,
        *,
        template_name: str = DEFAULT_TEMPLATE_NAME,
        default_validity_days: int = DEFAULT_VALIDITY_DAYS,
        engine: Optional[TemplateEngine] = None,
    ):
        self.provider = provider
        self.store = store
        self.template_name = template_name
        self.default_validity_days = default_validity_days
        self.engine = engine or TemplateEngine()

    def load_bundle(self, quote_id: int) -> QuoteBundle:
        bundle = self.provider.get_quote_with_client_and_items(quote_id)
        if bundle is None:
            raise QuoteNotFound(quote_id)
        return bundle

    def context_for(self, quote_id: int) -> QuoteContext:
        """
        @brief Contesto di sostituzione per un preventivo (senza render).
        @throws QuoteNotFound, FormattingError
        """
        return self._context(self.load_bundle(quote_id))

    def _context(self, bundle: QuoteBundle) -> QuoteContext:
        if bundle.client is None:
            logger.warning("Preventivo %s senza cliente: campi cliente vuoti", bundle.quote.quote_number)
        return build_context(bundle, self.default_validity_days)

    def render_quote(self, quote_id: int) -> RenderResult:
        """
        @brief Genera il documento .docx di un preventivo.
        @param quote_id Identificativo del preventivo.
        @return RenderResult con byte, nome file e MIME type.

        @throws QuoteNotFound Preventivo inesistente.
        @throws TemplateNotFound Template non caricato.
        @throws ArchiveCorrupt, MalformedTemplate, UnresolvedTag Template non valido.
        @throws FormattingError Importi o date non validi.
        """
        bundle = self.load_bundle(quote_id)
        template = self.store.get_template_by_name(self.template_name)
        if template is None:
            raise TemplateNotFound(self.template_name)

        context = self._context(bundle)

        logger.info(
            "Render preventivo %s (%d righe) con template %s",
            bundle.quote.quote_number, len(bundle.items), template.filename,
            extra={"quote_id": quote_id, "template": template.name},
        )
        data = render_document(template.data, context, self.engine)
        filename = build_filename(
            bundle.quote.quote_number,
            bundle.client.company_name if bundle.client else None,
        )
        logger.info("Generato %s (%d byte)", filename, len(data), extra={"output_file": filename})
        return RenderResult(data=data, filename=filename)


@dataclass
class TemplateReport:
    """@brief Esito del controllo di un template caricato."""
    tags: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unknown


def check_template(template_data: bytes, engine: Optional[TemplateEngine] = None) -> TemplateReport:
    """
    @brief Verifica un template: struttura valida e tag nel vocabolario del preventivo.
    @return TemplateReport con tag trovati (senza duplicati) e tag sconosciuti.
    @throws ArchiveCorrupt, MalformedTemplate
    """
    engine = engine or TemplateEngine()
    archive = DocxArchive.from_bytes(template_data)
    report = TemplateReport()
    for part in archive.template_parts():
        for tag in engine.collect_tags(archive.read_part(part), part=part):
            if not tag.name or tag.name in report.tags:
                continue
            report.tags.append(tag.name)
            if tag.name not in TEMPLATE_VOCABULARY and tag.name != ".":
                report.unknown.append(tag.name)
    return report
