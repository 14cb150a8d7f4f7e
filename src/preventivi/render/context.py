"""
@file context.py
@brief Contesto di sostituzione tipizzato per il template del preventivo.
@ingroup render_module

@details
Ogni chiave che il template può referenziare è dichiarata qui: un template
che usa un tag fuori da questo vocabolario fallisce con UnresolvedTag.
Importi e date arrivano già formattati; il motore non formatta nulla.
"""

from __future__ import annotations
from typing import Any, List, Union
from pydantic import BaseModel

from preventivi.domain.formatting import format_currency, format_date, line_total, raw_quantity
from preventivi.domain.models import QuoteBundle

DEFAULT_VALIDITY_DAYS = 30
DEFAULT_COUNTRY = "Italia"


class ItemRow(BaseModel):
    """@brief Riga del loop {#articoli}."""
    n: int
    descrizione: str
    quantita: Union[int, float]
    prezzo_unitario: str
    totale_riga: str
    note_riga: str = ""


class QuoteContext(BaseModel):
    """@brief Contesto completo di un preventivo."""
    numero_preventivo: int
    data_preventivo: str
    validita_giorni: int
    ragione_sociale: str = ""
    indirizzo: str = ""
    cap: str = ""
    citta: str = ""
    provincia: str = ""
    paese: str = DEFAULT_COUNTRY
    partita_iva: str = ""
    codice_fiscale: str = ""
    email: str = ""
    telefono: str = ""
    referente: str = ""
    articoli: List[ItemRow] = []
    totale: str
    note: str = ""

    def to_mapping(self) -> dict[str, Any]:
        return self.model_dump()


TEMPLATE_VOCABULARY = frozenset(QuoteContext.model_fields) | frozenset(ItemRow.model_fields) | {"$index"}


def build_context(bundle: QuoteBundle, default_validity_days: int = DEFAULT_VALIDITY_DAYS) -> QuoteContext:
    """
    @brief Costruisce il contesto dal preventivo completo.
    @param bundle Preventivo + cliente (eventualmente None) + righe ordinate.
    @param default_validity_days Validità usata se il preventivo non la specifica.
    @return QuoteContext pronto per il motore.

    @throws FormattingError Se importi o data non sono formattabili.
    @note Cliente mancante: tutti i campi cliente diventano stringa vuota, paese "Italia".
    """
    quote = bundle.quote
    client = bundle.client

    def c(field: str) -> str:
        if client is None:
            return ""
        return getattr(client, field) or ""

    rows = [
        ItemRow(
            n=i,
            descrizione=it.description,
            quantita=raw_quantity(it.quantity),
            prezzo_unitario=format_currency(it.unit_price),
            totale_riga=format_currency(line_total(it.quantity, it.unit_price)),
            note_riga=it.item_notes or "",
        )
        for i, it in enumerate(bundle.items, start=1)
    ]

    total = quote.total_amount if quote.total_amount is not None else 0

    return QuoteContext(
        numero_preventivo=quote.quote_number,
        data_preventivo=format_date(quote.quote_date),
        validita_giorni=quote.validity_days or default_validity_days,
        ragione_sociale=c("company_name"),
        indirizzo=c("address"),
        cap=c("postal_code"),
        citta=c("city"),
        provincia=c("province"),
        paese=c("country") or DEFAULT_COUNTRY,
        partita_iva=c("vat_number"),
        codice_fiscale=c("fiscal_code"),
        email=c("email"),
        telefono=c("phone"),
        referente=c("contact_person"),
        articoli=rows,
        totale=format_currency(total),
        note=quote.notes or "",
    )
