"""
@file models.py
@brief Modelli dominio (preventivi, clienti, righe) tramite Pydantic.
@ingroup domain_module

@details
Definisce i record consumati dal motore di generazione documenti.
Questi modelli fungono da:
- DTO tra layer (storage/render/api)
- schema implicito per serializzazione JSON
- base per validazione input/output
"""

from __future__ import annotations
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, List
from pydantic import BaseModel, Field

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class QuoteStatus(str, Enum):
    """@brief Stati ammessi di un preventivo (insieme chiuso, nessuna transizione imposta)."""
    BOZZA = "bozza"
    DA_CONTROLLARE = "da_controllare"
    DA_CONFERMARE = "da_confermare"
    INVIATO = "inviato"
    ACCETTATO = "accettato"
    RIFIUTATO = "rifiutato"
    ANNULLATO = "annullato"


class Client(BaseModel):
    """@brief Anagrafica cliente."""
    id: Optional[int] = None
    company_name: str = Field(min_length=1)
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    province: Optional[str] = None
    country: str = "Italia"
    vat_number: Optional[str] = None
    fiscal_code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    notes: Optional[str] = None


class QuoteItem(BaseModel):
    """@brief Riga del preventivo (nessun ciclo di vita autonomo)."""
    id: Optional[int] = None
    description: str = Field(min_length=1)
    item_notes: Optional[str] = None
    quantity: float = 1
    unit_price: float = 0
    sort_order: int = 0


def items_total(items: Iterable[QuoteItem]) -> Decimal:
    """
    @brief Somma esatta di quantity * unit_price sulle righe.
    @param items Righe del preventivo.
    @return Totale in Decimal (0 senza righe).
    """
    return sum(
        (Decimal(str(it.quantity)) * Decimal(str(it.unit_price)) for it in items),
        Decimal("0"),
    )


class Quote(BaseModel):
    """
    @brief Testata del preventivo.
    @details
    total_amount è un campo derivato: somma di quantity * unit_price sulle righe.
    Viene ricalcolato da recalculate_total() ad ogni modifica delle righe.
    """
    id: Optional[int] = None
    quote_number: int = Field(gt=0)
    client_id: Optional[int] = None
    quote_date: date
    validity_days: Optional[int] = Field(default=None, gt=0)
    status: QuoteStatus = QuoteStatus.BOZZA
    notes: Optional[str] = None
    total_amount: Optional[float] = None
    items: List[QuoteItem] = Field(default_factory=list)

    def recalculate_total(self) -> float:
        """
        @brief Ricalcola total_amount dalle righe.
        @return Il nuovo totale.
        """
        self.total_amount = float(items_total(self.items))
        return self.total_amount


class Template(BaseModel):
    """@brief Template documento (blob binario identificato per nome)."""
    name: str
    filename: str
    data: bytes = Field(repr=False)
    mime_type: str = DOCX_MIME_TYPE


class QuoteBundle(BaseModel):
    """
    @brief Preventivo completo come restituito dal data provider.
    @details client è None quando il cliente referenziato non è più reperibile.
    """
    quote: Quote
    client: Optional[Client] = None
    items: List[QuoteItem] = Field(default_factory=list)


class RenderResult(BaseModel):
    """@brief Documento generato, pronto per il download."""
    data: bytes = Field(repr=False)
    filename: str
    mime_type: str = DOCX_MIME_TYPE
