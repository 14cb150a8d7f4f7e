"""
@file repository.py
@brief Layer repository per persistenza di clienti, preventivi, righe e template su SQLite.
@ingroup storage_module

@details
Isola SQL e schema dal resto dell'applicazione e implementa i due
collaboratori del render:
- SqliteQuoteProvider (preventivo + cliente + righe ordinate)
- SqliteTemplateStore (template per nome)

Ogni modifica alle righe ricalcola total_amount nella stessa transazione
BEGIN IMMEDIATE: due modifiche concorrenti sullo stesso preventivo sono
serializzate dal lock di scrittura di SQLite.
"""

from __future__ import annotations
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Iterator, Optional

from preventivi.domain.models import (
    DOCX_MIME_TYPE,
    Client,
    Quote,
    QuoteBundle,
    QuoteItem,
    QuoteStatus,
    Template,
    items_total,
)

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_DAYS = 30

_CLIENT_FIELDS = (
    "company_name", "address", "city", "postal_code", "province", "country",
    "vat_number", "fiscal_code", "email", "phone", "contact_person", "notes",
)
_ITEM_FIELDS = ("description", "item_notes", "quantity", "unit_price", "sort_order")


class RecordNotFound(LookupError):
    """@brief Record referenziato inesistente."""


class ClientInUse(Exception):
    """@brief Cancellazione cliente bloccata: esistono preventivi che lo referenziano."""


def init_schema(conn: sqlite3.Connection) -> None:
    """
    @brief Applica lo schema SQL (idempotente).
    @param conn Connessione SQLite.
    @return None
    """
    schema_path = Path(__file__).with_name("schema.sql")
    conn.executescript(schema_path.read_text(encoding="utf-8"))


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """
    @brief Transazione esplicita con lock di scrittura immediato.
    """
    cur = conn.cursor()
    cur.execute("BEGIN IMMEDIATE")
    try:
        yield cur
    except BaseException:
        cur.execute("ROLLBACK")
        raise
    cur.execute("COMMIT")


def next_sequence(cur: sqlite3.Cursor, name: str) -> int:
    """
    @brief Incrementa e ritorna il contatore `name` (es. quote_number).
    @note Da chiamare dentro transaction(): l'incremento è atomico rispetto agli altri writer.
    """
    cur.execute("INSERT OR IGNORE INTO counters(name, seq) VALUES (?, 0)", (name,))
    cur.execute("UPDATE counters SET seq = seq + 1 WHERE name = ?", (name,))
    row = cur.execute("SELECT seq FROM counters WHERE name = ?", (name,)).fetchone()
    return int(row[0])


# ---------------------------------------------------------------- clients

def insert_client(conn: sqlite3.Connection, client: Client) -> int:
    """
    @brief Inserisce un cliente.
    @return ID del cliente inserito.
    """
    values = client.model_dump(include=set(_CLIENT_FIELDS))
    cols = ", ".join(_CLIENT_FIELDS)
    marks = ", ".join("?" for _ in _CLIENT_FIELDS)
    with transaction(conn) as cur:
        cur.execute(
            f"INSERT INTO clients({cols}) VALUES ({marks})",
            tuple(values[f] for f in _CLIENT_FIELDS),
        )
        client_id = cur.lastrowid
    if client_id is None:
        raise RuntimeError("Failed to get lastrowid after inserting client")
    return int(client_id)


def get_client(conn: sqlite3.Connection, client_id: int) -> Optional[Client]:
    row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
    return Client(**dict(row)) if row else None


def delete_client(conn: sqlite3.Connection, client_id: int) -> bool:
    """
    @brief Cancella un cliente non referenziato.
    @return False se il cliente non esiste.
    @throws ClientInUse Se almeno un preventivo lo referenzia.
    """
    with transaction(conn) as cur:
        n = cur.execute("SELECT COUNT(*) FROM quotes WHERE client_id = ?", (client_id,)).fetchone()[0]
        if n:
            raise ClientInUse(f"Cliente {client_id} referenziato da {n} preventivi")
        cur.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------- quotes

def create_quote(
    conn: sqlite3.Connection,
    client_id: int,
    quote_date: Optional[date] = None,
    validity_days: Optional[int] = None,
    notes: Optional[str] = None,
) -> Quote:
    """
    @brief Crea un preventivo vuoto assegnando il prossimo quote_number.
    @param validity_days Se None si usa DEFAULT_VALIDITY_DAYS (30).
    @throws RecordNotFound Se il cliente non esiste.
    """
    quote_date = quote_date or date.today()
    validity_days = validity_days or DEFAULT_VALIDITY_DAYS
    with transaction(conn) as cur:
        if cur.execute("SELECT 1 FROM clients WHERE id = ?", (client_id,)).fetchone() is None:
            raise RecordNotFound(f"Cliente non trovato: {client_id}")
        number = next_sequence(cur, "quote_number")
        cur.execute(
            """
            INSERT INTO quotes(quote_number, client_id, quote_date, validity_days, status, notes, total_amount)
            VALUES (?, ?, ?, ?, ?, ?, 0)
            """,
            (number, client_id, quote_date.isoformat(), validity_days, QuoteStatus.BOZZA.value, notes),
        )
        quote_id = cur.lastrowid
    logger.info("Creato preventivo %s (id=%s)", number, quote_id)
    quote = get_quote(conn, int(quote_id))
    if quote is None:
        raise RuntimeError(f"Preventivo {quote_id} non rileggibile dopo l'inserimento")
    return quote


def list_items(conn: sqlite3.Connection, quote_id: int) -> list[QuoteItem]:
    rows = conn.execute(
        "SELECT * FROM quote_items WHERE quote_id = ? ORDER BY sort_order ASC, id ASC",
        (quote_id,),
    ).fetchall()
    return [QuoteItem(**dict(r)) for r in rows]


def get_quote(conn: sqlite3.Connection, quote_id: int) -> Optional[Quote]:
    row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
    if row is None:
        return None
    return Quote(**dict(row), items=list_items(conn, quote_id))


def update_quote_status(conn: sqlite3.Connection, quote_id: int, status: QuoteStatus | str) -> Optional[Quote]:
    """
    @brief Aggiorna lo stato (qualsiasi valore dell'enum, nessuna regola di transizione).
    @throws ValueError Se lo stato non appartiene all'enum.
    """
    status = QuoteStatus(status)
    with transaction(conn) as cur:
        cur.execute(
            "UPDATE quotes SET status = ?, updated_at = datetime('now') WHERE id = ?",
            (status.value, quote_id),
        )
        found = cur.rowcount > 0
    return get_quote(conn, quote_id) if found else None


def delete_quote(conn: sqlite3.Connection, quote_id: int) -> bool:
    with transaction(conn) as cur:
        cur.execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
        return cur.rowcount > 0


# ---------------------------------------------------------------- items

def _recalculate_total(cur: sqlite3.Cursor, quote_id: int) -> float:
    rows = cur.execute(
        "SELECT quantity, unit_price FROM quote_items WHERE quote_id = ?", (quote_id,)
    ).fetchall()
    # somma in Decimal come Quote.recalculate_total, niente SUM() float lato SQL
    total = float(items_total(QuoteItem(description="-", quantity=r[0], unit_price=r[1]) for r in rows))
    cur.execute(
        "UPDATE quotes SET total_amount = ?, updated_at = datetime('now') WHERE id = ?",
        (total, quote_id),
    )
    return total


def add_item(
    conn: sqlite3.Connection,
    quote_id: int,
    description: str,
    quantity: float = 1,
    unit_price: float = 0,
    item_notes: Optional[str] = None,
    sort_order: Optional[int] = None,
) -> QuoteItem:
    """
    @brief Aggiunge una riga e ricalcola il totale.
    @param sort_order Se None vale il numero di righe già presenti (append).
    @throws RecordNotFound Se il preventivo non esiste.
    @throws pydantic.ValidationError Se la descrizione è vuota.
    """
    item = QuoteItem(description=description, quantity=quantity, unit_price=unit_price, item_notes=item_notes)
    with transaction(conn) as cur:
        if cur.execute("SELECT 1 FROM quotes WHERE id = ?", (quote_id,)).fetchone() is None:
            raise RecordNotFound(f"Preventivo non trovato: {quote_id}")
        if sort_order is None:
            sort_order = cur.execute(
                "SELECT COUNT(*) FROM quote_items WHERE quote_id = ?", (quote_id,)
            ).fetchone()[0]
        item.sort_order = int(sort_order)
        cur.execute(
            """
            INSERT INTO quote_items(quote_id, description, item_notes, quantity, unit_price, sort_order)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (quote_id, item.description, item.item_notes, item.quantity, item.unit_price, item.sort_order),
        )
        item.id = cur.lastrowid
        _recalculate_total(cur, quote_id)
    return item


def update_item(conn: sqlite3.Connection, item_id: int, **changes: Any) -> Optional[QuoteItem]:
    """
    @brief Aggiorna i campi di una riga e ricalcola il totale del preventivo.
    @return Riga aggiornata o None se inesistente.
    """
    unknown = set(changes) - set(_ITEM_FIELDS)
    if unknown:
        raise ValueError(f"Campi riga non modificabili: {sorted(unknown)}")
    with transaction(conn) as cur:
        row = cur.execute("SELECT * FROM quote_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return None
        merged = QuoteItem(**{**dict(row), **changes})
        cur.execute(
            """
            UPDATE quote_items
            SET description = ?, item_notes = ?, quantity = ?, unit_price = ?, sort_order = ?
            WHERE id = ?
            """,
            (merged.description, merged.item_notes, merged.quantity, merged.unit_price, merged.sort_order, item_id),
        )
        _recalculate_total(cur, row["quote_id"])
    return merged


def delete_item(conn: sqlite3.Connection, item_id: int) -> bool:
    with transaction(conn) as cur:
        row = cur.execute("SELECT quote_id FROM quote_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return False
        cur.execute("DELETE FROM quote_items WHERE id = ?", (item_id,))
        _recalculate_total(cur, row["quote_id"])
    return True


# ---------------------------------------------------------------- templates

def upsert_template(
    conn: sqlite3.Connection,
    name: str,
    filename: str,
    data: bytes,
    mime_type: str = DOCX_MIME_TYPE,
) -> Template:
    """
    @brief Salva un template; a parità di nome sovrascrive il precedente.
    """
    with transaction(conn) as cur:
        cur.execute(
            """
            INSERT INTO templates(name, filename, data, mime_type) VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
              filename = excluded.filename,
              data = excluded.data,
              mime_type = excluded.mime_type,
              updated_at = datetime('now')
            """,
            (name, filename, sqlite3.Binary(data), mime_type),
        )
    logger.info("Template %s salvato (%s, %d byte)", name, filename, len(data))
    return Template(name=name, filename=filename, data=data, mime_type=mime_type)


def get_template(conn: sqlite3.Connection, name: str) -> Optional[Template]:
    row = conn.execute(
        "SELECT name, filename, data, mime_type FROM templates WHERE name = ?", (name,)
    ).fetchone()
    if row is None:
        return None
    return Template(name=row["name"], filename=row["filename"], data=bytes(row["data"]), mime_type=row["mime_type"])


def list_templates(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """
    @brief Elenco template senza il contenuto binario.
    """
    rows = conn.execute(
        "SELECT name, filename, mime_type, length(data) AS size, updated_at FROM templates ORDER BY name"
    ).fetchall()
    return [dict(r) for r in rows]


def delete_template(conn: sqlite3.Connection, name: str) -> bool:
    with transaction(conn) as cur:
        cur.execute("DELETE FROM templates WHERE name = ?", (name,))
        return cur.rowcount > 0


# ---------------------------------------------------------------- render collaborators

class SqliteQuoteProvider:
    """@brief QuoteDataProvider su SQLite."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_quote_with_client_and_items(self, quote_id: int) -> Optional[QuoteBundle]:
        quote = get_quote(self.conn, quote_id)
        if quote is None:
            return None
        client = get_client(self.conn, quote.client_id) if quote.client_id is not None else None
        return QuoteBundle(quote=quote, client=client, items=quote.items)


class SqliteTemplateStore:
    """@brief TemplateStore su SQLite."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_template_by_name(self, name: str) -> Optional[Template]:
        return get_template(self.conn, name)
