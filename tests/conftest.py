import io
import re
import zipfile
from datetime import date

import pytest

from preventivi.domain.models import Client, Quote, QuoteBundle, QuoteItem, Template

W_NS = 'xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main"'
FIXED_TS = (2024, 1, 1, 0, 0, 0)

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="xml" ContentType="application/xml"/></Types>'
)
RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"/>'
)
STYLES = f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n<w:styles {W_NS}/>'


def para(*runs: str) -> str:
    return "<w:p>" + "".join(f"<w:r><w:t>{t}</w:t></w:r>" for t in runs) + "</w:p>"


def row(*cells: str) -> str:
    return "<w:tr>" + "".join(f"<w:tc>{para(c)}</w:tc>" for c in cells) + "</w:tr>"


def document_xml(body: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        f"<w:document {W_NS}><w:body>{body}</w:body></w:document>"
    )


def make_docx(body: str, extra: dict[str, str] | None = None, with_body: bool = True) -> bytes:
    entries = {"[Content_Types].xml": CONTENT_TYPES, "_rels/.rels": RELS}
    if with_body:
        entries["word/document.xml"] = document_xml(body)
    entries["word/styles.xml"] = STYLES
    entries.update(extra or {})
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in entries.items():
            zf.writestr(zipfile.ZipInfo(name, FIXED_TS), text, compress_type=zipfile.ZIP_DEFLATED)
    return buf.getvalue()


def read_part(data: bytes, name: str = "word/document.xml") -> str:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return zf.read(name).decode("utf-8")


def _local_header(buf: bytearray, name: str) -> int:
    with zipfile.ZipFile(io.BytesIO(bytes(buf))) as zf:
        return zf.getinfo(name).header_offset


def _central_header(buf: bytearray, name: str) -> int:
    pos = buf.find(b"PK\x01\x02")
    while pos != -1:
        n = int.from_bytes(buf[pos + 28:pos + 30], "little")
        if buf[pos + 46:pos + 46 + n] == name.encode():
            return pos
        pos = buf.find(b"PK\x01\x02", pos + 4)
    raise KeyError(name)


def damage_entry(data: bytes, name: str = "word/document.xml") -> bytes:
    """Sovrascrive l'inizio dei dati compressi di un'entry (blocco deflate non valido)."""
    buf = bytearray(data)
    off = _local_header(buf, name)
    start = off + 30 + int.from_bytes(buf[off + 26:off + 28], "little") + int.from_bytes(buf[off + 28:off + 30], "little")
    buf[start:start + 8] = b"\xff" * 8
    return bytes(buf)


def patch_entry_header(data: bytes, name: str = "word/document.xml", flags: int = 0, method: int | None = None) -> bytes:
    """Imposta bit di flag e/o metodo di compressione nell'header locale e centrale di un'entry."""
    buf = bytearray(data)
    for pos, flag_at in ((_local_header(buf, name), 6), (_central_header(buf, name), 8)):
        bits = int.from_bytes(buf[pos + flag_at:pos + flag_at + 2], "little") | flags
        buf[pos + flag_at:pos + flag_at + 2] = bits.to_bytes(2, "little")
        if method is not None:
            buf[pos + flag_at + 2:pos + flag_at + 4] = method.to_bytes(2, "little")
    return bytes(buf)


def visible_text(xml: str) -> str:
    """Testo dei <w:t>, paragrafi separati da newline."""
    paragraphs = re.findall(r"<w:p(?:\s[^>]*)?>.*?</w:p>", xml, re.S)
    return "\n".join("".join(re.findall(r"<w:t[^>]*>([^<]*)</w:t>", p)) for p in paragraphs)


QUOTE_BODY = (
    para("Preventivo n. {numero_preventivo} del {data_preventivo}")
    + para("Spett.le {ragione_sociale}")
    + para("{indirizzo} - {cap} {citta} ({provincia}) {paese}")
    + para("P.IVA {partita_iva} C.F. {codice_fiscale}")
    + para("{email} {telefono} Rif. {referente}")
    + "<w:tbl>"
    + row("N.", "Descrizione", "Q.tà", "Prezzo", "Totale")
    + row("{#articoli}{n}", "{descrizione}", "{quantita}", "{prezzo_unitario}", "{totale_riga}{/articoli}")
    + "</w:tbl>"
    + para("Totale: {totale}")
    + para("Validità offerta: {validita_giorni} giorni")
    + para("Note: {note}")
)


@pytest.fixture
def quote_template() -> Template:
    return Template(name="preventivo_template", filename="preventivo_template.docx", data=make_docx(QUOTE_BODY))


@pytest.fixture
def acme_bundle() -> QuoteBundle:
    items = [QuoteItem(description="Widget", quantity=2, unit_price=10.0, sort_order=0)]
    quote = Quote(id=1, quote_number=42, client_id=1, quote_date=date(2025, 3, 9), items=items)
    quote.recalculate_total()
    client = Client(id=1, company_name="Acme Srl", city="Milano", postal_code="20100", province="MI")
    return QuoteBundle(quote=quote, client=client, items=items)


class DictProvider:
    def __init__(self, bundles):
        self.bundles = bundles

    def get_quote_with_client_and_items(self, quote_id):
        return self.bundles.get(quote_id)


class DictStore:
    def __init__(self, templates):
        self.templates = {t.name: t for t in templates}

    def get_template_by_name(self, name):
        return self.templates.get(name)
