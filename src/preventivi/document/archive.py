"""
@file archive.py
@brief Lettura/riscrittura del pacchetto zip di un documento Word (.docx).
@ingroup document_module

@details
Il template è un archivio zip con parti XML. Il testo visibile sta in
word/document.xml; intestazioni e piè di pagina in word/header*.xml e
word/footer*.xml.

La riscrittura mantiene:
- ordine delle entry ([Content_Types].xml resta la prima)
- metadati ZipInfo originali (timestamp, compressione, attributi)
- contenuto byte per byte delle entry non modificate

Così a parità di input l'output è identico byte per byte.
"""

from __future__ import annotations
import io
import re
import zipfile
import zlib

from preventivi.domain.errors import ArchiveCorrupt
from preventivi.domain.models import DOCX_MIME_TYPE

BODY_PART = "word/document.xml"
_HEADER_FOOTER_RE = re.compile(r"^word/(?:header|footer)\d*\.xml$")

_ZIP_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, OSError, ValueError)
_ENTRY_ERRORS = _ZIP_ERRORS + (zlib.error, RuntimeError, NotImplementedError)

__all__ = ["BODY_PART", "DOCX_MIME_TYPE", "DocxArchive"]


class DocxArchive:
    """
    @brief Vista modificabile di un pacchetto .docx in memoria.
    """

    def __init__(self, infos: list[zipfile.ZipInfo], contents: dict[str, bytes]):
        self._infos = infos
        self._contents = contents

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxArchive":
        """
        @brief Apre i byte del template come archivio zip.
        @param data Byte grezzi del file .docx.
        @return DocxArchive con tutte le entry caricate.
        @throws ArchiveCorrupt Se i byte non sono uno zip valido, un'entry non è leggibile
                (dati compressi danneggiati, cifratura, metodo non supportato) o manca word/document.xml.
        """
        if not data:
            raise ArchiveCorrupt("Template vuoto")
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
        except _ZIP_ERRORS as exc:
            raise ArchiveCorrupt(f"Template non è un archivio zip valido: {exc}") from exc

        with zf:
            infos = zf.infolist()
            contents = {}
            for info in infos:
                try:
                    contents[info.filename] = zf.read(info)
                except _ENTRY_ERRORS as exc:
                    raise ArchiveCorrupt(
                        f"Entry {info.filename} non leggibile: {exc}", entry=info.filename
                    ) from exc

        if BODY_PART not in contents:
            raise ArchiveCorrupt(f"Parte mancante nel template: {BODY_PART}", entry=BODY_PART)
        return cls(infos, contents)

    @property
    def names(self) -> list[str]:
        return [info.filename for info in self._infos]

    def template_parts(self) -> list[str]:
        """
        @brief Parti XML in cui cercare i tag: corpo, poi header/footer in ordine di archivio.
        """
        extra = [n for n in self.names if _HEADER_FOOTER_RE.match(n)]
        return [BODY_PART] + extra

    def read_raw(self, name: str) -> bytes:
        try:
            return self._contents[name]
        except KeyError:
            raise ArchiveCorrupt(f"Parte mancante nel template: {name}", entry=name) from None

    def read_part(self, name: str = BODY_PART) -> str:
        """
        @brief Legge una parte XML come testo UTF-8.
        @throws ArchiveCorrupt Se la parte manca o non è UTF-8.
        """
        raw = self.read_raw(name)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ArchiveCorrupt(f"Parte {name} non è testo UTF-8: {exc}", entry=name) from exc

    def write_part(self, name: str, text: str) -> None:
        """
        @brief Sostituisce il contenuto di una parte esistente.
        """
        if name not in self._contents:
            raise ArchiveCorrupt(f"Parte mancante nel template: {name}", entry=name)
        self._contents[name] = text.encode("utf-8")

    def to_bytes(self) -> bytes:
        """
        @brief Serializza l'archivio riusando le ZipInfo originali.
        @return Byte del nuovo .docx.
        """
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            for info in self._infos:
                zf.writestr(info, self._contents[info.filename])
        return buf.getvalue()
