"""
@file errors.py
@brief Tassonomia errori della generazione documenti.
@ingroup domain_module

@details
Ogni errore è terminale per il tentativo di render: nessun retry interno,
nessun output parziale. Il campo kind è l'identificativo stabile usato dai
layer di confine (API/CLI) per scegliere la risposta.
"""

from __future__ import annotations
from typing import Any, Optional


class RenderError(Exception):
    """@brief Base di tutti gli errori del core."""
    kind = "RenderError"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        @brief Rappresentazione strutturata {kind, message[, details]}.
        @return dict serializzabile JSON.
        """
        out: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class QuoteNotFound(RenderError):
    kind = "QuoteNotFound"

    def __init__(self, quote_id: Any):
        super().__init__(f"Preventivo non trovato: {quote_id}", {"quote_id": quote_id})
        self.quote_id = quote_id


class TemplateNotFound(RenderError):
    kind = "TemplateNotFound"

    def __init__(self, name: str):
        super().__init__(
            f"Template '{name}' non trovato. Caricare {name}.docx prima di esportare.",
            {"template": name},
        )
        self.name = name


class ArchiveCorrupt(RenderError):
    """@brief Il template non è uno zip valido o manca una parte richiesta."""
    kind = "ArchiveCorrupt"

    def __init__(self, message: str, entry: Optional[str] = None):
        super().__init__(message, {"entry": entry} if entry else None)
        self.entry = entry


class MalformedTemplate(RenderError):
    """@brief Tag non bilanciati, delimitatori spaiati o tag vuoti."""
    kind = "MalformedTemplate"

    def __init__(self, message: str, tag: Optional[str] = None, part: Optional[str] = None):
        details = {k: v for k, v in (("tag", tag), ("part", part)) if v}
        super().__init__(message, details)
        self.tag = tag
        self.part = part


class UnresolvedTag(RenderError):
    """@brief Un tag del template non ha corrispondenza nel contesto."""
    kind = "UnresolvedTag"

    def __init__(self, name: str, part: Optional[str] = None):
        details = {"tag": name}
        if part:
            details["part"] = part
        super().__init__(f"Tag non risolto: {name}", details)
        self.name = name
        self.part = part


class FormattingError(RenderError, ValueError):
    """@brief Valore numerico o data non formattabile (NaN, infinito, data invalida)."""
    kind = "FormattingError"

    def __init__(self, message: str, value: Any = None):
        super().__init__(message, {"value": repr(value)})
        self.value = value
