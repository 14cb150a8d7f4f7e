"""
@file engine.py
@brief Motore di sostituzione tag nei template XML di Word.
@ingroup document_module

@details
Sintassi dei tag (delimitatori di default { }):
- {nome}            tag scalare, sostituito con il valore del contesto
- {#lista}...{/lista}  loop: la regione viene ripetuta per ogni elemento
- {^nome}...{/nome}    sezione inversa: resa una volta se il valore è vuoto/falso
- {/}               chiude il loop aperto più interno

Pipeline interna:
1. tokenizzazione XML (markup / testo)
2. ricostruzione dei tag spezzati su più run <w:t> (Word li salva così)
3. validazione strutturale (XML bilanciato, loop bilanciati)
4. render ricorsivo: prima i loop (dal più esterno), poi gli scalari

Granularità dei loop:
- marker nello stesso paragrafo -> ripete il contenuto inline tra i marker
- marker in paragrafi diversi della stessa riga di tabella -> ripete la riga <w:tr>
- marker da soli in paragrafi fratelli -> ripete i paragrafi compresi e rimuove quelli dei marker
- altrimenti ripete il contenuto tra i marker se la struttura XML è compatibile

In modalità strict (default) un tag senza valore solleva UnresolvedTag.
"""

from __future__ import annotations
import html
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from preventivi.domain.errors import MalformedTemplate, RenderError, UnresolvedTag

_TOKEN_RE = re.compile(r"<!\[CDATA\[.*?\]\]>|<!--.*?-->|<[^>]*>|[^<]+", re.S)
_NAME_RE = re.compile(r"</?\s*([^\s/>]+)")

# tipi token
MARKUP, OPEN, CLOSE, EMPTY, TEXT, TAG = range(6)

# tipi tag
SCALAR = "scalar"
LOOP = "loop"
INVERTED = "inverted"
END = "end"

_MISSING = object()


@dataclass(frozen=True)
class TagInfo:
    """@brief Tag trovato in un template (nome e tipo)."""
    name: str
    kind: str


class _Token:
    __slots__ = ("kind", "text", "name", "tag", "path", "content")

    def __init__(self, kind: int, text: str, name: str = "", tag: str = ""):
        self.kind = kind
        self.text = text
        self.name = name
        self.tag = tag
        self.path: tuple[int, ...] = ()
        self.content = False


@dataclass
class _Region:
    start: int
    end: int
    chunk: list[int]
    marker: _Token


def _lex(xml: str) -> list[_Token]:
    toks = []
    for m in _TOKEN_RE.finditer(xml):
        raw = m.group(0)
        if not raw.startswith("<"):
            toks.append(_Token(TEXT, raw))
            continue
        if raw.startswith(("<?", "<!")):
            toks.append(_Token(MARKUP, raw))
            continue
        nm = _NAME_RE.match(raw)
        name = nm.group(1) if nm else ""
        if raw.startswith("</"):
            toks.append(_Token(CLOSE, raw, name))
        elif raw.endswith("/>"):
            toks.append(_Token(EMPTY, raw, name))
        else:
            toks.append(_Token(OPEN, raw, name))
    return toks


def _preserve_space(open_tag: str) -> str:
    if "xml:space=" in open_tag:
        return open_tag
    return open_tag[:-1] + ' xml:space="preserve">'


class _CompiledTemplate:
    """
    Template già tokenizzato e validato. Un'istanza per chiamata di render:
    nessuno stato condiviso tra render concorrenti.
    """

    def __init__(self, engine: "TemplateEngine", xml: str):
        self.engine = engine
        self.toks = self._split_tags(_lex(xml))
        self.match: dict[int, int] = {}
        self._annotate()

    # ------------------------------------------------------------------ parsing

    def _split_tags(self, raw: list[_Token]) -> list[_Token]:
        te = self.engine.text_element
        open_d, close_d = self.engine.delimiters

        # 1) testo "visibile" e l'elemento <w:t> che lo contiene
        stack: list[int] = []
        owners: dict[int, Optional[int]] = {}
        for i, t in enumerate(raw):
            if t.kind == OPEN:
                stack.append(i)
            elif t.kind == CLOSE and stack:
                stack.pop()
            elif t.kind == TEXT:
                if te is None:
                    t.content = True
                    owners[i] = None
                elif stack and raw[stack[-1]].name == te:
                    t.content = True
                    owners[i] = stack[-1]

        content_idx = [i for i, t in enumerate(raw) if t.content]
        full = "".join(raw[i].text for i in content_idx)

        # 2) posizioni dei tag sul testo concatenato
        spans: list[tuple[int, int, str]] = []
        pos = 0
        while True:
            o = full.find(open_d, pos)
            c = full.find(close_d, pos)
            if o == -1 and c == -1:
                break
            if c != -1 and (o == -1 or c < o):
                raise MalformedTemplate(
                    f"Delimitatore di chiusura '{close_d}' senza apertura vicino a: {full[max(0, c - 20):c + 1]!r}"
                )
            c = full.find(close_d, o + len(open_d))
            nxt = full.find(open_d, o + len(open_d))
            if c == -1 or (nxt != -1 and nxt < c):
                raise MalformedTemplate(
                    f"Tag non chiuso vicino a: {full[o:o + 30]!r}", tag=full[o:o + 30]
                )
            spans.append((o, c + len(close_d), full[o + len(open_d):c]))
            pos = c + len(close_d)

        if not spans:
            return raw

        # 3) ricostruzione: il tag resta nel primo run, i frammenti successivi spariscono
        out: list[_Token] = []
        preserve: set[int] = set()
        span_i = 0
        offset = 0
        content_pos = {i: n for n, i in enumerate(content_idx)}
        remap: dict[int, int] = {}
        for i, t in enumerate(raw):
            if i not in content_pos:
                remap[i] = len(out)
                out.append(t)
                continue
            s, e = offset, offset + len(t.text)
            offset = e
            cur = s
            touched = False
            while span_i < len(spans) and spans[span_i][0] < e:
                a, b, inner = spans[span_i]
                if a >= cur:
                    if a > cur:
                        out.append(self._text(t.text[cur - s:a - s]))
                    out.append(self._make_tag(inner, full[a:b]))
                touched = True
                if b <= e:
                    cur = b
                    span_i += 1
                else:
                    cur = e
                    break
            if cur < e:
                out.append(self._text(t.text[cur - s:]))
            if touched and owners.get(i) is not None:
                preserve.add(owners[i])
        for i in preserve:
            tok = out[remap[i]]
            tok.text = _preserve_space(tok.text)
        return out

    @staticmethod
    def _text(s: str) -> _Token:
        tok = _Token(TEXT, s)
        tok.content = True
        return tok

    def _make_tag(self, inner: str, raw: str) -> _Token:
        body = html.unescape(inner).strip()
        if not body:
            raise MalformedTemplate(f"Tag vuoto: {raw!r}", tag=raw)
        prefix = body[0]
        if prefix in "#^/":
            name = body[1:].strip()
            kind = {"#": LOOP, "^": INVERTED, "/": END}[prefix]
            if not name and kind != END:
                raise MalformedTemplate(f"Loop senza nome: {raw!r}", tag=raw)
        else:
            name, kind = body, SCALAR
        return _Token(TAG, raw, name, kind)

    def _annotate(self) -> None:
        stack: list[int] = []
        loops: list[_Token] = []
        for i, t in enumerate(self.toks):
            if t.kind == OPEN:
                stack.append(i)
            elif t.kind == CLOSE:
                if not stack or self.toks[stack[-1]].name != t.name:
                    raise MalformedTemplate(f"XML non ben formato: chiusura inattesa {t.text}")
                self.match[stack.pop()] = i
            elif t.kind == TAG:
                t.path = tuple(stack)
                if t.tag in (LOOP, INVERTED):
                    loops.append(t)
                elif t.tag == END:
                    if not loops:
                        raise MalformedTemplate(f"Chiusura loop senza apertura: {t.text}", tag=t.name or t.text)
                    opened = loops.pop()
                    if t.name and t.name != opened.name:
                        raise MalformedTemplate(
                            f"Loop '{opened.name}' chiuso da {t.text}", tag=opened.name
                        )
        if stack:
            raise MalformedTemplate(f"XML non ben formato: {self.toks[stack[-1]].text} non chiuso")
        if loops:
            raise MalformedTemplate(f"Loop '{loops[-1].name}' non chiuso", tag=loops[-1].name)

    def tags(self) -> list[TagInfo]:
        return [TagInfo(t.name, t.tag) for t in self.toks if t.kind == TAG]

    # ------------------------------------------------------------------ loop regions

    def _innermost(self, path: Sequence[int], name: str) -> Optional[int]:
        for g in reversed(path):
            if self.toks[g].name == name:
                return g
        return None

    def _alone(self, seq: list[int], pos: dict[int, int], para: int, marker: int) -> bool:
        close = self.match[para]
        if para not in pos or close not in pos:
            return False
        for k in range(pos[para], pos[close] + 1):
            g = seq[k]
            t = self.toks[g]
            if t.kind == TAG and g != marker:
                return False
            if t.kind == TEXT and t.content and t.text.strip():
                return False
        return True

    def _region(self, seq: list[int], pos: dict[int, int], i: int, j: int) -> _Region:
        gi, gj = seq[i], seq[j]
        ti, tj = self.toks[gi], self.toks[gj]
        para_i = self._innermost(ti.path, "w:p")
        para_j = self._innermost(tj.path, "w:p")

        if para_i is not None and para_i == para_j:
            return _Region(i, j, seq[i + 1:j], ti)

        common = []
        for a, b in zip(ti.path, tj.path):
            if a != b:
                break
            common.append(a)
        row = self._innermost(common, "w:tr")
        cell = self._innermost(common, "w:tc")
        same_cell = cell is not None and row is not None and common.index(cell) > common.index(row)
        if row is not None and not same_cell and row in pos and self.match[row] in pos:
            start, end = pos[row], pos[self.match[row]]
            chunk = [g for g in seq[start:end + 1] if g not in (gi, gj)]
            return _Region(start, end, chunk, ti)

        if para_i is not None and para_j is not None:
            parent_i = ti.path[:ti.path.index(para_i)]
            parent_j = tj.path[:tj.path.index(para_j)]
            if (
                parent_i == parent_j
                and self._alone(seq, pos, para_i, gi)
                and self._alone(seq, pos, para_j, gj)
            ):
                start, end = pos[para_i], pos[self.match[para_j]]
                chunk = seq[pos[self.match[para_i]] + 1:pos[para_j]]
                return _Region(start, end, chunk, ti)

        names_i = [self.toks[g].name for g in ti.path]
        names_j = [self.toks[g].name for g in tj.path]
        if names_i == names_j:
            return _Region(i, j, seq[i + 1:j], ti)

        raise MalformedTemplate(
            f"Il loop '{ti.name}' attraversa strutture del documento incompatibili", tag=ti.name
        )

    def _regions(self, seq: list[int]) -> list[_Region]:
        pairs = []
        depth = 0
        start = 0
        for k, g in enumerate(seq):
            t = self.toks[g]
            if t.kind != TAG:
                continue
            if t.tag in (LOOP, INVERTED):
                if depth == 0:
                    start = k
                depth += 1
            elif t.tag == END:
                depth -= 1
                if depth == 0:
                    pairs.append((start, k))
        if not pairs:
            return []

        pos = {g: k for k, g in enumerate(seq)}
        regions = sorted((self._region(seq, pos, i, j) for i, j in pairs), key=lambda r: (r.start, -r.end))
        kept: list[_Region] = []
        for r in regions:
            if kept and r.start <= kept[-1].end:
                if r.end <= kept[-1].end:
                    # contenuto in una regione più ampia: gestito dalla ricorsione
                    continue
                raise MalformedTemplate(
                    f"I loop '{kept[-1].marker.name}' e '{r.marker.name}' si sovrappongono",
                    tag=r.marker.name,
                )
            kept.append(r)
        return kept

    # ------------------------------------------------------------------ rendering

    def render(self, context: Mapping[str, Any]) -> str:
        return self._render(list(range(len(self.toks))), [context])

    def _render(self, seq: list[int], scopes: list[Mapping[str, Any]]) -> str:
        out: list[str] = []
        regions = self._regions(seq)
        ri = 0
        k = 0
        while k < len(seq):
            if ri < len(regions) and regions[ri].start == k:
                region = regions[ri]
                out.append(self._expand(region, scopes))
                k = region.end + 1
                ri += 1
                continue
            t = self.toks[seq[k]]
            if t.kind == TAG:
                if t.tag != SCALAR:
                    raise MalformedTemplate(f"Marker di loop fuori posto: {t.text}", tag=t.name)
                out.append(self.engine._scalar(t.name, scopes))
            else:
                out.append(t.text)
            k += 1
        return "".join(out)

    def _expand(self, region: _Region, scopes: list[Mapping[str, Any]]) -> str:
        marker = region.marker
        value = self.engine._lookup(marker.name, scopes)
        if value is _MISSING:
            if self.engine.strict:
                raise UnresolvedTag(marker.name)
            value = None

        if marker.tag == INVERTED:
            empty = value is None or value is False or (
                isinstance(value, (list, tuple, Mapping, str)) and len(value) == 0
            )
            return self._render(region.chunk, scopes) if empty else ""

        if value is None or value is False:
            return ""
        if value is True:
            return self._render(region.chunk, scopes)
        if isinstance(value, Mapping):
            return self._render(region.chunk, scopes + [value])
        if isinstance(value, (list, tuple)):
            parts = []
            for idx, element in enumerate(value, start=1):
                scope = element if isinstance(element, Mapping) else {".": element}
                parts.append(self._render(region.chunk, scopes + [{"$index": idx}, scope]))
            return "".join(parts)
        raise MalformedTemplate(
            f"Il tag di loop '{marker.name}' non referenzia una sequenza ({type(value).__name__})",
            tag=marker.name,
        )


class TemplateEngine:
    """
    @brief Motore di sostituzione tag.
    @details
    Configurazione immutabile; ogni render lavora su una copia tokenizzata
    del template, quindi la stessa istanza è utilizzabile da più thread.
    """

    def __init__(
        self,
        delimiters: tuple[str, str] = ("{", "}"),
        strict: bool = True,
        linebreaks: bool = True,
        text_element: Optional[str] = "w:t",
    ):
        if not delimiters[0] or not delimiters[1]:
            raise ValueError("I delimitatori non possono essere vuoti")
        self.delimiters = delimiters
        self.strict = strict
        self.linebreaks = linebreaks
        self.text_element = text_element

    def render(self, xml: str, context: Mapping[str, Any], part: Optional[str] = None) -> str:
        """
        @brief Sostituisce tutti i tag del template.
        @param xml Testo XML della parte (es. word/document.xml).
        @param context Mapping nome tag -> valore; i loop vogliono liste di mapping.
        @param part Nome della parte, usato solo nei messaggi di errore.
        @return XML con i tag sostituiti.
        @throws UnresolvedTag Tag senza valore nel contesto (modalità strict).
        @throws MalformedTemplate Loop sbilanciati, delimitatori spaiati, tag vuoti.
        """
        try:
            return _CompiledTemplate(self, xml).render(context)
        except (MalformedTemplate, UnresolvedTag) as exc:
            _attach_part(exc, part)
            raise

    def collect_tags(self, xml: str, part: Optional[str] = None) -> list[TagInfo]:
        """
        @brief Elenca i tag del template nell'ordine del documento (valida la struttura).
        """
        try:
            return _CompiledTemplate(self, xml).tags()
        except MalformedTemplate as exc:
            _attach_part(exc, part)
            raise

    # -- risoluzione valori

    def _lookup(self, name: str, scopes: list[Mapping[str, Any]]) -> Any:
        for scope in reversed(scopes):
            if name in scope:
                return scope[name]
        return _MISSING

    def _scalar(self, name: str, scopes: list[Mapping[str, Any]]) -> str:
        value = self._lookup(name, scopes)
        if value is _MISSING:
            if self.strict:
                raise UnresolvedTag(name)
            value = None
        return self._escape("" if value is None else str(value))

    def _escape(self, s: str) -> str:
        s = html.escape(s, quote=False)
        if self.linebreaks and self.text_element == "w:t" and "\n" in s:
            s = s.replace("\r\n", "\n").replace(
                "\n", '</w:t><w:br/><w:t xml:space="preserve">'
            )
        return s


def _attach_part(exc: RenderError, part: Optional[str]) -> None:
    if part and not getattr(exc, "part", None):
        exc.part = part
        exc.details["part"] = part
