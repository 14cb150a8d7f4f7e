import pytest

from conftest import document_xml, para, row, visible_text
from preventivi.document.engine import LOOP, SCALAR, TemplateEngine
from preventivi.domain.errors import MalformedTemplate, UnresolvedTag

engine = TemplateEngine()


def render(body, ctx, **kw):
    eng = TemplateEngine(**kw) if kw else engine
    return eng.render(document_xml(body), ctx)


def test_scalar_substitution_and_escaping():
    out = render(para("Cliente: {ragione_sociale}", " n. {numero}"), {"ragione_sociale": "A & B <srl>", "numero": 7})
    assert visible_text(out) == "Cliente: A &amp; B &lt;srl&gt; n. 7"
    assert "{" not in out and "}" not in out


def test_tag_split_across_runs():
    out = render(para("Spett.le {ragione", "_soc", "iale} fine"), {"ragione_sociale": "Acme Srl"})
    assert visible_text(out) == "Spett.le Acme Srl fine"
    assert 'xml:space="preserve"' in out


def test_none_renders_empty_and_linebreaks():
    out = render(para("[{note}]"), {"note": None})
    assert visible_text(out) == "[]"
    out = render(para("{note}"), {"note": "riga1\nriga2"})
    assert "<w:br/>" in out
    assert visible_text(out) == "riga1riga2"


def test_unresolved_tag_strict_and_lenient():
    with pytest.raises(UnresolvedTag) as exc:
        render(para("{unknown_field}"), {})
    assert exc.value.name == "unknown_field"
    assert exc.value.to_dict()["kind"] == "UnresolvedTag"

    out = render(para("x{unknown_field}y"), {}, strict=False)
    assert visible_text(out) == "xy"


def test_table_row_loop():
    body = "<w:tbl>" + row("{#articoli}{n}", "{descrizione}", "{totale_riga}{/articoli}") + "</w:tbl>"
    ctx = {"articoli": [
        {"n": 1, "descrizione": "Widget", "totale_riga": "20,00 €"},
        {"n": 2, "descrizione": "Gadget", "totale_riga": "5,00 €"},
    ]}
    out = render(body, ctx)
    assert out.count("<w:tr>") == 2
    assert visible_text(out) == "1\nWidget\n20,00 €\n2\nGadget\n5,00 €"


def test_empty_loop_leaves_nothing():
    body = para("Prima") + "<w:tbl>" + row("{#articoli}{n}", "{descrizione}{/articoli}") + "</w:tbl>" + para("Dopo")
    out = render(body, {"articoli": []})
    assert "<w:tr>" not in out
    assert "{" not in out and "}" not in out
    assert visible_text(out) == "Prima\nDopo"


def test_paragraph_loop_drops_marker_paragraphs():
    body = para("{#articoli}") + para("{$index}. {descrizione}") + para("{/articoli}") + para("fine")
    out = render(body, {"articoli": [{"descrizione": "A"}, {"descrizione": "B"}]})
    assert visible_text(out) == "1. A\n2. B\nfine"


def test_inline_loop_and_parent_scope():
    body = para("Articoli: {#articoli}{descrizione} ({valuta}), {/articoli}fine")
    out = render(body, {"valuta": "EUR", "articoli": [{"descrizione": "A"}, {"descrizione": "B"}]})
    assert visible_text(out) == "Articoli: A (EUR), B (EUR), fine"


def test_nested_loops():
    body = para("{#gruppi}{nome}:{#voci} {v}{/voci};{/}")
    ctx = {"gruppi": [
        {"nome": "G1", "voci": [{"v": "a"}, {"v": "b"}]},
        {"nome": "G2", "voci": []},
    ]}
    assert visible_text(render(body, ctx)) == "G1: a b;G2:;"


def test_row_loop_nested_in_paragraph_loop():
    body = (
        para("{#sezioni}")
        + para("{titolo}")
        + "<w:tbl>" + row("{#righe}{x}", "{y}{/righe}") + "</w:tbl>"
        + para("{/sezioni}")
    )
    ctx = {"sezioni": [
        {"titolo": "S1", "righe": [{"x": 1, "y": 2}, {"x": 3, "y": 4}]},
        {"titolo": "S2", "righe": [{"x": 5, "y": 6}]},
    ]}
    out = render(body, ctx)
    assert visible_text(out) == "S1\n1\n2\n3\n4\nS2\n5\n6"
    assert out.count("<w:tbl>") == 2


def test_inverted_and_conditional_sections():
    body = para("{^articoli}Nessun articolo{/articoli}{#urgente} URGENTE{/urgente}")
    assert visible_text(render(body, {"articoli": [], "urgente": True})) == "Nessun articolo URGENTE"
    assert visible_text(render(body, {"articoli": [{"n": 1}], "urgente": False})) == ""


@pytest.mark.parametrize("body", [
    para("{#articoli}{n}"),
    para("{n}{/articoli}"),
    para("{#a}x{/b}"),
    para("testo {aperto"),
    para("testo } chiuso"),
    para("{}"),
    para("{#}x{/}"),
    para("{a{b}}"),
])
def test_malformed_templates(body):
    with pytest.raises(MalformedTemplate):
        engine.render(document_xml(body), {"a": 1, "b": 2, "n": 1, "articoli": []})


def test_loop_crossing_incompatible_structure():
    body = "<w:tbl>" + row("{#articoli}x") + "</w:tbl>" + para("{/articoli} y")
    with pytest.raises(MalformedTemplate) as exc:
        engine.render(document_xml(body), {"articoli": []}, part="word/document.xml")
    assert exc.value.part == "word/document.xml"


def test_loop_over_non_sequence_is_malformed():
    with pytest.raises(MalformedTemplate):
        render(para("{#articoli}{n}{/articoli}"), {"articoli": "testo"})


def test_collect_tags():
    body = para("{numero_preventivo}") + "<w:tbl>" + row("{#articoli}{n}", "{descrizione}{/articoli}") + "</w:tbl>"
    tags = engine.collect_tags(document_xml(body))
    assert [(t.name, t.kind) for t in tags][:3] == [("numero_preventivo", SCALAR), ("articoli", LOOP), ("n", SCALAR)]


def test_text_outside_text_elements_is_ignored():
    xml = document_xml('<w:p w:rsidR="{00AB}">' + "<w:r><w:t>{x}</w:t></w:r></w:p>")
    out = engine.render(xml, {"x": "ok"})
    assert 'w:rsidR="{00AB}"' in out
    assert visible_text(out) == "ok"
