import json
import logging

from preventivi.logging_config import JSONFormatter, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("preventivi.render", logging.INFO, __file__, 1, "Generato %s", ("x.docx",), None)
    record.output_file = "Preventivo_1_Acme_Srl.docx"
    record.quote_id = 1
    entry = json.loads(JSONFormatter().format(record))
    assert entry["level"] == "INFO"
    assert entry["msg"] == "Generato x.docx"
    assert entry["quote_id"] == 1
    assert entry["output_file"] == "Preventivo_1_Acme_Srl.docx"


def test_setup_logging_sets_level_and_formatter():
    setup_logging("debug", json_logs=True)
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    setup_logging("INFO")
