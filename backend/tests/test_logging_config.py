import json
import logging

from promo_engine.core.logging_config import JsonFormatter, RequestIdFilter, pricing_context, request_id_ctx_var


def test_json_formatter_includes_request_id_and_extras() -> None:
    token = request_id_ctx_var.set("req-1")
    try:
        record = logging.LogRecord("promo_engine.test", logging.INFO, __file__, 1, "promotion_rule_applied", None, None)
        record.rule_id = 5
        record.summary = {"updated": 2}
        RequestIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert payload["message"] == "promotion_rule_applied"
    assert payload["request_id"] == "req-1"
    assert payload["rule_id"] == 5
    assert payload["summary"] == {"updated": 2}
    assert payload["level"] == "INFO"


def test_pricing_context_tags_records_only_inside_batch() -> None:
    def formatted() -> dict:
        record = logging.LogRecord("promo_engine.test", logging.INFO, __file__, 1, "chunk_written", None, None)
        RequestIdFilter().filter(record)
        return json.loads(JsonFormatter().format(record))

    with pricing_context("rule:4"):
        inside = formatted()
    outside = formatted()

    assert inside["pricing_ref"] == "rule:4"
    assert "pricing_ref" not in outside
    assert outside["request_id"] == "-"
