from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    if amount <= 0:
        return
    with _lock:
        _metrics[key] += amount


def record_rule_applied(updated: int, conflicted: int) -> None:
    _inc("rules_applied")
    _inc("entities_discounted", updated)
    _inc("entities_conflicted", conflicted)


def record_rule_reverted(reverted: int) -> None:
    _inc("rules_reverted")
    _inc("entities_reverted", reverted)


def record_promo_code_created() -> None:
    _inc("promo_codes_created")


def record_promo_code_activated(updated: int) -> None:
    _inc("promo_codes_activated")
    _inc("entities_marked_up", updated)


def record_payment_rejected() -> None:
    _inc("payments_rejected")


def record_expiry_pass(rules: int, promo_codes: int, reverted: int) -> None:
    _inc("expiry_passes")
    _inc("rules_expired", rules)
    _inc("promo_codes_expired", promo_codes)
    _inc("entities_reverted_by_expiry", reverted)


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
