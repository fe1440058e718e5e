from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_coupon_evaluation() -> None:
    _inc("coupon_evaluations")


def record_coupon_rejection(reason: str) -> None:
    _inc("coupon_rejections")
    _inc(f"coupon_rejections.{reason}")


def record_coupon_usage() -> None:
    _inc("coupon_usages_recorded")


def record_shipping_quote() -> None:
    _inc("shipping_quotes")


def record_shipping_degraded() -> None:
    _inc("shipping_quotes_degraded")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
