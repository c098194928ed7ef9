from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, List, Tuple

logger = logging.getLogger("intake.event_bus")

# Operator-facing channel for things that went wrong after a submission was
# accepted (orphaned leads, skipped uploads, missing consent rows).
# Topic = lead id, plus "*" which sees everything.

HIST_MAX = 500  # keep the last N events per topic
MAX_TOPICS = 1000  # per-lead topics kept besides "*"; least recently used go first

SECONDARY_WRITE_FAILED = "secondary_write_failed"

_hist: "OrderedDict[str, Deque[Tuple[int, dict]]]" = OrderedDict()
_seq = 0
_lock = threading.Lock()


def _now() -> float:
    return time.time()


def _push(topic: str, seq: int, evt: dict) -> None:
    dq = _hist.get(topic)
    if dq is None:
        dq = _hist[topic] = deque(maxlen=HIST_MAX)
    _hist.move_to_end(topic)
    dq.append((seq, evt))
    if topic != "*":
        _evict()


def _evict() -> None:
    extra = len(_hist) - ("*" in _hist) - MAX_TOPICS
    if extra <= 0:
        return
    for stale in [t for t in _hist if t != "*"][:extra]:
        del _hist[stale]
    logger.debug("event_bus: evicted %d old topics", extra)


# ------------------------------ Publish API ----------------------------------

def publish(topic: str, event_name: str, payload: Any) -> int:
    """
    Record an event under `topic` and under "*".
    Returns the global sequence number assigned to it.
    """
    global _seq
    with _lock:
        _seq += 1
        seq = _seq
        evt = {"type": event_name, "topic": topic, "ts": _now(), "payload": payload}
        if topic != "*":
            _push(topic, seq, evt)
        _push("*", seq, evt)
    logger.info("event_bus: publish topic=%s event=%s seq=%d", topic, event_name, seq)
    return seq


def secondary_write_failed(step: str, lead_id: str | None, **extra: Any) -> int:
    return publish(lead_id or "*", SECONDARY_WRITE_FAILED, {"step": step, "lead_id": lead_id, **extra})


# --------------------------- Read helpers ------------------------------------

def collect_since(topic: str = "*", since: int = 0, limit: int = 200) -> List[dict]:
    """Events on `topic` with seq > since, oldest first, at most `limit`."""
    with _lock:
        items = [{**evt, "seq": seq} for seq, evt in _hist.get(topic, ()) if seq > since]
    if len(items) > limit:
        items = items[-limit:]
    return items


def stats() -> Dict[str, int]:
    """Buffered event counts per topic."""
    with _lock:
        per = {topic: len(dq) for topic, dq in _hist.items()}
    per["__total__"] = per.get("*", 0)
    return per


def reset() -> None:
    global _seq
    with _lock:
        _hist.clear()
        _seq = 0
