from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from statistics import median
from typing import Any, Dict, List, Optional

from svitlogics.budget import SUPPORTED_LANGUAGES
from svitlogics.task_store import get_store

log = logging.getLogger(__name__)

STATS_STORE_DIR = Path(os.getenv("STATS_STORE_DIR", "cache/stats"))
STATS_KEY = "stats"
STATS_NAMESPACE = "analysis_stats"
# Only the most recent entries per language are kept.
STATS_LIMIT = 100
# Milliseconds per character used before any history exists.
DEFAULT_MS_PER_CHAR: Dict[str, float] = {"en": 15.0, "uk": 20.0}

_LOCK = threading.Lock()


def _empty() -> Dict[str, List[Dict[str, Any]]]:
    return {lang: [] for lang in SUPPORTED_LANGUAGES}


def _store(store: Any = None) -> Any:
    return store if store is not None else get_store(STATS_NAMESPACE, directory=STATS_STORE_DIR)


def _read(store: Any) -> Dict[str, List[Dict[str, Any]]]:
    data = store.get(STATS_KEY)
    state = _empty()
    if not isinstance(data, dict):
        return state
    for lang in SUPPORTED_LANGUAGES:
        entries = data.get(lang)
        if isinstance(entries, list):
            state[lang] = [e for e in entries if isinstance(e, dict)]
    return state


def record(duration: float, char_count: int, language: str, store: Any = None, now: Optional[float] = None) -> Dict[str, Any]:
    """Append one finished analysis to the history of its language and trim it."""
    entry = {
        "duration": duration,
        "charCount": char_count,
        "language": language,
        "timestamp": int((now if now is not None else time.time()) * 1000),
    }
    s = _store(store)
    with _LOCK:
        state = _read(s)
        state[language].append(entry)
        if len(state[language]) > STATS_LIMIT:
            state[language] = state[language][-STATS_LIMIT:]
        s.set(STATS_KEY, state)
    log.info("stats: recorded language=%s chars=%d duration_ms=%s", language, char_count, duration)
    return entry


def get_stats(store: Any = None) -> Dict[str, List[Dict[str, Any]]]:
    data = _store(store).get(STATS_KEY)
    if not isinstance(data, dict):
        return {}
    return data


def ms_per_char(language: str, store: Any = None) -> float:
    entries = _read(_store(store)).get(language) or []
    ratios = []
    for e in entries:
        try:
            chars = float(e["charCount"])
            if chars > 0:
                ratios.append(float(e["duration"]) / chars)
        except (KeyError, TypeError, ValueError):
            continue
    if not ratios:
        return DEFAULT_MS_PER_CHAR[language]
    return float(median(ratios))


def estimate_duration_ms(char_count: int, language: str, store: Any = None) -> int:
    return int(round(char_count * ms_per_char(language, store)))
