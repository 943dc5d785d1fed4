"""
Caches for the animation engine.

Two process-lifetime caches, both bounded LRU maps keyed by stable
identifiers and evicted only by LRU pressure or an explicit clear():

- compiled templates, keyed by (template id, template version)
- cached template variables, keyed by
  (template id, template version, variable name, transcript fingerprint)

Per-call variable values live in a VariableStore owned by one
apply_template invocation; it only touches the shared variable cache
through the handle it is given.

Transcript fingerprint = audio_data.id when the caller supplies one,
otherwise a truncated SHA-256 of the canonical JSON of its metadata.
"""

import hashlib
import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Hashable, Mapping
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from captionarr.core.types import AudioAnalysisData
from captionarr.templates.compiled import CompiledTemplate
from captionarr.templates.context import RuleEvaluationContext
from captionarr.templates.errors import ExpressionError

logger = logging.getLogger(__name__)

V = TypeVar("V")

_MISSING = object()


def compute_fingerprint(audio_data: AudioAnalysisData) -> str:
    """
    Compute a stable identity for a transcript.

    Args:
        audio_data: Transcript being processed

    Returns:
        audio_data.id if set, else 16-character hex hash of the metadata
    """
    if audio_data.id:
        return f"id:{audio_data.id}"
    payload = json.dumps(audio_data.metadata, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


class LRUCache(Generic[V]):
    """Thread-safe bounded LRU map with hit/miss counters."""

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError("cache maxsize must be >= 1")
        self.maxsize = maxsize
        self._data: OrderedDict[Hashable, V] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = None) -> V | Any:
        with self._lock:
            value = self._data.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return default
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                evicted, _ = self._data.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted!r}")

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0


class VariableStore:
    """Template variable values for one apply_template call.

    Usage:
        store = VariableStore(cache=shared_variable_cache)  # or cache=None
        store.compute(compiled_template, audio_data, evaluator)
        variables = store.values  # read-only mapping

    Failing variables resolve to None and add an entry to warnings.
    """

    def __init__(self, cache: LRUCache | None = None):
        self._cache = cache
        self._values: dict[str, Any] = {}
        self.warnings: list[str] = []
        self.evaluated = 0
        self.cache_hits = 0

    @property
    def values(self) -> Mapping[str, Any]:
        return MappingProxyType(self._values)

    def compute(self, template: CompiledTemplate, audio_data: AudioAnalysisData, evaluator) -> Mapping[str, Any]:
        if not template.variables:
            return self.values

        fingerprint = compute_fingerprint(audio_data) if self._cache is not None else None

        for compiled_var in template.variables:
            name = compiled_var.name
            cache_key = (template.template_id, template.version, name, fingerprint)

            if compiled_var.cached and self._cache is not None:
                cached = self._cache.get(cache_key, _MISSING)
                if cached is not _MISSING:
                    self._values[name] = cached
                    self.cache_hits += 1
                    continue

            # Earlier variables are visible, later ones are not yet computed
            context = RuleEvaluationContext.for_variables(audio_data, self._values)
            try:
                self.evaluated += 1
                value = evaluator.evaluate(compiled_var.ast, context, compiled_var.variable.expression)
            except ExpressionError as e:
                logger.warning(f"Failed to compute variable {name}: {e}")
                self.warnings.append(f"Failed to compute variable '{name}': {e}")
                # Failures are not cached, the next call retries
                self._values[name] = None
                continue

            self._values[name] = value
            if compiled_var.cached and self._cache is not None:
                self._cache.set(cache_key, value)

        return self.values
