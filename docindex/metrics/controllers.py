from typing import Any, Dict, List, Tuple

from prometheus_client import Counter

from docindex.core.metrics import (
	CHAT_ERRORS,
	CHAT_REQUESTS,
	EMBED_ERRORS,
	EMBED_REQUESTS,
	EMBED_VECTORS,
	INDEX_CHUNKS,
	INDEX_FILES,
	INDEX_RUNS,
	RESET_ROWS,
	SEARCH_ERRORS,
	SEARCH_REQUESTS,
	STAGE_LATENCY,
	VECTOR_WRITE_ERRORS,
	VECTOR_WRITES,
)


def _counter_value(c: Counter, **labels: str) -> int:
	"""Sum of the `_total` samples matching `labels` (all series when empty)."""
	total = 0.0
	for metric in c.collect():
		for s in metric.samples:
			if not s.name.endswith("_total"):
				continue
			if all(s.labels.get(k) == v for k, v in labels.items()):
				total += s.value
	return int(total)


def _stage_latency_stats() -> Dict[str, Any]:
	"""Return per-stage histogram stats: count, sum, avg, p50/p90/p99, buckets."""
	result: Dict[str, Any] = {}
	collected = list(STAGE_LATENCY.collect())
	if not collected:
		return result

	metric = collected[0]
	tmp: Dict[str, Dict[str, Any]] = {}
	for s in metric.samples:
		name: str = s.name  # index_stage_latency_seconds_bucket | _sum | _count
		labels = s.labels or {}
		stage = labels.get("stage", "unknown")
		d = tmp.setdefault(stage, {"buckets": []})

		if name.endswith("_bucket"):
			le = labels.get("le", "+Inf")
			le_f = float("inf") if le == "+Inf" else float(le)
			d["buckets"].append((le_f, float(s.value)))
		elif name.endswith("_sum"):
			d["sum"] = float(s.value)
		elif name.endswith("_count"):
			d["count"] = int(s.value)

	for stage, d in tmp.items():
		count = int(d.get("count", 0))
		total = float(d.get("sum", 0.0))
		buckets: List[Tuple[float, float]] = sorted(d["buckets"], key=lambda x: x[0])

		def pct(q: float):
			if count <= 0 or not buckets:
				return None
			target = q * count
			for le, cum in buckets:
				if cum >= target:
					return None if le == float("inf") else le
			return None

		result[stage] = {
			"count": count,
			"sum": total,
			"avg": (total / count) if count > 0 else None,
			"p50": pct(0.50),
			"p90": pct(0.90),
			"p99": pct(0.99),
			"buckets": [
				{"le": ("+Inf" if le == float("inf") else le), "cumulative": cum}
				for le, cum in buckets
			],
		}

	return result


def get_ui_metrics() -> Dict[str, Any]:
	"""Return metrics for UI consumption."""
	return {
		"counts": {
			"indexing": {
				"runs": _counter_value(INDEX_RUNS),
				"successful": _counter_value(INDEX_FILES, status="success"),
				"skipped": _counter_value(INDEX_FILES, status="skipped"),
				"failed": _counter_value(INDEX_FILES, status="failed"),
				"chunks": _counter_value(INDEX_CHUNKS),
				"reset_rows": _counter_value(RESET_ROWS),
			},
			"embed": {
				"requests": _counter_value(EMBED_REQUESTS),
				"vectors": _counter_value(EMBED_VECTORS),
				"errors": _counter_value(EMBED_ERRORS),
			},
			"vector_store": {
				"writes": _counter_value(VECTOR_WRITES),
				"write_errors": _counter_value(VECTOR_WRITE_ERRORS),
			},
			"search": {
				"requests": _counter_value(SEARCH_REQUESTS),
				"errors": _counter_value(SEARCH_ERRORS),
			},
			"chat": {
				"requests": _counter_value(CHAT_REQUESTS),
				"errors": _counter_value(CHAT_ERRORS),
			},
		},
		"stage_latency": _stage_latency_stats(),
	}
