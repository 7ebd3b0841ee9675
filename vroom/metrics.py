"""Aggregation of function metrics across profiles."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Sequence

from vroom.nodetree import CallTreeFunction, Node


@dataclass(frozen=True)
class ExampleMetadata:
    """Points at a profile, or a slice of a profiler chunk, showing a function."""

    project_id: int = 0
    profile_id: str = ""
    profiler_id: str = ""
    chunk_id: str = ""
    transaction_id: str = ""
    thread_id: str = ""
    start: int = 0
    end: int = 0


@dataclass
class FunctionMetrics:
    name: str = ""
    package: str = ""
    fingerprint: int = 0
    in_app: bool = False
    p75: int = 0
    p95: int = 0
    p99: int = 0
    avg: float = 0.0
    sum: int = 0
    count: int = 0
    worst: ExampleMetadata = field(default_factory=ExampleMetadata)
    examples: List[ExampleMetadata] = field(default_factory=list)


@dataclass
class FunctionsMetadata:
    max_val: int = 0
    worst: ExampleMetadata = field(default_factory=ExampleMetadata)
    examples: List[ExampleMetadata] = field(default_factory=list)


@dataclass
class Aggregator:
    """Merges functions from many profiles into per-function metrics."""

    max_unique_functions: int = 0
    max_num_of_examples: int = 0
    call_tree_functions: Dict[int, CallTreeFunction] = field(default_factory=dict)
    functions_metadata: Dict[int, FunctionsMetadata] = field(default_factory=dict)

    def add_functions(
        self,
        functions: Iterable[CallTreeFunction],
        result_metadata: ExampleMetadata,
    ) -> None:
        for f in functions:
            fn = self.call_tree_functions.get(f.fingerprint)
            if fn is None:
                self.call_tree_functions[f.fingerprint] = replace(
                    f, self_times_ns=list(f.self_times_ns)
                )
                self.functions_metadata[f.fingerprint] = FunctionsMetadata(
                    max_val=f.sum_self_time_ns,
                    worst=result_metadata,
                    examples=[result_metadata],
                )
                continue
            fn.sample_count += f.sample_count
            fn.self_times_ns.extend(f.self_times_ns)
            fn.sum_self_time_ns += f.sum_self_time_ns
            meta = self.functions_metadata.setdefault(f.fingerprint, FunctionsMetadata())
            if f.sum_self_time_ns > meta.max_val:
                meta.max_val = f.sum_self_time_ns
                meta.worst = result_metadata
            if len(meta.examples) < self.max_num_of_examples:
                meta.examples.append(result_metadata)

    def to_metrics(self) -> List[FunctionMetrics]:
        """Return metrics sorted by total self time, capped to max_unique_functions."""
        metrics = []
        for f in self.call_tree_functions.values():
            f.self_times_ns.sort()
            p75, p95, p99 = (_quantile_or_zero(f.self_times_ns, q) for q in (0.75, 0.95, 0.99))
            meta = self.functions_metadata.get(f.fingerprint, FunctionsMetadata())
            metrics.append(
                FunctionMetrics(
                    name=f.function,
                    package=f.package,
                    fingerprint=f.fingerprint,
                    in_app=f.in_app,
                    p75=p75,
                    p95=p95,
                    p99=p99,
                    avg=_average(f.sum_self_time_ns, len(f.self_times_ns)),
                    sum=f.sum_self_time_ns,
                    count=f.sample_count,
                    worst=meta.worst,
                    examples=meta.examples,
                )
            )
        metrics.sort(key=lambda m: m.sum, reverse=True)
        return metrics[: self.max_unique_functions]


def _average(total: int, count: int) -> float:
    if count:
        return total / count
    return math.nan if total == 0 else math.inf


def _quantile_or_zero(values: Sequence[int], q: float) -> int:
    try:
        return quantile(values, q)
    except ValueError:
        return 0


def quantile(values: Sequence[int], q: float) -> int:
    """Return the q-quantile of sorted values using the nearest-rank method."""
    if not values:
        raise ValueError("cannot compute percentile from empty list")
    if q <= 0 or q > 1.0:
        raise ValueError("q must be a value between 0 and 1.0")
    return values[math.ceil(len(values) * q) - 1]


def extract_functions_from_call_trees_for_thread(
    call_trees_for_thread: Iterable[Node],
) -> List[CallTreeFunction]:
    functions: Dict[int, CallTreeFunction] = {}
    for call_tree in call_trees_for_thread:
        call_tree.collect_functions(functions, "")
    return _merge_and_sort_functions(functions)


def extract_functions_from_call_trees(
    call_trees: Mapping[object, Iterable[Node]],
) -> List[CallTreeFunction]:
    functions: Dict[int, CallTreeFunction] = {}
    for tid, call_trees_for_thread in call_trees.items():
        if isinstance(tid, str):
            thread_id = tid
        elif isinstance(tid, int) and not isinstance(tid, bool):
            thread_id = str(tid)
        else:
            thread_id = ""
        for call_tree in call_trees_for_thread:
            call_tree.collect_functions(functions, thread_id)
    return _merge_and_sort_functions(functions)


def _merge_and_sort_functions(functions: Dict[int, CallTreeFunction]) -> List[CallTreeFunction]:
    # Functions seen in a single sample are dropped to reduce the amount of data.
    kept = [f for f in functions.values() if f.sample_count > 1]
    kept.sort(key=lambda f: f.sum_self_time_ns, reverse=True)
    return kept


def cap_and_filter_functions(
    functions: Sequence[CallTreeFunction],
    max_unique_functions_per_profile: int,
    filter_system_frames: bool,
) -> List[CallTreeFunction]:
    """Keep at most the given number of functions, optionally application ones only."""
    if not filter_system_frames:
        return list(functions[:max_unique_functions_per_profile])
    app_functions: List[CallTreeFunction] = []
    for f in functions:
        if not f.in_app:
            continue
        app_functions.append(f)
        if len(app_functions) == max_unique_functions_per_profile:
            break
    return app_functions