# vroom

A library for analysing sampled profiles once they have been turned into call
trees. It has no dependencies outside the standard library.

## What is in it

- `vroom.platform`: the `Platform` enum (`android`, `cocoa`, `java`,
  `javascript`, `node`, `php`, `python`, `rust`).
- `vroom.packageutil`: `is_rust_application_package`,
  `is_cocoa_application_package` and `is_android_application_package` decide
  from a package path or name whether it belongs to the application.
- `vroom.frame`: the `Frame` and `Data` dataclasses and `trim_package`. A frame
  can classify itself as application or system code for Node, JavaScript,
  Cocoa, Rust, Python and PHP (`is_*_application_frame`, `set_in_app`,
  `normalize`), and gives a 32-bit `fingerprint()`, an MD5 `id()`,
  `module_or_package()` and `fully_qualified_name(platform)`.
- `vroom.measurements` and `vroom.metadata`: dataclasses for profile
  measurements and metadata, with `from_dict` / `to_dict`.
- `vroom.nodetree`: `Node` and `CallTreeFunction`. `Node.collect_functions`
  walks a tree and records each function's self time; application functions
  only subtract the time of their application descendants, system functions
  subtract all descendants. `should_aggregate_frame` and
  `is_symbolicated_frame` decide which frames are counted.
- `vroom.metrics`: `Aggregator` merges functions from many profiles and
  `to_metrics()` reports p75/p95/p99, average, sum, count, the worst example
  and a bounded list of examples per function (`FunctionMetrics`,
  `ExampleMetadata`). Also `quantile`, `extract_functions_from_call_trees`,
  `extract_functions_from_call_trees_for_thread` and
  `cap_and_filter_functions`.
- `vroom.occurrence`: `Profile`, `Occurrence`, `Event`, `Evidence`,
  `Category`, `IssueType`, `RegressedFunction` and friends.
  `new_occurrence` builds an occurrence for a detected node,
  `from_regressed_function` builds a "Function Regression" occurrence,
  `Occurrence.to_dict()` / `to_json()` give the payload, and
  `generate_kafka_message_batch` turns a list of occurrences into a list of
  JSON-encoded `bytes`.
- `vroom.frame_drop`: `find_frame_drop_cause` looks for the application
  function most likely responsible for each frozen frame recorded in a
  profile's `frozen_frame_renders` measurement.
- `vroom.detect_frame`: built-in lists of known slow calls on the main thread
  for Node, Cocoa and Android; `detect_frame` runs one set of options
  (`DetectExactFrameOptions` or `DetectAndroidFrameOptions`) and `find` runs
  every detector for the profile's platform followed by the frame drop search.

## Installation

```
pip install .
```

## Example

```python
from vroom.frame import Frame
from vroom.platform import Platform
from vroom.nodetree import Node

root = Node(duration_ns=20, is_application=True,
            frame=Frame(function="foo", package="foo"))
root.children.append(Node(duration_ns=10, is_application=True,
                          frame=Frame(function="bar", package="bar")))

results = {}
root.collect_functions(results, "")
for fn in results.values():
    print(fn.function, fn.self_times_ns)   # bar [10], foo [10]

frame = Frame(module="threading", function="Condition.wait")
print(frame.fully_qualified_name(Platform.PYTHON))  # threading.Condition.wait
print(frame.is_python_application_frame())          # False
```

To detect issues, build a `vroom.occurrence.Profile` and a mapping of thread id
to call-tree roots, then call `vroom.detect_frame.find(profile, call_trees)`.
Each returned `Occurrence` serialises with `to_json()`.

## What it does not do

The package works on data already in memory. It does not read profiles or
profiler chunks from storage, does not build call trees from raw sample
formats, does not publish messages to a queue (it only produces their
payloads), and offers no command-line tool or HTTP service.

## Running the tests

```
pip install ".[test]"
pytest
```