"""Issues detected in profiles, regressed functions and their serialization."""

from __future__ import annotations

import hashlib
import json
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from vroom.frame import Data, Frame
from vroom.measurements import Measurement
from vroom.metrics import ExampleMetadata
from vroom.nodetree import Node
from vroom.platform import Platform

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_NANOSECOND = 1
_MICROSECOND = 1_000 * _NANOSECOND
_MILLISECOND = 1_000 * _MICROSECOND
_SECOND = 1_000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_ROUNDING = 10 * _MICROSECOND

PROFILE_ID = "profile_id"
OCCURRENCE_PAYLOAD = "occurrence"


class Category(str, Enum):
    """The kind of problem an occurrence reports."""

    BASE64_DECODE = "base64_decode"
    BASE64_ENCODE = "base64_encode"
    COMPRESSION = "compression"
    CORE_DATA_BLOCK = "core_data_block"
    CORE_DATA_MERGE = "core_data_merge"
    CORE_DATA_READ = "core_data_read"
    CORE_DATA_WRITE = "core_data_write"
    DECOMPRESSION = "decompression"
    FILE_READ = "file_read"
    FILE_WRITE = "file_write"
    FRAME_DROP = "frame_drop"
    HTTP = "http"
    IMAGE_DECODE = "image_decode"
    IMAGE_ENCODE = "image_encode"
    JSON_DECODE = "json_decode"
    JSON_ENCODE = "json_encode"
    ML_MODEL_INFERENCE = "ml_model_inference"
    ML_MODEL_LOAD = "ml_model_load"
    REGEX = "regex"
    SQL = "sql"
    SOURCE_CONTEXT = "source_context"
    THREAD_WAIT = "thread_wait"
    VIEW_INFLATION = "view_inflation"
    VIEW_LAYOUT = "view_layout"
    VIEW_RENDER = "view_render"
    VIEW_UPDATE = "view_update"
    XPC = "xpc"

    def __str__(self) -> str:
        return self.value


class IssueType(IntEnum):
    """Numeric issue type understood by the issue platform."""

    NONE = 0
    FILE_IO = 2001
    IMAGE_DECODE = 2002
    JSON_DECODE = 2003
    CORE_DATA = 2004
    VIEW = 2006
    REGEX = 2007
    FRAME_DROP = 2009
    FRAME_REGRESSION_EXP = 2010
    FRAME_REGRESSION = 2011


class EvidenceName(str, Enum):
    DURATION = "Duration"
    FUNCTION = "Suspect function"
    PACKAGE = "Package"
    FULLY_QUALIFIED_NAME = "Fully qualified name"
    BREAKPOINT = "Breakpoint"
    REGRESSION = "Regression"

    def __str__(self) -> str:
        return self.value


_ISSUE_TITLES: Dict[str, Tuple[str, IssueType]] = {
    Category.BASE64_DECODE.value: ("Base64 Decode on Main Thread", IssueType.NONE),
    Category.BASE64_ENCODE.value: ("Base64 Encode on Main Thread", IssueType.NONE),
    Category.COMPRESSION.value: ("Compression on Main Thread", IssueType.NONE),
    Category.CORE_DATA_BLOCK.value: ("Object Context operation on Main Thread", IssueType.CORE_DATA),
    Category.CORE_DATA_MERGE.value: ("Object Context operation on Main Thread", IssueType.CORE_DATA),
    Category.CORE_DATA_READ.value: ("Object Context operation on Main Thread", IssueType.CORE_DATA),
    Category.CORE_DATA_WRITE.value: ("Object Context operation on Main Thread", IssueType.CORE_DATA),
    Category.DECOMPRESSION.value: ("Decompression on Main Thread", IssueType.NONE),
    Category.FILE_READ.value: ("File I/O on Main Thread", IssueType.NONE),
    Category.FILE_WRITE.value: ("File I/O on Main Thread", IssueType.NONE),
    Category.FRAME_DROP.value: ("Frame Drop", IssueType.FRAME_DROP),
    Category.HTTP.value: ("Network I/O on Main Thread", IssueType.NONE),
    Category.IMAGE_DECODE.value: ("Image Decoding on Main Thread", IssueType.IMAGE_DECODE),
    Category.IMAGE_ENCODE.value: ("Image Encoding on Main Thread", IssueType.NONE),
    Category.JSON_DECODE.value: ("JSON Decoding on Main Thread", IssueType.JSON_DECODE),
    Category.JSON_ENCODE.value: ("JSON Encoding on Main Thread", IssueType.NONE),
    Category.ML_MODEL_INFERENCE.value: ("Machine Learning inference on Main Thread", IssueType.NONE),
    Category.ML_MODEL_LOAD.value: ("Machine Learning model load on Main Thread", IssueType.NONE),
    Category.REGEX.value: ("Regex on Main Thread", IssueType.REGEX),
    Category.SQL.value: ("SQL operation on Main Thread", IssueType.NONE),
    Category.SOURCE_CONTEXT.value: ("Adding Source Context is slow", IssueType.NONE),
    Category.THREAD_WAIT.value: ("Thread Wait on Main Thread", IssueType.NONE),
    Category.VIEW_INFLATION.value: ("SwiftUI View Inflation is slow", IssueType.NONE),
    Category.VIEW_LAYOUT.value: ("SwiftUI View Layout is slow", IssueType.VIEW),
    Category.VIEW_RENDER.value: ("SwiftUI View Render is slow", IssueType.VIEW),
    Category.VIEW_UPDATE.value: ("SwiftUI View Update is slow", IssueType.VIEW),
    Category.XPC.value: ("XPC operation on Main Thread", IssueType.NONE),
}


def _value(v: Union[Enum, str]) -> Any:
    return v.value if isinstance(v, Enum) else v


@dataclass
class Evidence:
    name: Union[EvidenceName, str] = ""
    value: str = ""
    important: bool = False


@dataclass
class Transaction:
    active_thread_id: int = 0
    id: str = ""
    name: str = ""


@dataclass
class Profile:
    """The parts of a profile that issue detection relies on."""

    id: str = ""
    organization_id: int = 0
    project_id: int = 0
    platform: Union[Platform, str] = ""
    transaction: Transaction = field(default_factory=Transaction)
    transaction_tags: Optional[Dict[str, str]] = None
    debug_meta: Dict[str, Any] = field(default_factory=dict)
    environment: str = ""
    release: str = ""
    received: datetime = _ZERO_TIME
    timestamp: datetime = _ZERO_TIME
    duration_ns: int = 0
    measurements: Dict[str, Measurement] = field(default_factory=dict)


@dataclass
class NodeInfo:
    """A node matched by a detector, with the stack leading to it."""

    category: Union[Category, str] = ""
    node: Node = field(default_factory=Node)
    stack_trace: List[Frame] = field(default_factory=list)


@dataclass
class StackTrace:
    frames: List[Frame] = field(default_factory=list)


@dataclass
class Event:
    """Profile metadata attached to an occurrence."""

    contexts: Dict[str, Any] = field(default_factory=dict)
    debug_meta: Dict[str, Any] = field(default_factory=dict)
    environment: str = ""
    id: str = ""
    organization_id: int = 0
    platform: Union[Platform, str] = ""
    project_id: int = 0
    received: datetime = _ZERO_TIME
    release: str = ""
    stack_trace: StackTrace = field(default_factory=StackTrace)
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = _ZERO_TIME


@dataclass
class Occurrence:
    """A potential issue detected in a profile."""

    culprit: str = ""
    detection_time: datetime = _ZERO_TIME
    event: Event = field(default_factory=Event)
    evidence_data: Dict[str, Any] = field(default_factory=dict)
    evidence_display: List[Evidence] = field(default_factory=list)
    fingerprint: List[str] = field(default_factory=list)
    id: str = ""
    issue_title: str = ""
    level: str = ""
    payload_type: str = OCCURRENCE_PAYLOAD
    project_id: int = 0
    resource_id: str = ""
    subtitle: str = ""
    type: IssueType = IssueType.NONE
    # Only used for stats.
    category: Union[Category, str] = field(default="", compare=False, repr=False)
    duration_ns: int = field(default=0, compare=False, repr=False)
    sample_count: int = field(default=0, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Return the occurrence as the JSON-compatible payload sent downstream."""
        out: Dict[str, Any] = {
            "culprit": self.culprit,
            "detection_time": _format_time(self.detection_time),
            "event": _event_to_dict(self.event),
        }
        if self.evidence_data:
            out["evidence_data"] = {k: self.evidence_data[k] for k in sorted(self.evidence_data)}
        if self.evidence_display:
            out["evidence_display"] = [
                {"name": _value(e.name), "value": e.value, "important": e.important}
                for e in self.evidence_display
            ]
        out["fingerprint"] = list(self.fingerprint)
        out["id"] = self.id
        out["issue_title"] = self.issue_title
        if self.level:
            out["level"] = self.level
        out["payload_type"] = self.payload_type
        out["project_id"] = self.project_id
        if self.resource_id:
            out["resource_id"] = self.resource_id
        out["subtitle"] = self.subtitle
        out["type"] = int(self.type)
        return out

    def to_json(self) -> str:
        """Serialize to compact JSON; raises ValueError on non-finite numbers."""
        return json.dumps(
            self.to_dict(), separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )


@dataclass
class RegressedFunction:
    organization_id: int = 0
    project_id: int = 0
    profile_id: str = ""
    example: ExampleMetadata = field(default_factory=ExampleMetadata)
    fingerprint: int = 0
    absolute_percentage_change: float = 0.0
    aggregate_range_1: float = 0.0
    aggregate_range_2: float = 0.0
    breakpoint: int = 0
    trend_difference: float = 0.0
    trend_percentage: float = 0.0
    unweighted_p_value: float = 0.0
    unweighted_t_value: float = 0.0


def _event_id() -> str:
    return uuid.uuid4().hex


def _strip_package_name(name: str, package: str) -> str:
    prefix = f"{package}."
    if package and name.startswith(prefix):
        return name[len(prefix):]
    return name


def _round_duration(d: int, m: int) -> int:
    """Round d to the nearest multiple of m, halfway values away from zero."""
    if m <= 0:
        return d
    sign = -1 if d < 0 else 1
    a = abs(d)
    r = a % m
    a = a - r if r + r < m else a + m - r
    return sign * a


def _fixed(v: int, precision: int) -> str:
    whole, frac = divmod(v, 10**precision)
    text = str(whole)
    if frac:
        text += "." + f"{frac:0{precision}d}".rstrip("0")
    return text


def _format_duration(d: int) -> str:
    """Format nanoseconds like 1h2m3.5s, 100ms or 120\u00b5s."""
    if d == 0:
        return "0s"
    sign = "-" if d < 0 else ""
    u = abs(d)
    if u < _SECOND:
        if u < _MICROSECOND:
            return f"{sign}{u}ns"
        if u < _MILLISECOND:
            return f"{sign}{_fixed(u, 3)}\u00b5s"
        return f"{sign}{_fixed(u, 6)}ms"
    hours, rem = divmod(u, _HOUR)
    minutes, rem = divmod(rem, _MINUTE)
    body = f"{_fixed(rem, 9)}s"
    if u >= _MINUTE:
        body = f"{minutes}m{body}"
    if u >= _HOUR:
        body = f"{hours}h{body}"
    return sign + body


def _format_float2(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "+Inf" if x > 0 else "-Inf"
    return f"{x:.2f}"


def _format_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    text = (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}"
    )
    if dt.microsecond:
        text += "." + f"{dt.microsecond:06d}".rstrip("0")
    offset = dt.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return text + "Z"
    sign = "+" if seconds > 0 else "-"
    hours, rem = divmod(abs(seconds), 3600)
    return f"{text}{sign}{hours:02d}:{rem // 60:02d}"


def _frame_to_dict(f: Frame) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if f.data.deobfuscation_status:
        data["deobfuscation_status"] = f.data.deobfuscation_status
    if f.data.symbolicator_status:
        data["symbolicator_status"] = f.data.symbolicator_status
    if f.data.js_symbolicated is not None:
        data["symbolicated"] = f.data.js_symbolicated
    out: Dict[str, Any] = {}
    if f.column:
        out["colno"] = f.column
    out["data"] = data
    for key, value in (
        ("filename", f.file),
        ("function", f.function),
    ):
        if value:
            out[key] = value
    out["in_app"] = f.in_app
    for key, value in (
        ("instruction_addr", f.instruction_addr),
        ("lang", f.lang),
        ("lineno", f.line),
        ("module", f.module),
        ("package", f.package),
        ("abs_path", f.path),
        ("status", f.status),
        ("sym_addr", f.sym_addr),
        ("symbol", f.symbol),
        ("platform", _value(f.platform)),
    ):
        if value:
            out[key] = value
    return out


def _event_to_dict(e: Event) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if e.contexts:
        out["contexts"] = dict(e.contexts)
    out["debug_meta"] = e.debug_meta
    if e.environment:
        out["environment"] = e.environment
    out["event_id"] = e.id
    out["platform"] = _value(e.platform)
    out["project_id"] = e.project_id
    out["received"] = _format_time(e.received)
    if e.release:
        out["release"] = e.release
    out["stacktrace"] = {"frames": [_frame_to_dict(f) for f in e.stack_trace.frames]}
    out["tags"] = {k: e.tags[k] for k in sorted(e.tags)}
    out["timestamp"] = _format_time(e.timestamp)
    return out


def normalize_android_stack_trace(st: List[Frame]) -> None:
    """Strip the package name from each frame's function, in place."""
    for f in st:
        f.function = _strip_package_name(f.function, f.package)


def _is_android(p: Union[Platform, str]) -> bool:
    return _value(p) == Platform.ANDROID.value


def _generate_evidence_data(profile: Profile, info: NodeInfo) -> Dict[str, Any]:
    t = profile.transaction
    data: Dict[str, Any] = {
        "frame_duration_ns": info.node.duration_ns,
        "frame_module": info.node.frame.module,
        "frame_name": info.node.name,
        "frame_package": info.node.frame.package,
        "profile_duration_ns": profile.duration_ns,
        "template_name": "profile",
        "transaction_id": t.id,
        "transaction_name": t.name,
        PROFILE_ID: profile.id,
    }
    if _value(info.category) != Category.FRAME_DROP.value and _is_android(profile.platform):
        data["sample_count"] = info.node.sample_count
    return data


def _generate_evidence_display(profile: Profile, info: NodeInfo) -> List[Evidence]:
    display = [
        Evidence(name=EvidenceName.FUNCTION, value=info.node.name, important=True),
        Evidence(name=EvidenceName.PACKAGE, value=info.node.package),
    ]
    if _value(info.category) == Category.FRAME_DROP.value:
        return display
    node_duration = _format_duration(_round_duration(info.node.duration_ns, _ROUNDING))
    part = info.node.duration_ns * 100
    if profile.duration_ns:
        percentage = part / profile.duration_ns
    else:
        percentage = math.nan if part == 0 else math.inf
    if _is_android(profile.platform):
        duration = f"{node_duration} ({_format_float2(percentage)}% of the profile)"
    else:
        duration = (
            f"{node_duration} ({_format_float2(percentage)}% of the profile, "
            f"found in {info.node.sample_count} samples)"
        )
    display.append(Evidence(name=EvidenceName.DURATION, value=duration))
    return display


def new_occurrence(profile: Profile, info: NodeInfo) -> Occurrence:
    """Build an occurrence for a node detected in a profile."""
    t = profile.transaction
    known = _ISSUE_TITLES.get(_value(info.category))
    if known is not None:
        title, issue_type = known
    else:
        title, issue_type = f"{_value(info.category)} issue detected", IssueType.NONE

    pf = profile.platform
    if _is_android(pf):
        pf = Platform.JAVA
        normalize_android_stack_trace(info.stack_trace)
        info = replace(
            info,
            node=replace(
                info.node, name=_strip_package_name(info.node.name, info.node.package)
            ),
        )

    h = hashlib.md5()
    h.update(str(profile.project_id).encode())
    h.update(title.encode())
    h.update(str(int(issue_type)).encode())
    h.update(info.node.frame.module_or_package().encode())
    h.update(info.node.name.encode())

    tags = dict(profile.transaction_tags) if profile.transaction_tags is not None else {}
    return Occurrence(
        culprit=t.name,
        detection_time=datetime.now(timezone.utc),
        event=Event(
            debug_meta=profile.debug_meta,
            environment=profile.environment,
            id=_event_id(),
            organization_id=profile.organization_id,
            platform=pf,
            project_id=profile.project_id,
            received=profile.received,
            release=profile.release,
            stack_trace=StackTrace(frames=info.stack_trace),
            tags=tags,
            timestamp=profile.timestamp,
        ),
        evidence_data=_generate_evidence_data(profile, info),
        evidence_display=_generate_evidence_display(profile, info),
        fingerprint=[h.hexdigest()],
        id=_event_id(),
        issue_title=title,
        level="info",
        payload_type=OCCURRENCE_PAYLOAD,
        project_id=profile.project_id,
        subtitle=info.node.name,
        type=issue_type,
        category=info.category,
        duration_ns=info.node.duration_ns,
        sample_count=info.node.sample_count,
    )


def from_regressed_function(
    pf: Union[Platform, str],
    regressed: RegressedFunction,
    f: Frame,
) -> Occurrence:
    """Build a function regression occurrence for a frame."""
    if _is_android(pf):
        pf = Platform.JAVA
    fully_qualified_name = f.fully_qualified_name(pf)
    now = datetime.now(timezone.utc)
    before_p95 = _format_duration(_round_duration(int(regressed.aggregate_range_1), _ROUNDING))
    after_p95 = _format_duration(_round_duration(int(regressed.aggregate_range_2), _ROUNDING))

    return Occurrence(
        culprit=fully_qualified_name,
        detection_time=now,
        event=Event(
            id=_event_id(),
            organization_id=regressed.organization_id,
            platform=pf,
            project_id=regressed.project_id,
            received=now,
            timestamp=now,
            tags={},
        ),
        evidence_data={
            "organization_id": regressed.organization_id,
            "project_id": regressed.project_id,
            "file": f.file,
            "fingerprint": regressed.fingerprint,
            "function": f.function,
            "module": f.module,
            "package": f.package,
            "path": f.path,
            "symbol": f.symbol,
            "absolute_percentage_change": regressed.absolute_percentage_change,
            "aggregate_range_1": regressed.aggregate_range_1,
            "aggregate_range_2": regressed.aggregate_range_2,
            "breakpoint": regressed.breakpoint,
            "trend_difference": regressed.trend_difference,
            "trend_percentage": regressed.trend_percentage,
            "unweighted_p_value": regressed.unweighted_p_value,
            "unweighted_t_value": regressed.unweighted_t_value,
        },
        evidence_display=[
            Evidence(
                name=EvidenceName.REGRESSION,
                value=(
                    f"{fully_qualified_name} duration increased from "
                    f"{before_p95} to {after_p95} (P95)."
                ),
                important=True,
            ),
            Evidence(name=EvidenceName.BREAKPOINT, value=str(regressed.breakpoint)),
            Evidence(name=EvidenceName.FULLY_QUALIFIED_NAME, value=fully_qualified_name),
        ],
        fingerprint=[format(regressed.fingerprint, "x")],
        id=_event_id(),
        issue_title="Function Regression",
        level="info",
        payload_type=OCCURRENCE_PAYLOAD,
        project_id=regressed.project_id,
        subtitle=f"Duration increased from {before_p95} to {after_p95} (P95).",
        type=IssueType.FRAME_REGRESSION,
    )


def generate_kafka_message_batch(occurrences: Iterable[Occurrence]) -> List[bytes]:
    """Encode each occurrence as a JSON message value."""
    return [o.to_json().encode("utf-8") for o in occurrences]


__all__ = [
    "Category",
    "Data",
    "Event",
    "Evidence",
    "EvidenceName",
    "IssueType",
    "NodeInfo",
    "Occurrence",
    "Profile",
    "RegressedFunction",
    "StackTrace",
    "Transaction",
    "from_regressed_function",
    "generate_kafka_message_batch",
    "new_occurrence",
    "normalize_android_stack_trace",
]