"""Call trees built from profile samples and function self-time aggregation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from vroom.frame import Frame
from vroom.platform import Platform

_MASK64 = (1 << 64) - 1

_OBFUSCATION_SUPPORTED_PLATFORMS = frozenset({Platform.ANDROID.value, Platform.JAVA.value})
_SYMBOLICATION_SUPPORTED_PLATFORMS = frozenset(
    {Platform.JAVASCRIPT.value, Platform.NODE.value, Platform.COCOA.value}
)
_FUNCTION_DENY_LIST_BY_PLATFORM = {
    Platform.COCOA.value: frozenset({"main"}),
}


def _platform_value(p: Union[Platform, str]) -> str:
    return p.value if isinstance(p, Platform) else p


def _sub_u64(a: int, b: int) -> int:
    """Subtract as unsigned 64-bit integers, wrapping on underflow."""
    return (a - b) & _MASK64


@dataclass
class CallTreeFunction:
    """A function found in a call tree with its self times."""

    fingerprint: int = 0
    function: str = ""
    package: str = ""
    in_app: bool = False
    self_times_ns: List[int] = field(default_factory=list)
    sum_self_time_ns: int = 0
    sample_count: int = 0
    thread_id: str = ""
    max_duration: int = 0


@dataclass
class Node:
    """A node of a call tree."""

    children: List["Node"] = field(default_factory=list)
    duration_ns: int = 0
    fingerprint: int = 0
    is_application: bool = False
    line: int = 0
    name: str = ""
    package: str = ""
    path: str = ""
    end_ns: int = 0
    frame: Frame = field(default_factory=Frame)
    sample_count: int = 0
    start_ns: int = 0
    profile_ids: Set[str] = field(default_factory=set)
    profiles: Set[Any] = field(default_factory=set)

    @classmethod
    def from_frame(cls, f: Frame, start: int, end: int, fingerprint: int) -> "Node":
        """Create a node for a frame seen between start and end."""
        in_app = True if f.in_app is None else f.in_app
        node = cls(
            end_ns=end,
            fingerprint=fingerprint,
            frame=f,
            is_application=in_app,
            line=f.line,
            name=f.function,
            package=f.module_or_package(),
            path=f.path,
            sample_count=1,
            start_ns=start,
        )
        if end > 0:
            node.duration_ns = _sub_u64(node.end_ns, node.start_ns)
        return node

    def update(self, timestamp: int) -> None:
        """Count another sample and extend the node to timestamp."""
        self.sample_count += 1
        self.set_duration(timestamp)

    def to_frame(self) -> Frame:
        """Return the node's frame with its status copied into the symbolicator status."""
        self.frame.data.symbolicator_status = self.frame.status
        return self.frame

    def set_duration(self, t: int) -> None:
        self.end_ns = t
        self.duration_ns = _sub_u64(self.end_ns, self.start_ns)

    def write_to_hash(self, h: Any) -> None:
        """Feed the node's package and name into a hash object with update()."""
        if not self.package and not self.name:
            h.update(b"-")
        else:
            h.update(self.package.encode())
            h.update(self.name.encode())

    def collect_functions(
        self,
        results: Dict[int, CallTreeFunction],
        thread_id: str,
    ) -> Tuple[int, int]:
        """Collect functions with a non-zero self time into results.

        Application functions only subtract the time spent in application
        descendants; system functions subtract all descendants. Returns the
        time spent in application and in system functions by this subtree.
        """
        children_application_ns = 0
        children_system_ns = 0
        for child in self.children:
            app_ns, sys_ns = child.collect_functions(results, thread_id)
            children_application_ns += app_ns
            children_system_ns += sys_ns

        application_ns = min(children_application_ns, self.duration_ns)
        self_time_ns = 0

        if should_aggregate_frame(self.frame):
            if self.is_application:
                if self.duration_ns > children_application_ns:
                    self_time_ns = self.duration_ns - children_application_ns
                    application_ns += self_time_ns
            elif self.duration_ns > children_application_ns + children_system_ns:
                self_time_ns = self.duration_ns - children_application_ns - children_system_ns

            if self_time_ns > 0:
                fingerprint = self.frame.fingerprint()
                function = results.get(fingerprint)
                if function is None:
                    results[fingerprint] = CallTreeFunction(
                        fingerprint=fingerprint,
                        function=self.frame.function,
                        package=self.frame.module_or_package(),
                        in_app=self.is_application,
                        self_times_ns=[self_time_ns],
                        sum_self_time_ns=self_time_ns,
                        sample_count=self.sample_count,
                        thread_id=thread_id,
                        max_duration=self_time_ns,
                    )
                else:
                    function.self_times_ns.append(self_time_ns)
                    function.sum_self_time_ns += self_time_ns
                    function.sample_count += self.sample_count
                    if self_time_ns > function.max_duration:
                        function.max_duration = self_time_ns
                        function.thread_id = thread_id

        return application_ns, self.duration_ns - application_ns

    def close(self, timestamp: int) -> None:
        """Close open nodes of this subtree at timestamp."""
        if self.end_ns == 0:
            self.set_duration(timestamp)
        else:
            timestamp = self.end_ns
        for child in self.children:
            child.close(timestamp)


def should_aggregate_frame(frame: Frame) -> bool:
    """Return True if the frame is worth aggregating into function metrics."""
    function = frame.function
    if not function:
        return False

    platform = _platform_value(frame.platform)
    deny_list: Optional[frozenset] = _FUNCTION_DENY_LIST_BY_PLATFORM.get(platform)
    if deny_list is not None and function in deny_list:
        return False

    if platform in _OBFUSCATION_SUPPORTED_PLATFORMS:
        # Only class names are known for partially deobfuscated frames,
        # which makes grouping ineffective.
        if frame.data.deobfuscation_status == "partial":
            return False
        # Obfuscated package names usually lack a dot.
        if "." not in frame.module_or_package():
            return False

    if platform in _SYMBOLICATION_SUPPORTED_PLATFORMS:
        return is_symbolicated_frame(frame)

    return True


def is_symbolicated_frame(f: Frame) -> bool:
    """Return True if the frame counts as symbolicated for its platform."""
    platform = _platform_value(f.platform)
    if platform == Platform.JAVASCRIPT.value and f.is_react_native:
        return bool(f.data.js_symbolicated)
    if platform in (Platform.JAVASCRIPT.value, Platform.NODE.value):
        return True
    return f.data.symbolicator_status == "symbolicated"