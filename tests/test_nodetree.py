import hashlib

import pytest

from vroom.frame import Data, Frame
from vroom.nodetree import (
    CallTreeFunction,
    Node,
    is_symbolicated_frame,
    should_aggregate_frame,
)

FINGERPRINT_FOO = 313808793
FINGERPRINT_BAR = 45793645
FINGERPRINT_BAZ = 3346457645
FINGERPRINT_QUX = 4214270277
FINGERPRINT_MAIN = 3605132115


def _node(name, duration, app, children=(), platform=""):
    return Node(
        duration_ns=duration,
        is_application=app,
        frame=Frame(function=name, package=name, platform=platform),
        children=list(children),
    )


def _ctf(fp, name, app, times, max_duration):
    return CallTreeFunction(
        fingerprint=fp,
        function=name,
        package=name,
        in_app=app,
        self_times_ns=list(times),
        sum_self_time_ns=sum(times),
        max_duration=max_duration,
    )


CASES = [
    (
        "single application node",
        lambda: _node("foo", 10, True),
        {FINGERPRINT_FOO: _ctf(FINGERPRINT_FOO, "foo", True, [10], 10)},
    ),
    (
        "single system node",
        lambda: _node("foo", 10, False),
        {FINGERPRINT_FOO: _ctf(FINGERPRINT_FOO, "foo", False, [10], 10)},
    ),
    (
        "non leaf node with non zero self time",
        lambda: _node("foo", 20, True, [_node("bar", 10, True)]),
        {
            FINGERPRINT_FOO: _ctf(FINGERPRINT_FOO, "foo", True, [10], 10),
            FINGERPRINT_BAR: _ctf(FINGERPRINT_BAR, "bar", True, [10], 10),
        },
    ),
    (
        "application node wrapping system nodes of same duration",
        lambda: _node(
            "main",
            10,
            True,
            [_node("foo", 10, True, [_node("bar", 10, False, [_node("baz", 10, False)])])],
        ),
        {
            FINGERPRINT_FOO: _ctf(FINGERPRINT_FOO, "foo", True, [10], 10),
            FINGERPRINT_BAZ: _ctf(FINGERPRINT_BAZ, "baz", False, [10], 10),
        },
    ),
    (
        "multiple occurrences of same functions",
        lambda: _node(
            "main",
            40,
            True,
            [
                _node(
                    "foo",
                    10,
                    True,
                    [_node("bar", 10, False, [_node("baz", 10, False, platform="python")], "python")],
                    "python",
                ),
                _node("qux", 10, False, platform="python"),
                _node(
                    "foo",
                    20,
                    True,
                    [_node("bar", 20, False, [_node("baz", 20, False, platform="python")], "python")],
                    "python",
                ),
            ],
            "python",
        ),
        {
            FINGERPRINT_FOO: _ctf(FINGERPRINT_FOO, "foo", True, [10, 20], 20),
            FINGERPRINT_BAZ: _ctf(FINGERPRINT_BAZ, "baz", False, [10, 20], 20),
            FINGERPRINT_QUX: _ctf(FINGERPRINT_QUX, "qux", False, [10], 10),
            FINGERPRINT_MAIN: _ctf(FINGERPRINT_MAIN, "main", True, [10], 10),
        },
    ),
]


@pytest.mark.parametrize("name,build,want", CASES, ids=[c[0] for c in CASES])
def test_collect_functions(name, build, want):
    node = build()
    results = {}
    Node.collect_functions(node, results, "")
    assert results == want


def _do_stuff_want():
    return {
        261678695: CallTreeFunction(
            fingerprint=261678695,
            function="com.example.Thing.doStuff()",
            package="com.example",
            in_app=True,
            self_times_ns=[10],
            sum_self_time_ns=10,
            max_duration=10,
        )
    }


def test_collect_functions_obfuscated_android_frames():
    node = Node(
        duration_ns=20,
        is_application=True,
        frame=Frame(
            function="a.B()",
            package="a",
            platform="android",
            data=Data(deobfuscation_status="missing"),
        ),
        children=[
            Node(
                duration_ns=10,
                is_application=True,
                frame=Frame(
                    function="com.example.Thing.doStuff()",
                    package="com.example",
                    platform="android",
                    data=Data(deobfuscation_status="deobfuscated"),
                ),
            ),
            Node(
                duration_ns=10,
                is_application=True,
                frame=Frame(
                    function="com.example.Thing.a()",
                    package="com.example",
                    platform="android",
                    data=Data(deobfuscation_status="partial"),
                ),
            ),
        ],
    )
    results = {}
    node.collect_functions(results, "")
    assert results == _do_stuff_want()


def test_collect_functions_obfuscated_java_frames():
    node = Node(
        duration_ns=20,
        is_application=True,
        frame=Frame(function="a.B()", package="a", platform="java"),
        children=[
            Node(
                duration_ns=10,
                is_application=True,
                frame=Frame(
                    function="com.example.Thing.doStuff()",
                    package="com.example",
                    platform="java",
                ),
            )
        ],
    )
    results = {}
    node.collect_functions(results, "")
    assert results == _do_stuff_want()


def test_collect_functions_cocoa_main_frame():
    node = Node(
        duration_ns=10,
        is_application=True,
        frame=Frame(function="main", package="iOS-Swift", platform="cocoa"),
    )
    results = {}
    node.collect_functions(results, "")
    assert results == {}


@pytest.mark.parametrize(
    "frame,want",
    [
        (Frame(is_react_native=True, platform="javascript", data=Data(js_symbolicated=True)), True),
        (Frame(is_react_native=True, platform="javascript", data=Data()), False),
        (Frame(platform="javascript", data=Data()), True),
        (Frame(platform="node", data=Data()), True),
    ],
    ids=["react-native-symbolicated", "react-native-not-symbolicated", "browser-js", "nodejs"],
)
def test_is_symbolicated(frame, want):
    assert is_symbolicated_frame(frame) is want


def test_should_aggregate_frame_rules():
    assert should_aggregate_frame(Frame()) is False
    assert should_aggregate_frame(Frame(function="foo", platform="python")) is True
    assert should_aggregate_frame(Frame(function="foo", platform="cocoa")) is False
    cocoa = Frame(
        function="foo", platform="cocoa", data=Data(symbolicator_status="symbolicated")
    )
    assert should_aggregate_frame(cocoa) is True


def test_from_frame():
    f = Frame(function="run", module="app.main", path="/a.py", line=7, in_app=False)
    n = Node.from_frame(f, 10, 30, 99)
    assert n.duration_ns == 20
    assert n.sample_count == 1
    assert n.is_application is False
    assert n.package == "app.main"
    assert n.name == "run"
    assert n.line == 7
    assert n.fingerprint == 99


def test_from_frame_open_node_defaults_in_app():
    n = Node.from_frame(Frame(function="run"), 10, 0, 1)
    assert n.duration_ns == 0
    assert n.is_application is True


def test_update_and_close():
    child = Node.from_frame(Frame(function="c"), 5, 0, 2)
    root = Node.from_frame(Frame(function="r"), 0, 0, 1)
    root.children.append(child)
    root.update(8)
    assert root.sample_count == 2
    assert root.duration_ns == 8
    root.close(20)
    assert root.end_ns == 8
    assert child.end_ns == 8
    assert child.duration_ns == 3


def test_to_frame_copies_status():
    n = Node(frame=Frame(function="f", status="symbolicated"))
    assert n.to_frame().data.symbolicator_status == "symbolicated"


def test_write_to_hash():
    h1 = hashlib.md5()
    Node().write_to_hash(h1)
    assert h1.digest() == hashlib.md5(b"-").digest()
    h2 = hashlib.md5()
    Node(package="pkg", name="fn").write_to_hash(h2)
    assert h2.digest() == hashlib.md5(b"pkgfn").digest()