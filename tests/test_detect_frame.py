import pytest

from vroom.detect_frame import (
    DetectAndroidFrameOptions,
    DetectExactFrameOptions,
    NodeKey,
    detect_frame,
    detect_frame_in_call_tree,
    find,
)
from vroom.frame import Frame
from vroom.nodetree import Node
from vroom.occurrence import Category, IssueType, NodeInfo, Profile, Transaction
from vroom.platform import Platform

MS = 1_000_000


def _node(name, package, duration, end, is_app, start=0, sample_count=0, children=None):
    return Node(
        duration_ns=duration,
        end_ns=end,
        is_application=is_app,
        name=name,
        package=package,
        path="path",
        start_ns=start,
        sample_count=sample_count,
        frame=Frame(function=name, in_app=is_app, package=package, path="path"),
        children=children if children is not None else [],
    )


def _frame(name, package, is_app):
    return Frame(function=name, in_app=is_app, package=package, path="path")


def test_detect_frame_in_call_tree():
    tree = _node("root", "package", 30 * MS, 30 * MS, True, children=[
        _node("child1-1", "package", 20 * MS, 20 * MS, False, children=[
            _node("child2-1", "package", 20 * MS, 20 * MS, True, children=[
                _node("CFReadStreamRead", "CoreFoundation", 20 * MS, 20 * MS, False,
                      sample_count=4),
            ]),
        ]),
        _node("child1-2", "package", 5, 10, False, start=5, children=[
            _node("child2-1", "package", 5, 10, True, start=5, children=[
                _node("child3-1", "package", 5, 10, False, start=5),
            ]),
        ]),
    ])
    job = DetectExactFrameOptions(
        duration_threshold=16 * MS,
        functions_by_package={"CoreFoundation": {"CFReadStreamRead": Category.FILE_READ}},
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {
        NodeKey("CoreFoundation", "CFReadStreamRead"): NodeInfo(
            category=Category.FILE_READ,
            node=_node("CFReadStreamRead", "CoreFoundation", 20 * MS, 20 * MS, False,
                       sample_count=4),
            stack_trace=[
                _frame("root", "package", True),
                _frame("child1-1", "package", False),
                _frame("child2-1", "package", True),
                _frame("CFReadStreamRead", "CoreFoundation", False),
            ],
        )
    }


def test_do_not_detect_under_duration_threshold():
    tree = _node("root", "package", 30 * MS, 30 * MS, True, children=[
        _node("child1-1", "package", 20 * MS, 20 * MS, False, children=[
            _node("child2-1", "package", 20 * MS, 20 * MS, True, children=[
                _node("SuperShortFunction", "vroom", 10 * MS, 10 * MS, False),
            ]),
        ]),
    ])
    job = DetectExactFrameOptions(
        duration_threshold=16 * MS,
        functions_by_package={
            "CoreFoundation": {"CFReadStreamRead": Category.FILE_READ},
            "vroom": {"SuperShortFunction": Category.FILE_READ},
        },
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {}


def test_do_not_detect_under_sample_threshold():
    tree = _node("root", "package", 30 * MS, 30 * MS, True, children=[
        _node("child1-1", "package", 20 * MS, 20 * MS, False, children=[
            _node("child2-1", "package", 20 * MS, 20 * MS, True, children=[
                _node("FunctionWithOneSample", "vroom", 20 * MS, 20 * MS, False,
                      sample_count=1),
                _node("child3-1", "package", 20 * MS, 20 * MS, True, children=[
                    _node("FunctionWithManySamples", "vroom", 20 * MS, 20 * MS, False,
                          sample_count=4),
                ]),
            ]),
        ]),
    ])
    job = DetectExactFrameOptions(
        duration_threshold=16 * MS,
        sample_threshold=4,
        functions_by_package={
            "vroom": {
                "FunctionWithOneSample": Category.FILE_READ,
                "FunctionWithManySamples": Category.FILE_READ,
            },
        },
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {
        NodeKey("vroom", "FunctionWithManySamples"): NodeInfo(
            category=Category.FILE_READ,
            node=_node("FunctionWithManySamples", "vroom", 20 * MS, 20 * MS, False,
                       sample_count=4),
            stack_trace=[
                _frame("root", "package", True),
                _frame("child1-1", "package", False),
                _frame("child2-1", "package", True),
                _frame("child3-1", "package", True),
                _frame("FunctionWithManySamples", "vroom", False),
            ],
        )
    }


def test_detect_deeper_frame():
    tree = _node("root", "package", 30 * MS, 30 * MS, True, children=[
        _node("child1-1", "package", 20 * MS, 20 * MS, False, children=[
            _node("RandomFunction", "CoreFoundation", 20 * MS, 20 * MS, True, children=[
                _node("LeafFunction", "CoreFoundation", 20 * MS, 20 * MS, False),
            ]),
        ]),
    ])
    job = DetectExactFrameOptions(
        duration_threshold=16 * MS,
        functions_by_package={
            "CoreFoundation": {
                "LeafFunction": Category.FILE_READ,
                "RandomFunction": Category.FILE_READ,
            },
        },
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {
        NodeKey("CoreFoundation", "LeafFunction"): NodeInfo(
            category=Category.FILE_READ,
            node=_node("LeafFunction", "CoreFoundation", 20 * MS, 20 * MS, False),
            stack_trace=[
                _frame("root", "package", True),
                _frame("child1-1", "package", False),
                _frame("RandomFunction", "CoreFoundation", True),
                _frame("LeafFunction", "CoreFoundation", False),
            ],
        )
    }


def test_detect_first_frame():
    tree = _node("RandomFunction", "CoreFoundation", 30 * MS, 30 * MS, True, children=[
        _node("child1-1", "package", 20 * MS, 20 * MS, False),
        _node("child1-2", "package", 20 * MS, 20 * MS, False),
    ])
    job = DetectExactFrameOptions(
        duration_threshold=16 * MS,
        functions_by_package={"CoreFoundation": {"RandomFunction": Category.FILE_READ}},
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {
        NodeKey("CoreFoundation", "RandomFunction"): NodeInfo(
            category=Category.FILE_READ,
            node=_node("RandomFunction", "CoreFoundation", 30 * MS, 30 * MS, True),
            stack_trace=[_frame("RandomFunction", "CoreFoundation", True)],
        )
    }


ANDROID_NAME = (
    "android.graphics.BitmapFactory.decodeStream(java.io.InputStream, "
    "android.graphics.Rect, android.graphics.BitmapFactory$Options): android.graphics.Bitmap"
)


def test_detect_android_frame():
    tree = _node(ANDROID_NAME, "android.graphics", 30 * MS, 30 * MS, True)
    job = DetectAndroidFrameOptions(
        duration_threshold=16 * MS,
        functions_by_package={
            "android.graphics": {
                "android.graphics.BitmapFactory.decodeStream": Category.IMAGE_DECODE,
            },
        },
    )
    nodes = {}
    detect_frame_in_call_tree(tree, job, nodes)
    assert nodes == {
        NodeKey("android.graphics", ANDROID_NAME): NodeInfo(
            category=Category.IMAGE_DECODE,
            node=_node(ANDROID_NAME, "android.graphics", 30 * MS, 30 * MS, True),
            stack_trace=[_frame(ANDROID_NAME, "android.graphics", True)],
        )
    }


def test_exact_options_do_not_strip_signature():
    job = DetectExactFrameOptions(
        functions_by_package={
            "android.graphics": {
                "android.graphics.BitmapFactory.decodeStream": Category.IMAGE_DECODE,
            },
        },
    )
    assert job.check_node(_node(ANDROID_NAME, "android.graphics", MS, MS, True)) is None


def test_check_node_drops_children():
    child = _node("leaf", "pkg", MS, MS, True)
    parent = _node("read", "pkg", 2 * MS, 2 * MS, True, children=[child])
    job = DetectExactFrameOptions(functions_by_package={"pkg": {"read": Category.FILE_READ}})
    info = job.check_node(parent)
    assert info.category == Category.FILE_READ
    assert info.node.children == []
    assert parent.children == [child]


def _profile(platform, active_thread_id=1):
    return Profile(
        id="1234567890",
        project_id=1,
        platform=platform,
        transaction=Transaction(active_thread_id=active_thread_id, id="1234", name="some"),
        duration_ns=100 * MS,
    )


def test_detect_frame_creates_occurrence():
    tree = _node("root", "package", 30 * MS, 30 * MS, True, children=[
        _node("CFReadStreamRead", "CoreFoundation", 20 * MS, 20 * MS, False, sample_count=4),
    ])
    job = DetectExactFrameOptions(
        active_thread_only=True,
        duration_threshold=16 * MS,
        functions_by_package={"CoreFoundation": {"CFReadStreamRead": Category.FILE_READ}},
    )
    occurrences = detect_frame(_profile(Platform.COCOA), {1: [tree]}, job)
    assert len(occurrences) == 1
    occ = occurrences[0]
    assert occ.issue_title == "File I/O on Main Thread"
    assert occ.subtitle == "CFReadStreamRead"
    assert occ.culprit == "some"
    assert [f.function for f in occ.event.stack_trace.frames] == ["root", "CFReadStreamRead"]


def test_detect_frame_missing_active_thread():
    tree = _node("CFReadStreamRead", "CoreFoundation", 20 * MS, 20 * MS, False)
    job = DetectExactFrameOptions(
        active_thread_only=True,
        functions_by_package={"CoreFoundation": {"CFReadStreamRead": Category.FILE_READ}},
    )
    assert detect_frame(_profile(Platform.COCOA, active_thread_id=2), {1: [tree]}, job) == []


def test_detect_frame_all_threads():
    job = DetectExactFrameOptions(
        functions_by_package={"pkg": {"work": Category.SQL}},
    )
    call_trees = {
        1: [_node("other", "pkg", MS, MS, True)],
        7: [_node("work", "pkg", MS, MS, True)],
    }
    occurrences = detect_frame(_profile(Platform.COCOA, active_thread_id=1), call_trees, job)
    assert [o.subtitle for o in occurrences] == ["work"]
    assert occurrences[0].issue_title == "SQL operation on Main Thread"


@pytest.mark.parametrize(
    "name,duration,expected",
    [
        ("readFileSync", MS, ["readFileSync"]),
        ("doSomething", MS, []),
    ],
)
def test_find_node_fs(name, duration, expected):
    tree = _node(name, "node:fs", duration, duration, False)
    occurrences = find(_profile(Platform.NODE), {1: [tree]})
    assert [o.subtitle for o in occurrences] == expected


def test_find_node_source_context_any_thread():
    slow = _node("addSourceContext", "", 150 * MS, 150 * MS, True)
    fast = _node("addSourceContextToFrames", "", 50 * MS, 50 * MS, True)
    occurrences = find(_profile(Platform.NODE, active_thread_id=1), {9: [slow], 10: [fast]})
    assert [o.issue_title for o in occurrences] == ["Adding Source Context is slow"]
    assert occurrences[0].subtitle == "addSourceContext"


def test_find_cocoa_requires_sample_threshold():
    few = _node("fread", "libsystem_c.dylib", 20 * MS, 20 * MS, False, sample_count=3)
    many = _node("fread", "libsystem_c.dylib", 20 * MS, 20 * MS, False, sample_count=4)
    assert find(_profile(Platform.COCOA), {1: [few]}) == []
    occurrences = find(_profile(Platform.COCOA), {1: [many]})
    assert [o.subtitle for o in occurrences] == ["fread"]


def test_find_android_uses_java_platform():
    tree = _node(
        "java.io.FileInputStream.read(byte[]): int", "java.io", 50 * MS, 50 * MS, False
    )
    occurrences = find(_profile(Platform.ANDROID), {1: [tree]})
    assert len(occurrences) == 1
    assert occurrences[0].event.platform == Platform.JAVA
    assert occurrences[0].subtitle == "FileInputStream.read(byte[]): int"
    assert occurrences[0].type == IssueType.NONE


def test_find_unknown_platform_has_no_detectors():
    tree = _node("readFileSync", "node:fs", MS, MS, False)
    assert find(_profile(Platform.RUST), {1: [tree]}) == []