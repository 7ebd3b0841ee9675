"""Detection of known slow functions in profile call trees."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Union

from vroom.frame import Frame
from vroom.frame_drop import find_frame_drop_cause
from vroom.nodetree import Node
from vroom.occurrence import Category, NodeInfo, Occurrence, Profile, new_occurrence
from vroom.platform import Platform

logger = logging.getLogger(__name__)

_MILLISECOND_NS = 1_000_000

FunctionsByPackage = Dict[str, Dict[str, Category]]


@dataclass(frozen=True)
class NodeKey:
    """Identifies a detected function by its package and name."""

    package: str
    function: str


@dataclass
class _FrameOptions:
    active_thread_only: bool = False
    duration_threshold: int = 0
    """Minimum node duration in nanoseconds."""
    functions_by_package: FunctionsByPackage = field(default_factory=dict)
    sample_threshold: int = 0
    """Minimum number of samples in which the frame must be found."""

    def _match(self, n: Node, name: str) -> Optional[NodeInfo]:
        functions = self.functions_by_package.get(n.package)
        if functions is None:
            logger.debug("package doesn't exist: %s", n.package)
            return None
        category = functions.get(name)
        if category is None:
            logger.debug("function doesn't exist: %s", name)
            return None
        if n.duration_ns < self.duration_threshold:
            logger.debug("duration is too small: %d", n.duration_ns)
            return None
        if n.sample_count < self.sample_threshold:
            logger.debug("sample count is too low: %d", n.sample_count)
            return None
        return NodeInfo(category=category, node=replace(n, children=[]))

    def check_node(self, n: Node) -> Optional[NodeInfo]:
        raise NotImplementedError


@dataclass
class DetectExactFrameOptions(_FrameOptions):
    """Matches nodes whose package and name are listed exactly."""

    def check_node(self, n: Node) -> Optional[NodeInfo]:
        return self._match(n, n.name)


@dataclass
class DetectAndroidFrameOptions(_FrameOptions):
    """Matches Android nodes on their name without the signature."""

    def check_node(self, n: Node) -> Optional[NodeInfo]:
        # Android names carry the deobfuscated signature; match on the name only.
        return self._match(n, n.name.split("(", 1)[0])


DetectFrameOptions = Union[DetectExactFrameOptions, DetectAndroidFrameOptions]

_C = Category

_NODE_FS_FUNCTIONS = (
    "accessSync", "appendFileSync", "chmodSync", "chownSync", "closeSync",
    "copyFileSync", "cpSync", "existsSync", "fchmodSync", "fchownSync",
    "fdatasyncSync", "fstatSync", "fsyncSync", "ftruncateSync", "futimesSync",
    "lchmodSync", "lchownSync", "linkSync", "lstatSync", "lutimesSync",
    "mkdirSync", "mkdtempSync", "openSync", "opendirSync", "readFileSync",
    "readSync", "readdirSync", "readlinkSync", "readvSync", "realpathSync",
    "realpathSync.native", "renameSync", "rmSync", "rmdirSync", "statSync",
    "symlinkSync", "truncateSync", "unlinkSync", "utimesSync", "writeFileSync",
    "writeSync", "writevSync",
)

_SQLITE_FUNCTIONS = (
    "sqlite3_blob_read", "sqlite3_column_blob", "sqlite3_column_bytes",
    "sqlite3_column_double", "sqlite3_column_int", "sqlite3_column_int64",
    "sqlite3_column_text", "sqlite3_column_text16", "sqlite3_column_value",
    "sqlite3_step", "sqlite3_value_blob", "sqlite3_value_double",
    "sqlite3_value_int", "sqlite3_value_int64", "sqlite3_value_pointer",
    "sqlite3_value_text", "sqlite3_value_text16", "sqlite3_value_text16be",
    "sqlite3_value_text16le",
)

_COMPRESSION_FUNCTIONS = (
    "BrotliDecoderDecompress", "brotli_encode_buffer", "lz4_decode",
    "lz4_decode_asm", "lzfseDecode", "lzfseEncode", "lzfseStreamDecode",
    "lzfseStreamEncode", "lzvnDecode", "lzvnEncode", "lzvnStreamDecode",
    "lzvnStreamEncode", "zlibDecodeBuffer", "zlib_decode_buffer",
    "zlib_encode_buffer",
)

_DETECT_FRAME_JOBS: Dict[str, List[DetectFrameOptions]] = {
    Platform.NODE.value: [
        DetectExactFrameOptions(
            active_thread_only=True,
            functions_by_package={
                "node:fs": {name: _C.FILE_READ for name in _NODE_FS_FUNCTIONS},
            },
        ),
        DetectExactFrameOptions(
            duration_threshold=100 * _MILLISECOND_NS,
            functions_by_package={
                "": {
                    "addSourceContext": _C.SOURCE_CONTEXT,
                    "addSourceContextToFrames": _C.SOURCE_CONTEXT,
                },
            },
        ),
    ],
    Platform.COCOA.value: [
        DetectExactFrameOptions(
            active_thread_only=True,
            duration_threshold=16 * _MILLISECOND_NS,
            sample_threshold=4,
            functions_by_package={
                "AppleJPEG": {
                    "applejpeg_decode_image_all": _C.IMAGE_DECODE,
                },
                "AttributeGraph": {
                    "AG::LayoutDescriptor::make_layout(AG::swift::metadata const*, "
                    "AGComparisonMode, AG::LayoutDescriptor::HeapMode)": _C.VIEW_LAYOUT,
                },
                "CoreData": {
                    "-[NSManagedObjectContext countForFetchRequest:error:]": _C.CORE_DATA_READ,
                    "-[NSManagedObjectContext executeFetchRequest:error:]": _C.CORE_DATA_READ,
                    "-[NSManagedObjectContext executeRequest:error:]": _C.CORE_DATA_READ,
                    "-[NSManagedObjectContext mergeChangesFromContextDidSaveNotification:]": (
                        _C.CORE_DATA_MERGE
                    ),
                    "-[NSManagedObjectContext obtainPermanentIDsForObjects:error:]": (
                        _C.CORE_DATA_WRITE
                    ),
                    "-[NSManagedObjectContext performBlockAndWait:]": _C.CORE_DATA_BLOCK,
                    "-[NSManagedObjectContext save:]": _C.CORE_DATA_WRITE,
                    "NSManagedObjectContext.fetch<A>(NSFetchRequest<A>)": _C.CORE_DATA_READ,
                },
                "CoreFoundation": {
                    "CFReadStreamRead": _C.FILE_READ,
                    "CFURLConnectionSendSynchronousRequest": _C.HTTP,
                    "CFURLCreateData": _C.FILE_READ,
                    "CFURLCreateDataAndPropertiesFromResource": _C.FILE_READ,
                    "CFURLWriteDataAndPropertiesToResource": _C.FILE_WRITE,
                    "CFWriteStreamWrite": _C.FILE_WRITE,
                },
                "CoreML": {
                    "+[MLModel modelWithContentsOfURL:configuration:error:]": _C.ML_MODEL_LOAD,
                    "-[MLNeuralNetworkEngine predictionFromFeatures:options:error:]": (
                        _C.ML_MODEL_INFERENCE
                    ),
                },
                "Foundation": {
                    "+[NSJSONSerialization JSONObjectWithStream:options:error:]": _C.JSON_DECODE,
                    "+[NSJSONSerialization writeJSONObject:toStream:options:error:]": (
                        _C.JSON_ENCODE
                    ),
                    "+[NSRegularExpression regularExpressionWithPattern:options:error:]": _C.REGEX,
                    "-[NSRegularExpression initWithPattern:options:error:]": _C.REGEX,
                    "-[NSRegularExpression(NSMatching) "
                    "enumerateMatchesInString:options:range:usingBlock:]": _C.REGEX,
                    "Regex.firstMatch(in: String)": _C.REGEX,
                    "Regex.wholeMatch(in: String)": _C.REGEX,
                    "Regex.prefixMatch(in: String)": _C.REGEX,
                    "+[NSURLConnection sendSynchronousRequest:returningResponse:error:]": _C.HTTP,
                    "-[NSData(NSData) initWithContentsOfMappedFile:]": _C.FILE_READ,
                    "-[NSData(NSData) initWithContentsOfURL:]": _C.FILE_READ,
                    "-[NSData(NSData) initWithContentsOfURL:options:maxLength:error:]": (
                        _C.FILE_READ
                    ),
                    "-[NSData(NSData) writeToFile:atomically:]": _C.FILE_WRITE,
                    "-[NSData(NSData) writeToFile:atomically:error:]": _C.FILE_WRITE,
                    "-[NSData(NSData) writeToFile:options:error:]": _C.FILE_WRITE,
                    "-[NSData(NSData) writeToURL:atomically:]": _C.FILE_WRITE,
                    "-[NSData(NSData) writeToURL:options:error:]": _C.FILE_WRITE,
                    "-[NSFileManager contentsAtPath:]": _C.FILE_READ,
                    "-[NSFileManager createFileAtPath:contents:attributes:]": _C.FILE_WRITE,
                    "-[NSISEngine performModifications:withUnsatisfiableConstraintsHandler:]": (
                        _C.VIEW_LAYOUT
                    ),
                    "@nonobjc NSData.init(contentsOf: URL, options: NSDataReadingOptions)": (
                        _C.FILE_READ
                    ),
                    "Data.init(contentsOf: __shared URL, options: NSDataReadingOptions)": (
                        _C.FILE_READ
                    ),
                    "JSONDecoder.decode<A>(_: A.Type, from: Any)": _C.JSON_DECODE,
                    "JSONDecoder.decode<A>(_: A.Type, from: Data)": _C.JSON_DECODE,
                    "JSONDecoder.decode<A>(_: A.Type, jsonData: Data, logErrors: Bool)": (
                        _C.JSON_DECODE
                    ),
                    "-[_NSJSONReader parseData:options:error:]": _C.JSON_ENCODE,
                    "JSONEncoder.encode<A>(A)": _C.JSON_ENCODE,
                    "NSFileManager.contents(atURL: URL)": _C.FILE_READ,
                },
                "ImageIO": {
                    "DecodeImageData": _C.IMAGE_DECODE,
                    "DecodeImageStream": _C.IMAGE_DECODE,
                    "GIFReadPlugin::DoDecodeImageData(IIOImageReadSession*, GlobalGIFInfo*, "
                    "ReadPluginData const&, GIFPluginData const&, unsigned char*, "
                    "unsigned long, std::__1::shared_ptr<GIFBufferInfo>, long*)": (
                        _C.IMAGE_DECODE
                    ),
                    "IIOImageProviderInfo::CopyImageBlockSetWithOptions(void*, "
                    "CGImageProvider*, CGRect, CGSize, __CFDictionary const*)": _C.IMAGE_DECODE,
                    "LZWDecode": _C.IMAGE_DECODE,
                    "NeXTDecode": _C.IMAGE_DECODE,
                    "PNGReadPlugin::DecodeFrameStandard(IIOImageReadSession*, "
                    "ReadPluginData const&, PNGPluginData const&, "
                    "IIODecodeFrameParams&)": _C.IMAGE_DECODE,
                    "VP8Decode": _C.IMAGE_DECODE,
                    "VP8DecodeMB": _C.IMAGE_DECODE,
                    "WebPDecode": _C.IMAGE_DECODE,
                    "jpeg_huff_decode": _C.IMAGE_DECODE,
                },
                "libcompression.dylib": {
                    name: _C.COMPRESSION for name in _COMPRESSION_FUNCTIONS
                },
                "libsqlite3.dylib": {name: _C.SQL for name in _SQLITE_FUNCTIONS},
                "libswiftCoreData.dylib": {
                    "NSManagedObjectContext.count<A>(for: NSFetchRequest<A>)": _C.CORE_DATA_READ,
                    "NSManagedObjectContext.fetch<A>(NSFetchRequest<A>)": _C.CORE_DATA_READ,
                    "NSManagedObjectContext.perform<A>(schedule: "
                    "NSManagedObjectContext.ScheduledTaskType, _: ())": _C.CORE_DATA_BLOCK,
                },
                "libswiftFoundation.dylib": {
                    "__JSONDecoder.decode<A>(A.Type)": _C.JSON_DECODE,
                    "__JSONEncoder.encode<A>(A)": _C.JSON_ENCODE,
                },
                "libsystem_c.dylib": {
                    "__fread": _C.FILE_READ,
                    "fread": _C.FILE_READ,
                },
                "libxpc.dylib": {
                    "xpc_connection_send_message_with_reply_sync": _C.XPC,
                },
                "SwiftUI": {
                    "UnaryLayoutEngine.sizeThatFits(_ProposedSize)": _C.VIEW_LAYOUT,
                    "ViewRendererHost.render(interval: Double, updateDisplayList: Bool)": (
                        _C.VIEW_RENDER
                    ),
                    "ViewRendererHost.updateViewGraph<A>(body: (ViewGraph))": _C.VIEW_UPDATE,
                },
                "UIKit": {
                    "-[_UIPathLazyImageAsset imageWithConfiguration:]": _C.IMAGE_DECODE,
                    "-[UINib instantiateWithOwner:options:]": _C.VIEW_INFLATION,
                },
            },
        ),
    ],
    Platform.ANDROID.value: [
        DetectAndroidFrameOptions(
            active_thread_only=True,
            duration_threshold=40 * _MILLISECOND_NS,
            functions_by_package={
                "com.google.gson": {
                    "com.google.gson.Gson.fromJson": _C.JSON_DECODE,
                    "com.google.gson.Gson.toJson": _C.JSON_ENCODE,
                    "com.google.gson.Gson.toJsonTree": _C.JSON_ENCODE,
                },
                "org.json": {
                    "org.json.JSONArray.get": _C.JSON_DECODE,
                    "org.json.JSONArray.opt": _C.JSON_DECODE,
                    "org.json.JSONArray.writeTo": _C.JSON_ENCODE,
                    "org.json.JSONObject.checkName": _C.JSON_DECODE,
                    "org.json.JSONObject.get": _C.JSON_DECODE,
                    "org.json.JSONObject.opt": _C.JSON_DECODE,
                    "org.json.JSONObject.put": _C.JSON_ENCODE,
                    "org.json.JSONObject.putOpt": _C.JSON_ENCODE,
                    "org.json.JSONObject.remove": _C.JSON_ENCODE,
                    "org.json.JSONObject.writeTo": _C.JSON_ENCODE,
                },
                "android.content.res": {
                    "android.content.res.AssetManager.open": _C.FILE_READ,
                    "android.content.res.AssetManager.openFd": _C.FILE_READ,
                },
                "java.io": {
                    "java.io.File.canExecute": _C.FILE_READ,
                    "java.io.File.canRead": _C.FILE_READ,
                    "java.io.File.canWrite": _C.FILE_READ,
                    "java.io.File.createNewFile": _C.FILE_WRITE,
                    "java.io.File.createTempFile": _C.FILE_WRITE,
                    "java.io.File.delete": _C.FILE_WRITE,
                    "java.io.File.exists": _C.FILE_READ,
                    "java.io.File.length": _C.FILE_READ,
                    "java.io.File.mkdir": _C.FILE_WRITE,
                    "java.io.File.mkdirs": _C.FILE_WRITE,
                    "java.io.File.renameTo": _C.FILE_WRITE,
                    "java.io.FileInputStream.open": _C.FILE_READ,
                    "java.io.FileInputStream.read": _C.FILE_READ,
                    "java.io.FileOutputStream.open": _C.FILE_READ,
                    "java.io.FileOutputStream.write": _C.FILE_WRITE,
                    "java.io.RandomAccessFile.readBytes": _C.FILE_READ,
                    "java.io.RandomAccessFile.writeBytes": _C.FILE_WRITE,
                },
                "okio": {
                    "okio.Buffer.read": _C.FILE_READ,
                    "okio.Buffer.readByte": _C.FILE_READ,
                    "okio.Buffer.write": _C.FILE_WRITE,
                    "okio.Buffer.writeAll": _C.FILE_WRITE,
                },
                "android.graphics": {
                    "android.graphics.BitmapFactory.decodeByteArray": _C.IMAGE_DECODE,
                    "android.graphics.BitmapFactory.decodeFile": _C.IMAGE_DECODE,
                    "android.graphics.BitmapFactory.decodeFileDescriptor": _C.IMAGE_DECODE,
                    "android.graphics.BitmapFactory.decodeStream": _C.IMAGE_DECODE,
                },
                "android.database.sqlite": {
                    "android.database.sqlite.SQLiteDatabase.insertWithOnConflict": _C.SQL,
                    "android.database.sqlite.SQLiteDatabase.open": _C.SQL,
                    "android.database.sqlite.SQLiteDatabase.query": _C.SQL,
                    "android.database.sqlite.SQLiteDatabase.rawQueryWithFactory": _C.SQL,
                    "android.database.sqlite.SQLiteStatement.execute": _C.SQL,
                    "android.database.sqlite.SQLiteStatement.executeInsert": _C.SQL,
                    "android.database.sqlite.SQLiteStatement.executeUpdateDelete": _C.SQL,
                    "android.database.sqlite.SQLiteStatement.simpleQueryForLong": _C.SQL,
                },
                "androidx.room": {
                    "androidx.room.RoomDatabase.query": _C.SQL,
                },
                "java.util.zip": {
                    "java.util.zip.Deflater.deflate": _C.COMPRESSION,
                    "java.util.zip.Deflater.deflateBytes": _C.COMPRESSION,
                    "java.util.zip.DeflaterOutputStream.write": _C.COMPRESSION,
                    "java.util.zip.GZIPInputStream.read": _C.COMPRESSION,
                    "java.util.zip.GZIPOutputStream.write": _C.COMPRESSION,
                    "java.util.zip.Inflater.inflate": _C.COMPRESSION,
                    "java.util.zip.Inflater.inflateBytes": _C.COMPRESSION,
                },
                "java.util": {
                    "java.util.Base64$Decoder.decode": _C.BASE64_DECODE,
                    "java.util.Base64$Decoder.decode0": _C.BASE64_DECODE,
                },
                "java.util.regex": {
                    "java.util.regex.Matcher.matches": _C.REGEX,
                    "java.util.regex.Matcher.find": _C.REGEX,
                    "java.util.regex.Matcher.lookingAt": _C.REGEX,
                },
                "kotlinx.coroutines": {
                    "kotlinx.coroutines.AwaitAll.await": _C.THREAD_WAIT,
                    "kotlinx.coroutines.AwaitKt.awaitAll": _C.THREAD_WAIT,
                    "kotlinx.coroutines.BlockingCoroutine.joinBlocking": _C.THREAD_WAIT,
                    "kotlinx.coroutines.JobSupport.join": _C.THREAD_WAIT,
                    "kotlinx.coroutines.JobSupport.joinSuspend": _C.THREAD_WAIT,
                },
            },
        ),
    ],
}


def _platform_value(p: Union[Platform, str]) -> str:
    return p.value if isinstance(p, Platform) else p


def _detect_in_node(
    n: Node,
    options: DetectFrameOptions,
    nodes: Dict[NodeKey, NodeInfo],
    stack: List[Frame],
) -> Optional[NodeInfo]:
    stack.append(copy.deepcopy(n.to_frame()))
    try:
        for child in n.children:
            found = _detect_in_node(child, options, nodes, stack)
            if found is not None:
                return found
        info = options.check_node(n)
        if info is not None:
            key = NodeKey(package=info.node.package, function=info.node.name)
            if key not in nodes:
                info.stack_trace = list(stack)
                nodes[key] = info
        return info
    finally:
        stack.pop()


def detect_frame_in_call_tree(
    n: Node,
    options: DetectFrameOptions,
    nodes: Dict[NodeKey, NodeInfo],
) -> None:
    """Record into nodes the deepest matching node of each branch of the tree."""
    _detect_in_node(n, options, nodes, [])


def detect_frame(
    profile: Profile,
    call_trees_per_thread_id: Mapping[int, Sequence[Node]],
    options: DetectFrameOptions,
) -> List[Occurrence]:
    """Return an occurrence for each function matched by options in the call trees."""
    nodes: Dict[NodeKey, NodeInfo] = {}
    if options.active_thread_only:
        active = profile.transaction.active_thread_id
        call_trees = call_trees_per_thread_id.get(active)
        if call_trees is None:
            logger.debug("call tree for active thread ID doesn't exist: %d", active)
            return []
        for root in call_trees:
            detect_frame_in_call_tree(root, options, nodes)
    else:
        for call_trees in call_trees_per_thread_id.values():
            for root in call_trees:
                detect_frame_in_call_tree(root, options, nodes)
    return [new_occurrence(profile, info) for info in nodes.values()]


def find(
    profile: Profile,
    call_trees: Mapping[int, Sequence[Node]],
) -> List[Occurrence]:
    """Run every detector for the profile's platform, then the frame drop search."""
    occurrences: List[Occurrence] = []
    for options in _DETECT_FRAME_JOBS.get(_platform_value(profile.platform), []):
        occurrences.extend(detect_frame(profile, call_trees, options))
    occurrences.extend(find_frame_drop_cause(profile, call_trees))
    return occurrences