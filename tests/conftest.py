import sys
import stat
from pathlib import Path
import json
import pytest

from botocore.exceptions import ClientError

# Ensure repo root is on sys.path so `import meetscribe...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from meetscribe.config_store.probes import Probes  # noqa: E402
from meetscribe.core.errors import StorageConfigError  # noqa: E402
from meetscribe.models.schemas import AppConfig, PipelineConfig, StorageConfig  # noqa: E402

BUCKET = "recordings"
MEETING_ID = "2024-05-01/localWorld.1-会議室A/10-00-00"

SAMPLE_OBJECTS = {
    f"{MEETING_ID}/alice/10-00-05_a1.ogg": b"alice-audio",
    f"{MEETING_ID}/bob/10-00-01_b1.ogg": b"bob-audio",
    "2024-05-01/localWorld.1-会議室A/9時30分0秒/carol/9時30分2秒_c1.ogg": b"carol-audio",
    "2024-05-01/roomB/10-00-00/dave/10-00-00_d1.ogg": b"dave-audio",
    "2024-05-01/roomB/10-00-00/dave/10-20-00_d2.ogg": b"dave-audio-2",
    "2024-05-01/roomB/not-a-time/erin.ogg": b"erin-audio",
    "2024-04-30/roomC/08-15-00/frank/08-15-00_f1.ogg": b"frank-audio",
    "2024-04-30/README": b"not audio",
}

FAKE_FFMPEG = """#!/bin/sh
echo "ffmpeg version fake"
echo "  Duration: 00:00:05.00, start: 0.000000, bitrate: 64 kb/s"
for last; do :; done
printf 'RIFF' > "$last"
exit 0
"""

FAILING_FFMPEG = """#!/bin/sh
echo "Invalid data found when processing input"
exit 1
"""

FAKE_WHISPER = """#!/bin/sh
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -of) out="$2"; shift 2 ;;
    *) shift ;;
  esac
done
echo "whisper_init_from_file_with_params: loading model"
echo "[00:00:00.000 --> 00:00:02.000]   こんにちは"
echo "whisper_print_progress_callback: progress =  50%"
echo "[00:00:02.500 --> 00:00:04.000]   よろしくお願いします"
echo "whisper_print_progress_callback: progress = 100%"
cat > "$out.json" <<'JSON'
{"transcription": [
  {"timestamps": {"from": "00:00:00,000", "to": "00:00:02,000"}, "offsets": {"from": 0, "to": 2000}, "text": " こんにちは"},
  {"timestamps": {"from": "00:00:02,500", "to": "00:00:04,000"}, "offsets": {"from": 2500, "to": 4000}, "text": " よろしくお願いします"}
]}
JSON
exit 0
"""


def client_error(code: str, operation: str = "ListObjectsV2") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakePaginator:
    def __init__(self, s3: "FakeS3", page_size: int):
        self.s3 = s3
        self.page_size = page_size

    def paginate(self, **kwargs):
        token = None
        while True:
            page = self.s3.list_objects_v2(MaxKeys=self.page_size, ContinuationToken=token, **kwargs)
            yield page
            if not page.get("IsTruncated"):
                return
            token = page["NextContinuationToken"]


class FakeS3:
    """In-memory stand-in for the boto3 S3 client surface the app uses."""

    def __init__(self, objects=None, bucket: str = BUCKET, page_size: int = 2):
        self.objects = dict(objects or {})
        self.bucket = bucket
        self.page_size = page_size
        self.failures = []  # exceptions raised (in order) by the next list calls
        self.calls = []

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self, self.page_size)

    def list_objects_v2(self, Bucket, Prefix="", Delimiter=None, MaxKeys=1000, ContinuationToken=None):
        self.calls.append(("list_objects_v2", Prefix, Delimiter))
        if self.failures:
            raise self.failures.pop(0)
        if Bucket != self.bucket:
            raise client_error("NoSuchBucket")
        entries = []
        seen = set()
        for key in sorted(k for k in self.objects if k.startswith(Prefix)):
            rest = key[len(Prefix):]
            if Delimiter and Delimiter in rest:
                prefix = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if prefix not in seen:
                    seen.add(prefix)
                    entries.append(("prefix", prefix))
            else:
                entries.append(("key", key))
        start = int(ContinuationToken or 0)
        chunk = entries[start:start + MaxKeys]
        page = {
            "KeyCount": len(chunk),
            "IsTruncated": start + MaxKeys < len(entries),
        }
        contents = [{"Key": v, "Size": len(self.objects[v])} for kind, v in chunk if kind == "key"]
        prefixes = [{"Prefix": v} for kind, v in chunk if kind == "prefix"]
        if contents:
            page["Contents"] = contents
        if prefixes:
            page["CommonPrefixes"] = prefixes
        if page["IsTruncated"]:
            page["NextContinuationToken"] = str(start + MaxKeys)
        return page

    def download_file(self, Bucket, Key, Filename):
        self.calls.append(("download_file", Key))
        if Key not in self.objects:
            raise client_error("404", "HeadObject")
        Path(Filename).write_bytes(self.objects[Key])


def make_factory(fake: FakeS3):
    def factory(storage: StorageConfig):
        if not storage.is_complete:
            raise StorageConfigError("Storage config is incomplete")
        return fake

    return factory


def write_tool(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_s3():
    return FakeS3(SAMPLE_OBJECTS)


@pytest.fixture
def s3_factory(fake_s3):
    return make_factory(fake_s3)


@pytest.fixture
def probes(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return Probes(
        data_dir=str(tmp_path / "data"),
        platform="linux",
        environ={"PATH": str(tmp_path / "empty-bin"), "HOME": str(home)},
    )


@pytest.fixture
def tools(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    model = tmp_path / "models" / "ggml-large-v3.bin"
    model.parent.mkdir()
    model.write_bytes(b"model")
    return {
        "ffmpeg": write_tool(bin_dir, "ffmpeg", FAKE_FFMPEG),
        "failing_ffmpeg": write_tool(bin_dir, "ffmpeg-broken", FAILING_FFMPEG),
        "whisper": write_tool(bin_dir, "whisper-cli", FAKE_WHISPER),
        "model": model,
    }


@pytest.fixture
def app_config(tmp_path, tools):
    return AppConfig(
        storage=StorageConfig(
            url="http://127.0.0.1:9000",
            access_key="minio",
            secret_key="minio123",
            bucket=BUCKET,
        ),
        pipeline=PipelineConfig(
            binary_path=str(tools["whisper"]),
            ffmpeg_path=str(tools["ffmpeg"]),
            model_path=str(tools["model"]),
            output_dir=str(tmp_path / "out"),
            include_timestamps=False,
            include_speaker=True,
        ),
    )


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      item._api_logs = [{"title": "...", "request": ..., "response": ...}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    extras = getattr(rep, "extras", [])

    try:
        from pytest_html import extras as html_extras
    except ImportError:
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        req = entry.get("request", {})
        res = entry.get("response", {})

        html = f"""
        <div style="font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, monospace;">
          <h4 style="margin:8px 0;">{title}</h4>
          <details style="margin:6px 0;">
            <summary><b>Request</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(req)}</pre>
          </details>
          <details style="margin:6px 0;">
            <summary><b>Response</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(res)}</pre>
          </details>
        </div>
        """
        extras.append(html_extras.html(html))

    rep.extras = extras
