import json
from shutil import which
from time import monotonic

from pytest import raises, skip

from jsbridge import NodeEngine
from jsbridge._engine import Finish, ProtocolError, Request
from jsbridge.exceptions import *


def test_create_env(tmp_path):
    ne = NodeEngine(env_dir_candidates=[tmp_path])
    root = ne.create_env()

    assert root == tmp_path / "jsbridge" / "runtimes" / ne.runtime_signature
    assert json.loads((root / "package.json").read_text())["type"] == "module"
    assert (root / "index.js").read_text(encoding="utf-8").startswith("import net")


def test_env_dir_fallback(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    ne = NodeEngine(env_dir_candidates=[blocker, tmp_path / "ok"])
    assert ne.ensure_env_dir().is_relative_to(tmp_path / "ok")


def test_env_dir_is_cached(tmp_path):
    ne = NodeEngine(env_dir_candidates=[tmp_path])
    assert ne.ensure_env_dir() is ne.ensure_env_dir()
    assert ne.ensure_env_dir(force=True) == ne.ensure_env_dir()


def test_fail_env_dir(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    ne = NodeEngine(env_dir_candidates=[blocker])

    with raises(EngineError):
        ne.create_env()


def test_request_before_start():
    with raises(ContextClosedError):
        NodeEngine().request("eval", dict(code="1", filename="x", convert=True))


def test_undecodable_line_fails_request():
    ne = NodeEngine()
    ne._handle_line(b"[" * 100000 + b"]" * 100000)
    ne._handle_line(b"\xff")

    assert isinstance(ne._events.get_nowait(), ProtocolError)
    assert isinstance(ne._events.get_nowait(), ProtocolError)


def test_protocol_error_fails_pending_request():
    ne = NodeEngine()
    request = Request("eval", {})
    ne._pending["1"] = request

    ne._events.put(ProtocolError("Could not decode Node output"))
    ne._events.put(Finish())
    ne._run_events()

    assert request.event.is_set()
    assert type(request.error) is EngineError


def test_runtime_dying_at_startup(tmp_path):
    false_bin = which("false")

    if false_bin is None:
        skip("no false binary")

    ne = NodeEngine(
        node_bin=false_bin, connect_timeout=30, env_dir_candidates=[tmp_path]
    )
    start = monotonic()

    with raises(EngineError, match="exited"):
        ne.start()

    assert monotonic() - start < 10
    assert ne.stopped
