import json
import logging
import socket
from dataclasses import dataclass, field
from hashlib import sha256
from itertools import chain
from pathlib import Path
from queue import Empty, Queue
from selectors import EVENT_READ, DefaultSelector
from subprocess import DEVNULL, Popen, TimeoutExpired
from tempfile import gettempdir
from threading import Event, RLock, Thread
from time import monotonic
from typing import Any, Mapping, Optional, Sequence

from xdg import xdg_state_home

from ._errors import translate_error
from .exceptions import *

__all__ = [
    "NodeEngine",
]

logger = logging.getLogger(__name__)

RUNTIME_PATH = Path(__file__).parent / "runtime.js"
ACCEPT_POLL_INTERVAL = 0.1


@dataclass
class RemoteMessage:
    """
    A JSON message from the JS side
    """

    content: Any


@dataclass
class ProtocolError:
    """
    A protocol error
    """

    message: str


@dataclass
class RemoteClosed:
    """
    The JS side went away (process died or connection dropped)
    """

    reason: str


@dataclass
class Request:
    """
    A request sent to the runtime + response/exception
    """

    type: str
    payload: Mapping
    event: Event = field(default_factory=Event)
    success: Optional[bool] = None
    result: Optional[Any] = None
    error: Optional[Exception] = None

    def resolve(self, result: Any) -> None:
        """
        Marks the request as successful and wakes up the waiting thread

        Parameters
        ----------
        result
            The (still encoded) result sent by the runtime
        """

        self.success = True
        self.result = result
        self.event.set()

    def fail(self, error: Exception) -> None:
        """
        Marks the request as failed and wakes up the waiting thread, which
        will raise the error

        Parameters
        ----------
        error
            The exception to raise in the waiting thread
        """

        self.success = False
        self.error = error
        self.event.set()


class Finish:
    """
    A finish request, that closes the engine
    """


class NodeEngine:
    """
    Manages one Node process running the bridge runtime, and the
    communication with it. Requests are pushed into a queue, dispatched to
    the remote side by the events thread, and the calling thread waits until
    the matching response comes back.

    The engine can be started once and stopped once. Once stopped, every
    pending or new request fails with ContextClosedError.
    """

    def __init__(
        self,
        node_bin: str = "node",
        debug: bool = False,
        connect_timeout: float = 10.0,
        env_dir_candidates: Optional[Sequence[Path]] = None,
    ):
        self.node_bin = node_bin
        self.debug = debug
        self.connect_timeout = connect_timeout
        self.env_dir_candidates = env_dir_candidates
        self._env_dir = None
        self._listen_socket: Optional[socket.socket] = None
        self._remote_conn: Optional[socket.socket] = None
        self._remote_gone: Optional[str] = None
        self._remote_proc: Optional[Popen] = None
        self._events = Queue(1000)
        self._remote_thread: Optional[Thread] = None
        self._events_thread: Optional[Thread] = None
        self._pending = {}
        self._lock = RLock()
        self._started = False
        self._stopped = False

    @property
    def runtime_signature(self) -> str:
        """
        We create a signature for the runtime, so that we can reuse the
        environment if the runtime is the same (but create new one otherwise)
        """

        return sha256(RUNTIME_PATH.read_bytes()).hexdigest()

    @property
    def stopped(self) -> bool:
        """
        True once the engine was stopped, either explicitly or because the
        Node process went away
        """

        return self._stopped or self._remote_gone is not None

    def __enter__(self):
        """
        Starts the engine if used as context manager
        """

        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Ensures the engine is stopped if used as context manager
        """

        self.stop()

    def _try_env_candidate(self, path: Path):
        """
        Try to create the env dir, and return True if it worked, False
        otherwise. Several candidates are attempted this way by
        _ensure_env_dir()

        Parameters
        ----------
        path
            The path to try to create
        """

        try:
            path.mkdir(parents=True, exist_ok=True)
        except (PermissionError, NotADirectoryError, FileExistsError):
            return False
        else:
            return True

    def _ensure_env_dir(self) -> Path:
        """
        Figures an environment directory, and creates it if it does not yet
        exist. The directory is created in the XDG state directory if possible,
        otherwise in a temporary directory. If none of these work, I have no
        idea what to do, so I raise an exception.
        """

        candidates = self.env_dir_candidates

        if candidates is None:
            candidates = [xdg_state_home(), Path(gettempdir())]

        for candidate in candidates:
            full_path = (
                Path(candidate) / "jsbridge" / "runtimes" / self.runtime_signature
            )

            if self._try_env_candidate(full_path):
                return full_path

        raise EngineError("Could not find/create env dir")

    def ensure_env_dir(self, force: bool = False) -> Path:
        """
        Ensures the environment directory exists. The result is cached, unless
        force is True in which case the guessing will happen again.

        Parameters
        ----------
        force
            If True, the directory is always "re-guessed"
        """

        if self._env_dir is None or force:
            self._env_dir = self._ensure_env_dir()

        return self._env_dir

    def create_env(self) -> Path:
        """
        Creates the Node environment, which is a directory containing the
        runtime and a package.json telling Node to load it as a module.
        """

        root = self.ensure_env_dir()

        self._write_package_json(root)
        self._write_runtime(root)

        return root

    def _write_package_json(self, root: Path):
        """
        Writes the package.json file in the environment directory, declaring
        the runtime as an ES module.

        Parameters
        ----------
        root
            The environment directory
        """

        package = {
            "name": "jsbridge-runtime",
            "private": True,
            "type": "module",
        }

        with open(root / "package.json", "w") as f:
            json.dump(package, f, indent=4)

    def _write_runtime(self, root: Path):
        """
        Writes the runtime file in the environment directory. This is the file
        that will be executed by Node, and that will communicate with the
        Python side.

        Parameters
        ----------
        root
            The environment directory
        """

        with open(root / "index.js", "w", encoding="utf-8") as o, open(
            RUNTIME_PATH, "r", encoding="utf-8"
        ) as i:
            while buf := i.read(1024**2):
                o.write(buf)

    def _run_events(self):
        """
        Runs the events loop, which is responsible for reading the events
        from the queue (fed both from remote process and from the local
        process) and dispatching them to the appropriate callbacks.
        """

        while evt := self._events.get():
            match evt:
                case Finish():
                    self._fail_pending(ContextClosedError("engine was stopped"))
                    break
                case RemoteClosed(reason=reason):
                    logger.info("Node runtime went away: %s", reason)
                    self._remote_gone = reason
                    self._fail_pending(ContextClosedError(reason))
                    self.stop()
                case Request() if self._remote_gone is not None:
                    evt.fail(ContextClosedError(self._remote_gone))
                case Request(type=type_, payload=payload):
                    self._pending[str(id(evt))] = evt

                    try:
                        self._send_message(
                            dict(type=type_, event_id=str(id(evt)), payload=payload)
                        )
                    except OSError as e:
                        self._pending.pop(str(id(evt)))
                        evt.fail(ContextClosedError(f"could not reach engine: {e}"))
                case RemoteMessage(
                    content={
                        "type": "result",
                        "payload": {"result": result},
                        "event_id": event_id,
                    }
                ):
                    if event_id in self._pending:
                        self._pending.pop(event_id).resolve(result)
                case RemoteMessage(
                    content={
                        "type": "error",
                        "payload": {"error": error},
                        "event_id": event_id,
                    }
                ):
                    if event_id in self._pending:
                        self._pending.pop(event_id).fail(translate_error(error))
                case RemoteMessage(
                    content={
                        "type": "protocol_error",
                        "payload": {"message": message},
                        "event_id": event_id,
                    }
                ):
                    if event_id in self._pending:
                        self._pending.pop(event_id).fail(EngineError(message))
                case ProtocolError(message=message):
                    logger.warning("Protocol error: %s", message)
                    self._fail_pending(EngineError(message))
                case _:
                    logger.warning("Unexpected event: %r", evt)

        self._drain_events()

    def _fail_pending(self, error: Exception):
        """
        Fails all the requests that are waiting for an answer

        Parameters
        ----------
        error
            The error that the waiting threads will receive
        """

        pending = list(self._pending.values())
        self._pending.clear()

        for request in pending:
            request.fail(error)

    def _drain_events(self):
        """
        Once the loop is over, whatever is left in the queue will never be
        processed. Requests are failed so that nobody waits forever.
        """

        while True:
            try:
                evt = self._events.get_nowait()
            except Empty:
                break

            if isinstance(evt, Request):
                evt.fail(ContextClosedError("engine was stopped"))

    def _handle_line(self, b_line: bytes):
        """
        Decodes one line sent by the runtime and feeds it to the events
        queue. Lines that cannot be decoded (including JSON nested deeper
        than Python can parse) become a protocol error, which fails the
        request waiting for them.

        Parameters
        ----------
        b_line
            The raw line, without its trailing newline
        """

        if not b_line.strip():
            return

        try:
            self._events.put(RemoteMessage(json.loads(b_line.decode("utf-8"))))
        except (ValueError, UnicodeError, RecursionError):
            self._events.put(ProtocolError("Could not decode Node output"))

    def _run_listen_remote(self):
        """
        Listens to the remote process, and feeds the events queue with the
        messages it receives. This is done in a separate thread, so that
        the events loop can run in parallel.

        Notes
        -----
        Messages are JSON separated by newlines, so we need to read the socket
        until we have a full message, and then we can parse it and feed the
        queue.

        We're using a selector in order to be able to poll every second the
        "liveness" of the engine (as opposed to using a blocking read, which
        deals with timeouts in a weird way). When the process dies or the
        connection is dropped, the events loop is told so that it can fail
        the pending requests.
        """

        buf = []
        sel = DefaultSelector()
        sel.register(self._remote_conn, EVENT_READ)

        try:
            while not self._stopped:
                sel.select(1)

                if (code := self._remote_proc.poll()) is not None:
                    self._events.put(RemoteClosed(f"Node exited with code {code}"))
                    return

                try:
                    while chunk := self._remote_conn.recv(1024**2):
                        bits = chunk.split(b"\n")

                        if len(bits) == 1:
                            buf.append(chunk)
                        else:
                            first_line = b"".join(chain(buf, bits[:1]))
                            self._handle_line(first_line)

                            for line in bits[1:-1]:
                                self._handle_line(line)

                            buf.clear()
                            buf.append(bits[-1])
                    else:
                        self._events.put(RemoteClosed("connection closed by Node"))
                        return
                except BlockingIOError:
                    pass
        except Exception as e:
            match (e):
                case OSError(errno=9) | ValueError() if self._stopped:
                    pass
                case OSError(errno=9):
                    self._events.put(RemoteClosed("connection closed"))
                case _:
                    self._events.put(RemoteClosed(f"connection failed: {e}"))
                    raise
        finally:
            sel.close()

    def _send_message(self, data):
        """
        Sends a message to the remote process. This runs in the events loop's
        thread.

        Parameters
        ----------
        data
            The data to send
        """

        self._remote_conn.sendall(
            json.dumps(data, ensure_ascii=True, allow_nan=False).encode("ascii")
            + b"\n"
        )

    def start(self):
        """
        Starts the engine. This will start the remote process and wait for it
        to connect back through the socket, then start the reading thread and
        the events loop.
        """

        with self._lock:
            if self._started:
                raise EngineError("engine was already started")

            self._started = True

        root = self.create_env()

        self._listen_socket = socket.create_server(
            address=("::1", 0),
            family=socket.AF_INET6,
        )
        _, port, _, _ = self._listen_socket.getsockname()

        extra = {}

        if not self.debug:
            extra.update(
                stdin=DEVNULL,
                stdout=DEVNULL,
                stderr=DEVNULL,
            )

        logger.debug("Starting %s in %s (port %s)", self.node_bin, root, port)

        try:
            self._remote_proc = Popen(
                args=[self.node_bin, "./index.js", f"{port}"],
                cwd=root,
                **extra,
            )
        except OSError as e:
            self._listen_socket.close()
            self._stopped = True
            raise EngineError(f"Could not start {self.node_bin}: {e}") from e

        try:
            self._remote_conn = self._accept_remote()
        except (OSError, EngineError) as e:
            self.stop()
            raise EngineError(f"Node runtime did not connect: {e}") from e

        self._remote_conn.setblocking(False)

        self._remote_thread = Thread(target=self._run_listen_remote, daemon=True)
        self._events_thread = Thread(target=self._run_events, daemon=True)

        self._events_thread.start()
        self._remote_thread.start()

    def _accept_remote(self) -> socket.socket:
        """
        Waits for the runtime to connect back. The process is checked between
        short accept attempts, so that a runtime which dies at startup is
        reported right away instead of after the whole connect_timeout.
        """

        deadline = monotonic() + self.connect_timeout
        self._listen_socket.settimeout(ACCEPT_POLL_INTERVAL)

        while True:
            try:
                conn, _ = self._listen_socket.accept()
            except socket.timeout:
                pass
            else:
                return conn

            if (code := self._remote_proc.poll()) is not None:
                raise EngineError(f"Node exited with code {code}")

            if monotonic() >= deadline:
                raise EngineError(
                    f"no connection after {self.connect_timeout} seconds"
                )

    def stop(self):
        """
        Stops the engine. This will stop the events loop, disconnect the
        socket and terminate the remote process. Calling it more than once
        does nothing.
        """

        with self._lock:
            if self._stopped:
                return

            self._stopped = True
            self._events.put(Finish())

        logger.debug("Stopping engine")

        if self._remote_conn:
            self._remote_conn.close()

        if self._listen_socket:
            self._listen_socket.close()

        if self._remote_proc:
            self._terminate_process()

    def _terminate_process(self):
        """
        Asks Node to stop, and kills it if it does not listen
        """

        self._remote_proc.terminate()

        try:
            self._remote_proc.wait(1)
        except TimeoutExpired:
            logger.warning("Node runtime did not stop, killing it")
            self._remote_proc.kill()
            self._remote_proc.wait()

    def request(self, type_: str, payload: Mapping) -> Any:
        """
        Synchronously sends a request to the runtime and returns the (still
        encoded) result.

        It will block the thread until the result is available.

        Parameters
        ----------
        type_
            Type of the request (eval, get_prop, call_prop)
        payload
            Content of the request
        """

        msg = Request(type_, payload)

        with self._lock:
            if self._stopped or not self._started:
                raise ContextClosedError("engine is not running")

            self._events.put(msg)

        msg.event.wait()

        if msg.success:
            return msg.result
        else:
            raise msg.error
