"""Privileged shell gateway.

Every privileged operation of the engine goes through :class:`RootShell`. A
command is handed to a transport (``su -c`` on the device, ``adb shell`` from a
workstation, or plain ``sh -c`` when already privileged), its stdout is streamed
line by line to an optional callback and accumulated into a
:class:`ShellResult`. The gateway never raises for command failures; callers
check ``ShellResult.success``.
"""

import shlex
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import IO, Callable, Iterator, List, Optional

from ..config import ShellConfig, ShellMode
from ..context import EngineContext
from ..errors import MissingBinaryError, RootAccessError
from ..util.logging import get_logger
from .device import ADBDevice

logger = get_logger(__name__)

LineCallback = Callable[[str], None]


@dataclass
class ShellResult:
    """Outcome of one shell invocation."""

    success: bool
    out: List[str] = field(default_factory=list)
    err: List[str] = field(default_factory=list)
    code: int = 0

    @property
    def text(self) -> str:
        return "\n".join(self.out)

    @property
    def first_line(self) -> str:
        return self.out[0].strip() if self.out else ""


class ShellTransport:
    """Turns a shell command line into an argument vector."""

    def argv(self, command: str) -> List[str]:
        raise NotImplementedError


class SuTransport(ShellTransport):
    """Escalate through ``su -c`` on the local device."""

    def __init__(self, su_path: str = "su"):
        self.su_path = su_path

    def argv(self, command: str) -> List[str]:
        return [self.su_path, "-c", command]


class ShTransport(ShellTransport):
    """Run through ``sh -c``; the current process already holds the privileges."""

    def __init__(self, sh_path: str = "sh"):
        self.sh_path = sh_path

    def argv(self, command: str) -> List[str]:
        return [self.sh_path, "-c", command]


class ADBTransport(ShellTransport):
    """Run through ``adb shell`` and ``su -c`` on a connected device."""

    def __init__(self, device: ADBDevice, su_path: str = "su"):
        self.device = device
        self.su_path = su_path

    def argv(self, command: str) -> List[str]:
        return self.device.shell_argv(command, su_path=self.su_path)


def transport_from_config(shell_config: ShellConfig) -> ShellTransport:
    """Create the transport selected in the configuration."""
    if shell_config.mode == ShellMode.ADB:
        from .device import get_device_by_serial

        device = get_device_by_serial(shell_config.serial, shell_config.adb_path)
        return ADBTransport(device, shell_config.su_path)
    if shell_config.mode == ShellMode.SH:
        return ShTransport()
    return SuTransport(shell_config.su_path)


def quote(path: str) -> str:
    """Quote a single shell word."""
    return shlex.quote(path)


def _drain(stream: IO[str], sink: List[str]) -> None:
    for raw in stream:
        sink.append(raw.rstrip("\r\n"))


def _feed(stream: IO[str], text: str) -> None:
    try:
        stream.write(text)
    except BrokenPipeError:
        pass
    finally:
        try:
            stream.close()
        except BrokenPipeError:
            pass


class RootShell:
    """A single logical privileged shell session.

    At most one command runs per session at a time. The session keeps a
    logical working directory set by :meth:`cd`, applied to every later
    command. Wrap a :meth:`cd` sequence in :meth:`session` when the session is
    shared with other threads. Use :meth:`spawn` for an independent session
    that can run in parallel, and :meth:`submit` to run a command on the
    worker pool.
    """

    def __init__(self, context: EngineContext, transport: Optional[ShellTransport] = None):
        self.context = context
        self.transport = transport or transport_from_config(context.config.shell)
        self._lock = threading.RLock()
        self._cwd: Optional[str] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def cwd(self) -> Optional[str]:
        return self._cwd

    @contextmanager
    def session(self) -> Iterator["RootShell"]:
        """Hold the session for a sequence of commands.

        Commands from other threads, including :meth:`submit` work, wait until
        the block exits, so they never run inside a working directory set by
        :meth:`cd` within it.
        """
        with self._lock:
            yield self

    def execute(
        self,
        command: str,
        log_enabled: bool = True,
        on_line: Optional[LineCallback] = None,
        input_text: Optional[str] = None,
    ) -> ShellResult:
        """Run ``command`` and wait for it to finish.

        Args:
            command: Shell command line
            log_enabled: Record the command and its output in the shell log
            on_line: Receives each stdout line as it arrives
            input_text: Text written to the command's stdin

        Returns:
            ShellResult; ``success`` is False for a non-zero exit status or
            when the process could not be started
        """
        shell_log = self.context.shell_log

        with self._lock:
            full_command = command
            if self._cwd is not None:
                full_command = f"cd {quote(self._cwd)} && {command}"

            if log_enabled:
                shell_log.command(command)

            try:
                proc = subprocess.Popen(
                    self.transport.argv(full_command),
                    stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                logger.error(f"Could not start shell for '{command}': {e}")
                if log_enabled:
                    shell_log.output(str(e))
                return ShellResult(success=False, err=[str(e)], code=-1)

            out: List[str] = []
            err: List[str] = []
            with proc:
                helpers = [threading.Thread(target=_drain, args=(proc.stderr, err), daemon=True)]
                if input_text is not None:
                    helpers.append(threading.Thread(target=_feed, args=(proc.stdin, input_text), daemon=True))
                for helper in helpers:
                    helper.start()

                for raw in proc.stdout:
                    line = raw.rstrip("\r\n")
                    out.append(line)
                    if log_enabled:
                        shell_log.output(line)
                    if on_line is not None:
                        try:
                            on_line(line)
                        except Exception:
                            logger.exception("Shell line callback failed")

                code = proc.wait()
                for helper in helpers:
                    helper.join()

            if log_enabled:
                for line in err:
                    shell_log.output(line)

        if code != 0:
            logger.debug(f"Shell command exited with {code}: {command}")

        return ShellResult(success=code == 0, out=out, err=err, code=code)

    def submit(
        self,
        command: str,
        log_enabled: bool = True,
        on_line: Optional[LineCallback] = None,
        input_text: Optional[str] = None,
    ) -> "Future[ShellResult]":
        """Run :meth:`execute` on the worker pool."""
        return self.executor.submit(self.execute, command, log_enabled, on_line, input_text)

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Bounded pool for blocking shell work, created on first use."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.context.config.max_concurrent_operations,
                thread_name_prefix="databackup-shell",
            )
        return self._executor

    def spawn(self) -> "RootShell":
        """Open an independent session sharing this session's transport and log."""
        return RootShell(self.context, self.transport)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "RootShell":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # Preconditions

    def check_root_access(self) -> bool:
        """Check that the privileged session is usable."""
        if not self.execute("ls /", log_enabled=False).success:
            return False
        result = self.execute("id -u", log_enabled=False)
        return result.success and result.first_line == "0"

    def require_root(self) -> None:
        if not self.check_root_access():
            raise RootAccessError("Root access is not available")

    def missing_binaries(self, names: List[str]) -> List[str]:
        """Names from ``names`` that cannot be found on the shell's PATH."""
        return [
            name for name in names
            if not self.execute(f"command -v {quote(name)}", log_enabled=False).success
        ]

    def require_binaries(self, names: List[str]) -> None:
        missing = self.missing_binaries(names)
        if missing:
            raise MissingBinaryError(f"Required binaries not found: {', '.join(missing)}")

    def check_ls_zd(self) -> bool:
        """Whether ``ls -Zd`` is supported for reading SELinux contexts."""
        return self.execute("ls -Zd /", log_enabled=False).success

    # File helpers

    def ls(self, path: str) -> bool:
        """True when ``path`` exists."""
        return self.execute(f"ls -i {quote(path)}").success

    def rm(self, *paths: str) -> bool:
        return self.execute("rm -rf " + " ".join(quote(p) for p in paths)).success

    def cp(self, src: str, dst: str) -> bool:
        return self.execute(f"cp -rp {quote(src)} {quote(dst)}").success

    def mkdir(self, path: str) -> bool:
        if self.ls(path):
            return True
        return self.execute(f"mkdir -p {quote(path)}").success

    def cd(self, path: str) -> ShellResult:
        """Change the session's working directory; ``/`` resets it."""
        result = self.execute(f"cd {quote(path)}")
        if result.success:
            self._cwd = None if path == "/" else path
        return result

    def read_text(self, path: str) -> ShellResult:
        return self.execute(f"cat {quote(path)}", log_enabled=False)

    def write_text(self, path: str, text: str) -> bool:
        """Overwrite ``path`` with ``text``, creating parent directories."""
        parent = path.rsplit("/", 1)[0] or "/"
        command = f"mkdir -p {quote(parent)} && cat > {quote(path)}"
        return self.execute(command, input_text=text).success

    def find_files(self, root: str) -> ShellResult:
        """Recursive listing of regular files under ``root``, path-sorted."""
        q = quote(root)
        return self.execute(
            f"[ -d {q} ] && find {q} -type f | LC_ALL=C sort",
            log_enabled=False,
        )

    def list_dir(self, path: str) -> List[str]:
        result = self.execute(f"ls {quote(path)}")
        return [line.strip() for line in result.out if line.strip()] if result.success else []
