"""Script runtime — runs a user-supplied Lua health check in a sandbox.

Every run gets its own ``LuaRuntime`` inside its own child process; nothing
is shared between resources or between reconciliation passes. The resource
document is copied into Lua tables and bound as the global ``obj``. The
script must return a table ``{status = "...", message = "..."}``.

Execution is bounded twice: an instruction-count hook aborts the script
cooperatively once the deadline passes, and the parent kills the child
process if no result arrives in time. The kill also covers scripts that
keep catching the abort with ``pcall`` and long C calls that never reach
the hook.
"""

from __future__ import annotations

import logging
import multiprocessing
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from multiprocessing.connection import Connection
from typing import Any

import lupa
from lupa import LuaError, LuaRuntime

from ..config import settings
from .errors import (
    EvaluationError,
    InvalidReturnShape,
    ScriptParseError,
    ScriptRuntimeError,
    ScriptTimeout,
    UnknownStatusLiteral,
)
from .status import HealthStatus, parse_status_code

logger = logging.getLogger(__name__)

CHUNK_NAME = "health.lua"
WORKER_NAME = "health-lua"

_context = multiprocessing.get_context()

# Messages sent from the worker process to the caller.
_READY = "ready"
_RESULT = "result"
_FAILED = "failed"

# Builds the script's environment, installs the abort hook and compiles the
# chunk. Returns the chunk, or nil plus the compile error.
_SANDBOX_SETUP = """
function(source, obj, open_libs, hook_interval, should_abort)
  local sethook = debug.sethook
  python = nil
  debug = nil
  if package and package.loaded then
    package.loaded.python = nil
    package.loaded.debug = nil
  end

  local env = {}
  if open_libs then
    for name, value in pairs(_G) do
      if name ~= "_G" then env[name] = value end
    end
    env.load = function(chunk, name, mode, chunk_env)
      return load(chunk, name, mode, chunk_env or env)
    end
  else
    for _, name in ipairs({
      "assert", "error", "ipairs", "next", "pairs", "pcall", "select",
      "tonumber", "tostring", "type", "xpcall", "rawequal", "rawget",
      "rawlen", "rawset", "setmetatable", "getmetatable",
    }) do
      env[name] = _G[name]
    end
    env.string = string
    env.table = table
    env.math = math
    env.utf8 = utf8
    env.os = { time = os.time, clock = os.clock, date = os.date }
  end
  env.unpack = env.unpack or table.unpack
  env.obj = obj
  env._G = env

  local chunk, err = load(source, "=%s", "t", env)
  if not chunk then
    return nil, err
  end

  sethook(function()
    if should_abort() then
      error("health script exceeded its execution time limit", 0)
    end
  end, "", hook_interval)
  return chunk
end
""" % CHUNK_NAME


# ── Sandbox lifecycle ────────────────────────────────────────────────────────


@contextmanager
def lua_sandbox(max_memory: int = 0) -> Iterator[LuaRuntime]:
    """A fresh Lua state for a single script run."""
    kwargs: dict[str, Any] = {"max_memory": max_memory} if max_memory > 0 else {}
    lua = LuaRuntime(
        register_eval=False,
        register_builtins=False,
        unpack_returned_tuples=True,
        **kwargs,
    )
    # Taken before the setup removes `debug` from the state.
    clear_hook = lua.eval("debug.sethook")
    try:
        yield lua
    finally:
        clear_hook()


def to_lua(lua: LuaRuntime, value: Any) -> Any:
    """Copy a JSON-like document into Lua tables, preserving its shape."""
    if isinstance(value, Mapping):
        table = lua.table()
        for key, item in value.items():
            table[key] = to_lua(lua, item)
        return table
    if isinstance(value, (list, tuple)):
        return lua.table(*(to_lua(lua, item) for item in value))
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # e.g. datetimes from unquoted YAML timestamps; never hand Python objects to the script
    return str(value)


def _plain(value: Any) -> Any:
    """Copy a document into plain dicts and lists so it can cross a process boundary."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _field(result: Any, name: str) -> Any:
    try:
        return result[name]
    except UnicodeDecodeError as e:
        raise InvalidReturnShape(f"'{name}' is not valid UTF-8") from e


def decode_health(result: Any) -> HealthStatus:
    """Turn the script's return value into a HealthStatus, or raise."""
    if isinstance(result, tuple):
        result = result[0] if result else None

    lua_kind = lupa.lua_type(result)
    if lua_kind != "table":
        got = lua_kind or ("nil" if result is None else type(result).__name__)
        raise InvalidReturnShape(f"expect table output from Lua script, not {got}")

    status = _field(result, "status")
    if status is None:
        raise InvalidReturnShape("Lua script returned a table without a 'status' field")
    if not isinstance(status, str):
        raise InvalidReturnShape(f"'status' must be a string, got {lupa.lua_type(status) or type(status).__name__}")
    code = parse_status_code(status)
    if code is None:
        raise UnknownStatusLiteral(f"Lua returned an invalid health status: {status!r}")

    message = _field(result, "message")
    if message is None:
        message = ""
    elif not isinstance(message, str):
        raise InvalidReturnShape("'message' must be a string")
    return HealthStatus(code, message)


def _execute(
    source: str,
    obj: Mapping[str, Any],
    use_open_libs: bool,
    timeout: float,
    hook_interval: int,
    max_memory: int,
    ready: Callable[[], None],
) -> HealthStatus:
    deadline = time.monotonic() + timeout

    def should_abort() -> bool:
        return time.monotonic() > deadline

    with lua_sandbox(max_memory) as lua:
        setup = lua.eval(_SANDBOX_SETUP)
        try:
            loaded = setup(source, to_lua(lua, obj), use_open_libs, hook_interval, should_abort)
        except LuaError as e:
            raise ScriptRuntimeError(f"Failed to prepare Lua sandbox: {e}") from e

        chunk, err = loaded if isinstance(loaded, tuple) else (loaded, None)
        if chunk is None:
            raise ScriptParseError(f"Failed to parse Lua script: {err}")

        ready()
        try:
            # Decoding may run metamethods on the returned table, so it stays under the hook too.
            return decode_health(chunk())
        except LuaError as e:
            if should_abort():
                raise ScriptTimeout(f"Lua script did not finish within {timeout:g}s") from e
            raise ScriptRuntimeError(f"Lua script failed: {e}") from e
        except UnicodeDecodeError as e:
            raise InvalidReturnShape(f"Lua script returned a string that is not valid UTF-8: {e.reason}") from e


def _worker(
    conn: Connection,
    source: str,
    obj: Mapping[str, Any],
    use_open_libs: bool,
    timeout: float,
    hook_interval: int,
    max_memory: int,
) -> None:
    """Child process entry point: run one script and report the outcome on ``conn``."""
    try:
        status = _execute(
            source, obj, use_open_libs, timeout, hook_interval, max_memory,
            ready=lambda: conn.send((_READY, None)),
        )
        conn.send((_RESULT, status))
    except EvaluationError as e:
        conn.send((_FAILED, e))
    except Exception as e:
        # lupa reports some failures as plain Python errors (MemoryError, codec errors)
        conn.send((_FAILED, ScriptRuntimeError(f"Lua script failed: {type(e).__name__}: {e}")))
    finally:
        conn.close()


# ── Runtime ──────────────────────────────────────────────────────────────────


class ScriptRuntime:
    """Runs Lua health scripts with a per-run sandbox and time budget.

    The budget starts once the script is compiled and about to run, so
    process start-up never counts against it.
    """

    def __init__(
        self,
        timeout: float | None = None,
        hook_interval: int | None = None,
        max_memory: int | None = None,
        startup_timeout: float | None = None,
    ) -> None:
        self.timeout = settings.script_timeout_seconds if timeout is None else timeout
        self.hook_interval = max(1, settings.script_hook_interval if hook_interval is None else hook_interval)
        self.max_memory = settings.script_max_memory_bytes if max_memory is None else max_memory
        self.startup_timeout = (
            settings.script_startup_timeout_seconds if startup_timeout is None else startup_timeout
        )

    def run(self, source: str, obj: Mapping[str, Any], use_open_libs: bool = False) -> HealthStatus:
        """Execute ``source`` against ``obj``. Raises an ``EvaluationError`` subclass on failure."""
        reader, writer = _context.Pipe(duplex=False)
        process = _context.Process(
            target=_worker,
            args=(writer, source, _plain(obj), use_open_libs, self.timeout, self.hook_interval, self.max_memory),
            name=WORKER_NAME,
            daemon=True,
        )
        process.start()
        writer.close()
        try:
            kind, payload = _receive(
                reader, self.startup_timeout,
                ScriptRuntimeError(f"Lua worker did not start within {self.startup_timeout:g}s"),
            )
            if kind == _READY:
                kind, payload = _receive(
                    reader, self.timeout,
                    ScriptTimeout(f"Lua script did not finish within {self.timeout:g}s"),
                )
        finally:
            if process.is_alive():
                process.kill()
            process.join()
            reader.close()

        if kind == _FAILED:
            raise payload
        return payload


def _receive(reader: Connection, timeout: float, on_timeout: EvaluationError) -> tuple[str, Any]:
    if not reader.poll(timeout):
        logger.debug("Killing %s worker: %s", WORKER_NAME, on_timeout)
        raise on_timeout
    try:
        return reader.recv()
    except EOFError:
        raise ScriptRuntimeError("Lua worker exited without reporting a result") from None
