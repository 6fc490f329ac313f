"""Single-line structured logging for the listening sidecar.

stdout carries the JSON-lines protocol, so log records go to stderr unless a
caller asks otherwise. Windows consoles may not be able to encode some
characters; in that case the line is written as UTF-8 bytes to the
underlying buffer instead of raising UnicodeEncodeError.
"""
import sys
import time
from typing import TextIO

_START = time.monotonic()


def log(tag: str, message: str, *, err: bool = False, stream: TextIO = None) -> None:
    """Emit one log line.

    Args:
        tag: short component tag (e.g. 'matcher' or 'playback')
        message: the log message
        err: mark the line as an error (prefixed with '!')
        stream: override the destination (defaults to stderr)
    """
    out: TextIO = stream or sys.stderr
    message = message.replace("→", "->").replace("↑", "^").replace("↓", "v")
    marker = "!" if err else " "
    line = f"{time.monotonic() - _START:9.3f}{marker}[{tag}] {message}\n"

    try:
        out.write(line)
        out.flush()
        return
    except UnicodeEncodeError:
        buf = getattr(out, "buffer", None)
        if buf is not None:
            try:
                buf.write(line.encode("utf-8", errors="replace"))
                buf.flush()
                return
            except (OSError, ValueError):
                pass
    except (OSError, ValueError):
        # Closed or broken stream; logging must never take the pipeline down.
        return

    try:
        safe = line.encode("ascii", errors="replace").decode("ascii")
        out.write(safe)
        out.flush()
    except (OSError, ValueError, UnicodeError):
        pass


def get_logger(tag: str):
    # Same call shape as `log` minus the tag, e.g. `log('msg', err=True)`.
    return lambda message, *, err=False: log(tag, message, err=err)
