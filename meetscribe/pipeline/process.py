import logging
import subprocess
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    returncode: int
    tail: List[str] = field(default_factory=list)

    @property
    def last_line(self) -> str:
        return self.tail[-1] if self.tail else ""


def run_tool(args: Sequence[str], on_line: Callable[[str], None], *, tail_lines: int = 20) -> ToolResult:
    """Run an external tool with stderr merged into stdout and hand every non-blank output line to on_line, in the order the tool wrote them. Blocks until the tool exits.
    Raises OSError if the tool cannot be launched; the caller maps that to its stage error.
    Why available: Shared by the extract and recognize stages; a single merged stream keeps progress lines ordered."""
    args = [str(a) for a in args]
    logger.info("tool_start", extra={"argv": args})
    proc = subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    )
    tail: deque = deque(maxlen=tail_lines)
    try:
        assert proc.stdout is not None
        for raw in proc.stdout:
            line = raw.rstrip()
            if not line.strip():
                continue
            tail.append(line)
            on_line(line)
        returncode = proc.wait()
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        if proc.stdout is not None:
            proc.stdout.close()
    logger.info("tool_exit", extra={"tool": args[0], "returncode": returncode})
    return ToolResult(returncode=returncode, tail=list(tail))
