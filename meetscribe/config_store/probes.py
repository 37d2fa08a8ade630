"""Best-effort discovery of the external tools and default directories.

Nothing here raises for a missing tool: callers get None (or a directory that
may not exist yet) and validate before running a job.
"""
import os
import shutil
import sys
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from meetscribe.core.config import settings

WHISPER_BINARY_NAMES = ("whisper-cli", "whisper", "whisper-cpp", "main")
WINGET_SEARCH_DEPTH = 5


class Probes:
    """Looks up tool binaries and default directories from the environment, PATH and per-platform install locations.
    Why available: Injected into resolve_defaults and the pipeline pre-flight so both resolve blanks the same way, and so tests can substitute fixed answers."""

    def __init__(
        self,
        *,
        data_dir: Optional[str] = None,
        platform: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.data_dir = data_dir or settings.data_dir
        self.platform = platform or sys.platform
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    @property
    def is_windows(self) -> bool:
        return self.platform.startswith("win")

    @property
    def is_macos(self) -> bool:
        return self.platform == "darwin"

    def find_in_path(self, name: str) -> Optional[str]:
        """Return the full path of an executable on PATH, or None."""
        return shutil.which(name, path=self.environ.get("PATH"))

    def _documents_dir(self) -> Optional[Path]:
        if not self.is_windows:
            return None
        profile = self.environ.get("USERPROFILE")
        return Path(profile) / "Documents" if profile else None

    def whisper_binary_candidates(self) -> List[str]:
        suffix = ".exe" if self.is_windows else ""
        return [name + suffix for name in WHISPER_BINARY_NAMES]

    def whisper_install_paths(self) -> List[Path]:
        if self.is_macos:
            return [Path("/opt/homebrew/bin/whisper-cli"), Path("/usr/local/bin/whisper-cli")]
        documents = self._documents_dir()
        if documents is not None:
            return [documents / "WhisperDesktop" / "whisper-bin-x64" / "Release" / "whisper-cli.exe"]
        return []

    def ffmpeg_install_paths(self) -> List[Path]:
        if self.is_macos:
            return [Path("/opt/homebrew/bin/ffmpeg"), Path("/usr/local/bin/ffmpeg")]
        return []

    def _from_env(self, var: str) -> Optional[str]:
        value = (self.environ.get(var) or "").strip()
        if not value:
            return None
        if os.path.isfile(value):
            return value
        return self.find_in_path(value)

    def whisper_binary(self) -> Optional[str]:
        """WHISPER_BINARY, then the known binary names on PATH, then platform install locations."""
        found = self._from_env("WHISPER_BINARY")
        if found:
            return found
        for name in self.whisper_binary_candidates():
            found = self.find_in_path(name)
            if found:
                return found
        return _first_file(self.whisper_install_paths())

    def ffmpeg_binary(self) -> Optional[str]:
        """FFMPEG_BINARY, then ffmpeg on PATH, then platform install locations, then the WinGet package tree."""
        found = self._from_env("FFMPEG_BINARY")
        if found:
            return found
        found = self.find_in_path("ffmpeg.exe" if self.is_windows else "ffmpeg")
        if found:
            return found
        found = _first_file(self.ffmpeg_install_paths())
        if found:
            return found
        return self._ffmpeg_in_winget()

    def _ffmpeg_in_winget(self) -> Optional[str]:
        if not self.is_windows:
            return None
        local_app_data = self.environ.get("LOCALAPPDATA")
        if not local_app_data:
            return None
        root = Path(local_app_data) / "Microsoft" / "WinGet" / "Packages"
        if not root.is_dir():
            return None
        base_depth = len(root.parts)
        for dirpath, dirnames, filenames in os.walk(root):
            if len(Path(dirpath).parts) - base_depth >= WINGET_SEARCH_DEPTH:
                dirnames[:] = []
            for fname in filenames:
                if fname.lower() == "ffmpeg.exe":
                    return os.path.join(dirpath, fname)
        return None

    def model_root(self) -> str:
        """Directory relative model paths are resolved against."""
        documents = self._documents_dir()
        if documents is not None:
            return str(documents / "WhisperDesktop")
        return os.path.join(self.data_dir, "whisper", "models")

    def whisper_model(self) -> Optional[str]:
        """WHISPER_MODEL if it points at a file, else the default model under the model root if present."""
        env_model = (self.environ.get("WHISPER_MODEL") or "").strip()
        if env_model and os.path.isfile(env_model):
            return env_model
        candidate = os.path.join(self.model_root(), settings.default_model_name)
        return candidate if os.path.isfile(candidate) else None

    def output_dir(self) -> str:
        """The user's Downloads folder when it exists, otherwise <data dir>/transcripts."""
        home = self.environ.get("USERPROFILE") if self.is_windows else self.environ.get("HOME")
        if home:
            downloads = os.path.join(home, "Downloads")
            if os.path.isdir(downloads):
                return downloads
        return os.path.join(self.data_dir, "transcripts")


def _first_file(paths: Iterable[Path]) -> Optional[str]:
    for p in paths:
        if p.is_file():
            return str(p)
    return None
