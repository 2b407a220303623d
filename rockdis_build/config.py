"""
Pipeline configuration
"""
import shlex
from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    """Build environment settings, read from the environment or ``.env``"""

    # Output placement (set by the surrounding build orchestrator)
    OUT_DIR: Optional[str] = None

    # Toolchain
    CXX: str = "c++"
    AR: str = "ar"
    CXXFLAGS: str = ""
    OPT_LEVEL: str = "2"
    DEBUG: bool = False

    # Subprocess timeouts (seconds)
    COMPILE_TIMEOUT: int = 600
    QUERY_TIMEOUT: int = 30

    # Logging
    ROCKDIS_LOG_LEVEL: str = "INFO"

    @field_validator("ROCKDIS_LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError("ROCKDIS_LOG_LEVEL must be one of " + ", ".join(_LOG_LEVELS))
        return level

    @property
    def cxx_command(self) -> List[str]:
        """Compiler command, possibly with a wrapper (``ccache g++``)"""
        return shlex.split(self.CXX)

    @property
    def ar_command(self) -> List[str]:
        return shlex.split(self.AR)

    @property
    def extra_cxxflags(self) -> List[str]:
        return shlex.split(self.CXXFLAGS)

    def out_dir(self, root: Path) -> Path:
        """Build output directory; falls back to ``<root>/target/rockdis-build``"""
        if self.OUT_DIR:
            return Path(self.OUT_DIR)
        return root / "target" / "rockdis-build"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"
