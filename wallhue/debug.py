"""Debug switch shared by the loggers."""

import os
from dataclasses import dataclass

__all__ = ["DEBUG", "DebugFlag"]


@dataclass
class DebugFlag:
    """Mutable debug state, on when WALLHUE_DEBUG is set to anything but 0."""

    enabled: bool = False

    def __bool__(self) -> bool:
        return self.enabled


DEBUG = DebugFlag(enabled=os.environ.get("WALLHUE_DEBUG", "0") not in ("", "0"))
