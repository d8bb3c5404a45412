from __future__ import annotations

import platform
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import cv2
import numpy as np


@dataclass
class HealthService:
    cfg: Dict[str, Any]
    start_time: Optional[float] = None

    def get_health_summary(self, session_state: str, diagnostics: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        now = time.time()
        return {
            "status": "ok",
            "session_state": session_state,
            "uptime_seconds": int(now - self.start_time) if self.start_time else 0,
            "platform": platform.platform(),
            "python": platform.python_version(),
            "versions": self.library_versions(),
            "diagnostics": [
                {k: v for k, v in d.items() if k != "type"} for d in (diagnostics or [])
            ],
            "timestamp": now,
            "log_path": self.cfg.get("log_path"),
            "model_locator": (self.cfg.get("model", {}) or {}).get("locator"),
        }

    @staticmethod
    def library_versions() -> Dict[str, str]:
        return {
            "opencv": cv2.__version__,
            "numpy": np.__version__,
        }
