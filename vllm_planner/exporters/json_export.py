"""Export plans to JSON files."""

import dataclasses
import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def to_jsonable(obj: Any) -> Any:
    """Convert dataclasses, pydantic models, enums and containers to plain JSON types."""
    if isinstance(obj, BaseModel):
        return to_jsonable(obj.model_dump())
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {str(key): to_jsonable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(item) for item in obj]
    if isinstance(obj, Path):
        return str(obj)
    return obj


def export_plan(plan: Any, path: Path) -> Path:
    """Write *plan* as indented JSON with an ``exported_at`` timestamp."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = {"exported_at": datetime.now(UTC).isoformat(), "plan": to_jsonable(plan)}
    path.write_text(json.dumps(payload, indent=2) + "\n")
    logger.info("Exported plan to %s", path)
    return path
