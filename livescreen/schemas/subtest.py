from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from livescreen.models.enums import ModuleType


class SubtestListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    module_type: Optional[ModuleType] = None
    modality: Optional[str] = None
    grade: Optional[str] = None
    order_index: int = 0
    total_items: int = 0
    duration_seconds: Optional[int] = None


class SubtestOut(SubtestListItem):
    stimulus_data: Optional[Dict[str, Any]] = None
    timing_config: Optional[Dict[str, Any]] = None
    script_prompt: Optional[str] = None
