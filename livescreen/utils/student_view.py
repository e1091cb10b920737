"""
Pure rendering of what the student display shows.

Input is the last known session row, the loaded subtest (or None while it is
being fetched) and the replicated session state. Output is a JSON-ready frame:

    loading      no session row yet
    completed    the session has ended
    waiting      no subtest selected, or its payload is still being fetched
    stimulus     the current item, shaped per module type
    placeholder  the stimulus payload lacks the fields the module needs
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from livescreen.models.enums import ModuleType, SessionStatus
from livescreen.utils.errors import DataShapeError
from livescreen.utils.session_state import SessionState

logger = logging.getLogger(__name__)

FRAME_LOADING = "loading"
FRAME_COMPLETED = "completed"
FRAME_WAITING = "waiting"
FRAME_STIMULUS = "stimulus"
FRAME_PLACEHOLDER = "placeholder"

# fields a print-awareness or comprehension item may carry, in display order
_FREEFORM_FIELDS = ("passage", "text", "items", "options")


def _current_item(stimulus_data: Any, item_index: int) -> Dict[str, Any]:
    if not isinstance(stimulus_data, Mapping) or not isinstance(stimulus_data.get("items"), list):
        raise DataShapeError("stimulus_data has no 'items' list")
    items = stimulus_data["items"]
    if not 0 <= item_index < len(items):
        raise DataShapeError(f"no stimulus item at index {item_index}")
    item = items[item_index]
    if isinstance(item, str):
        return {"text": item}
    if isinstance(item, Mapping):
        return dict(item)
    raise DataShapeError(f"stimulus item {item_index} is neither text nor a mapping")


def _require_text(item: Dict[str, Any], key: str = "text") -> str:
    value = item.get(key)
    if not isinstance(value, str) or not value.strip():
        raise DataShapeError(f"stimulus item has no '{key}'")
    return value


def render_stimulus(module_type: Optional[str], stimulus_data: Any, item_index: int) -> Dict[str, Any]:
    """Module-specific content of the current item. Raises DataShapeError."""
    item = _current_item(stimulus_data, item_index)

    if module_type == ModuleType.ORF.value:
        passage = item.get("passage") or item.get("text")
        if not isinstance(passage, str) or not passage.strip():
            raise DataShapeError("ORF item has no passage text")
        return {"passage": passage}

    if module_type in (ModuleType.PHONICS.value, ModuleType.HFW.value):
        return {"text": _require_text(item)}

    if module_type == ModuleType.PHONOLOGICAL_AWARENESS.value:
        content: Dict[str, Any] = {"text": _require_text(item)}
        options = item.get("options")
        if isinstance(options, list) and options:
            content["options"] = [str(o) for o in options]
        return content

    if module_type in (ModuleType.PRINT_AWARENESS.value, ModuleType.COMPREHENSION.value):
        content = {k: item[k] for k in _FREEFORM_FIELDS if item.get(k)}
        if not content:
            raise DataShapeError("stimulus item has none of text, passage, items, options")
        return content

    return {"text": _require_text(item)}


def render_frame(
    session: Optional[Mapping[str, Any]],
    subtest: Optional[Mapping[str, Any]],
    state: SessionState,
) -> Dict[str, Any]:
    if session is None:
        return {"kind": FRAME_LOADING}
    if session.get("status") == SessionStatus.COMPLETED.value:
        return {"kind": FRAME_COMPLETED}

    subtest_id = session.get("current_subtest_id")
    if not subtest_id or subtest is None or subtest.get("id") != subtest_id:
        return {"kind": FRAME_WAITING}

    module_type = subtest.get("module_type")
    frame: Dict[str, Any] = {
        "subtest_id": subtest_id,
        "module_type": module_type,
        "item_index": state.current_item_index,
        "pointer": state.pointer_position.to_dict() if state.pointer_position else None,
    }
    try:
        frame["content"] = render_stimulus(module_type, subtest.get("stimulus_data"), state.current_item_index)
    except DataShapeError as e:
        logger.warning("Placeholder for subtest %s: %s", subtest_id, e.message)
        frame.update(kind=FRAME_PLACEHOLDER, message="No stimulus loaded")
        return frame
    frame["kind"] = FRAME_STIMULUS
    return frame
