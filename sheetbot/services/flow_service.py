from typing import Iterable, Optional

from sheetbot.services.content_source import Flow
from sheetbot.services.intent_service import normalize_for_matching

REGISTER_FLOW = "register_flow"
SAMPLES_FLOW = "samples"


def match_flow(flows: Iterable[Flow], normalized_text: str) -> Optional[Flow]:
    """First flow whose keyword is contained in the message wins."""
    if not normalized_text:
        return None
    for flow in flows:
        keyword = normalize_for_matching(flow.keyword)
        if keyword and keyword in normalized_text:
            return flow
    return None


def find_named_flow(flows: Iterable[Flow], event_name: str) -> Optional[Flow]:
    """Named flows are addressed by exact keyword, not by containment."""
    target = normalize_for_matching(event_name)
    for flow in flows:
        if normalize_for_matching(flow.keyword) == target:
            return flow
    return None


def render_answer(flow: Flow, name: Optional[str] = None) -> str:
    return flow.answer.replace("{name}", (name or "").strip())
