"""
Task extractor.

Turns a stage's output into normalized task records. Every stage
returns a differently shaped payload, so each one gets its own adapter
selected by stage name; an adapter only has to yield (item, default
category) pairs and the shared normalizer does the rest.

Unlabeled items default per stage: opportunity items are client-facing
(USER) while cro_optimizer items are agency work (ALLORO). The two
referral_engine lists carry their own, opposite defaults.
"""

import json
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import structlog

from src.core.models import StageName, TaskCategory

logger = structlog.get_logger()

TITLE_FIELDS = ("title", "name", "action", "headline", "recommendation")
DESCRIPTION_FIELDS = ("description", "explanation", "details", "rationale", "summary")
TEXT_FIELDS = DESCRIPTION_FIELDS + ("text", "content")
DUE_DATE_FIELDS = ("due_date", "dueDate")

TITLE_EXCERPT_LENGTH = 80


@dataclass
class ExtractedTask:
    title: str
    category: TaskCategory
    origin_stage: StageName
    description: Optional[str] = None
    due_date: Optional[date] = None
    metadata: dict = field(default_factory=dict)


# ==========================================================================
# Shape Helpers
# ==========================================================================

def _decode(output: Any) -> Any:
    if isinstance(output, str):
        try:
            return json.loads(output)
        except ValueError:
            return output
    return output


def _list_field(output: Any, names: tuple[str, ...], allow_bare: bool = True) -> list:
    """
    Find the first list field named in ``names``.

    Accepts the field on a bare object or on the first element of an
    array-of-one wrapper. A bare array of items is returned as is.
    """
    output = _decode(output)
    containers: list[dict] = []
    if isinstance(output, dict):
        containers.append(output)
    elif isinstance(output, list):
        wrappers = [o for o in output if isinstance(o, dict) and any(n in o for n in names)]
        if not wrappers:
            return output if allow_bare else []
        containers.extend(wrappers)

    for container in containers:
        for name in names:
            value = container.get(name)
            if isinstance(value, list):
                return value
    return []


def _first_text(item: dict, names: tuple[str, ...]) -> tuple[Optional[str], Optional[str]]:
    for name in names:
        value = item.get(name)
        if isinstance(value, str) and value.strip():
            return name, value.strip()
    return None, None


def excerpt(text: str, length: int = TITLE_EXCERPT_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= length:
        return text
    return text[: length - 3].rstrip() + "..."


def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


# ==========================================================================
# Normalizer
# ==========================================================================

def normalize_item(item: Any, stage: StageName, default: TaskCategory) -> Optional[ExtractedTask]:
    """Map one raw item to a task, or None when it carries no content."""
    if isinstance(item, str):
        if not item.strip():
            return None
        return ExtractedTask(
            title=excerpt(item),
            description=item.strip(),
            category=default,
            origin_stage=stage,
        )
    if not isinstance(item, dict):
        raise TypeError(f"Unsupported task item type: {type(item).__name__}")

    used: set[str] = set()

    title_key, title = _first_text(item, TITLE_FIELDS)
    desc_key, description = _first_text(item, DESCRIPTION_FIELDS)
    if title_key:
        used.add(title_key)
    if desc_key:
        used.add(desc_key)

    if not title:
        _, text = _first_text(item, TEXT_FIELDS)
        if not text:
            return None
        title = excerpt(text)

    category = default
    raw_type = item.get("type")
    if isinstance(raw_type, str) and raw_type.strip().upper() in TaskCategory.__members__:
        category = TaskCategory(raw_type.strip().upper())
        used.add("type")

    due_date = None
    for name in DUE_DATE_FIELDS:
        if name in item:
            due_date = _parse_date(item[name])
            if due_date:
                used.add(name)
                break

    return ExtractedTask(
        title=title[:500],
        description=description,
        category=category,
        origin_stage=stage,
        due_date=due_date,
        metadata={k: v for k, v in item.items() if k not in used},
    )


# ==========================================================================
# Per-Stage Adapters
# ==========================================================================

Adapter = Callable[[Any], Iterator[tuple[Any, TaskCategory]]]


def _opportunity_items(output: Any) -> Iterator[tuple[Any, TaskCategory]]:
    for item in _list_field(output, ("opportunities", "recommendations", "items")):
        yield item, TaskCategory.USER


def _cro_items(output: Any) -> Iterator[tuple[Any, TaskCategory]]:
    for item in _list_field(output, ("opportunities", "optimizations", "recommendations", "items")):
        yield item, TaskCategory.ALLORO


def _referral_items(output: Any) -> Iterator[tuple[Any, TaskCategory]]:
    for item in _list_field(output, ("alloro_automation_opportunities",), allow_bare=False):
        yield item, TaskCategory.ALLORO
    for item in _list_field(output, ("practice_action_plan",), allow_bare=False):
        yield item, TaskCategory.USER


ADAPTERS: dict[StageName, Adapter] = {
    StageName.OPPORTUNITY: _opportunity_items,
    StageName.CRO_OPTIMIZER: _cro_items,
    StageName.REFERRAL_ENGINE: _referral_items,
}


def extract_tasks(stage: StageName, output: Any, log: Optional[Any] = None) -> list[ExtractedTask]:
    """
    Extract tasks from one stage output.

    A bad item is logged and skipped; stages without an adapter yield
    nothing. Errors unwrapping the whole output propagate to the caller.
    """
    log = log or logger
    adapter = ADAPTERS.get(stage)
    if adapter is None:
        return []

    tasks: list[ExtractedTask] = []
    for index, (item, default) in enumerate(adapter(output)):
        try:
            task = normalize_item(item, stage, default)
        except Exception as e:
            log.warning("task_item_skipped", stage=stage.value, index=index, error=str(e))
            continue
        if task is not None:
            tasks.append(task)

    log.info("tasks_extracted", stage=stage.value, count=len(tasks))
    return tasks
