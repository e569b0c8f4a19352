"""
Funnel matcher - advances per-session funnel progress as beacons arrive.

Each (funnel, session) pair is a small state machine:

    step 0 --match step 1--> step 1 --match step 2--> ... --> converted

Only the next step is ever tested, so one beacon moves a session forward
by at most one step. Advances are written with a compare-and-swap on
`last_step_reached`/`version`; a lost race re-reads the row and tries
again. Converted rows never change.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.core.logging import get_logger
from horizn.models.funnel import FunnelUserSession, StepType
from horizn.repositories.funnel import FunnelRepository, FunnelSessionRepository
from horizn.services.beacon import EVENT, PAGEVIEW, Beacon

logger = get_logger(__name__)

MAX_CAS_ATTEMPTS = 3


@lru_cache(maxsize=1024)
def _wildcard_regex(pattern: str) -> re.Pattern:
    escaped = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(escaped, re.DOTALL)


def matches_pattern(value: Optional[str], pattern: str) -> bool:
    """Literal equality or anchored wildcard match (`*` any run, `?` one character)."""
    if value is None:
        return False
    if value == pattern:
        return True
    return _wildcard_regex(pattern).fullmatch(value) is not None


@dataclass(frozen=True)
class PageviewMatch:
    pattern: str

    def matches(self, beacon: Beacon) -> bool:
        return beacon.kind == PAGEVIEW and matches_pattern(beacon.page_path, self.pattern)


@dataclass(frozen=True)
class EventMatch:
    name: str
    category: Optional[str] = None

    def matches(self, beacon: Beacon) -> bool:
        if beacon.kind != EVENT or beacon.event_name != self.name:
            return False
        return not self.category or beacon.event_category == self.category


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _loosely_equal(actual: Any, expected: Any) -> bool:
    """Equality across the JSON/form boundary: numbers compare by value, the rest as text."""
    if actual == expected:
        return True
    actual_number, expected_number = _as_number(actual), _as_number(expected)
    if actual_number is not None and expected_number is not None:
        return actual_number == expected_number
    return str(actual) == str(expected)


@dataclass(frozen=True)
class CustomMatch:
    predicates: tuple[tuple[str, Any], ...]

    def matches(self, beacon: Beacon) -> bool:
        attributes = beacon.attributes()
        for key, expected in self.predicates:
            if key not in attributes:
                return False
            actual = attributes[key]
            if isinstance(expected, (list, tuple)):
                if not any(_loosely_equal(actual, option) for option in expected):
                    return False
            elif not _loosely_equal(actual, expected):
                return False
        return True


StepCondition = Union[PageviewMatch, EventMatch, CustomMatch]


def parse_step_condition(step_type: str, conditions: dict[str, Any]) -> StepCondition:
    """Build the typed matcher for a stored step definition."""
    if step_type == StepType.PAGEVIEW.value:
        pattern = conditions.get("page_path")
        if not pattern:
            raise ValueError("pageview step requires page_path")
        return PageviewMatch(pattern=str(pattern))

    if step_type == StepType.EVENT.value:
        name = conditions.get("event_name")
        if not name:
            raise ValueError("event step requires event_name")
        return EventMatch(name=str(name), category=conditions.get("event_category") or None)

    if step_type == StepType.CUSTOM.value:
        predicates = tuple(
            (key, tuple(value) if isinstance(value, list) else value)
            for key, value in conditions.items()
        )
        return CustomMatch(predicates=predicates)

    raise ValueError(f"Unknown step type: {step_type}")


@dataclass(frozen=True)
class CompiledStep:
    order: int
    name: str
    condition: StepCondition


def compile_steps(funnel: dict[str, Any]) -> list[CompiledStep]:
    return [
        CompiledStep(
            order=step["step_order"],
            name=step["name"],
            condition=parse_step_condition(step["step_type"], step["conditions"]),
        )
        for step in sorted(funnel["steps"], key=lambda s: s["step_order"])
    ]


def next_step(steps: list[CompiledStep], last_step_reached: int) -> Optional[CompiledStep]:
    """Smallest step order after `last_step_reached`, if any."""
    for step in steps:
        if step.order > last_step_reached:
            return step
    return None


def conversion_seconds(steps_data: dict[str, Any]) -> Optional[int]:
    """Seconds between the earliest and latest recorded step."""
    stamps = [
        datetime.fromisoformat(entry["timestamp"])
        for entry in steps_data.values()
        if entry.get("timestamp")
    ]
    if not stamps:
        return None
    return int((max(stamps) - min(stamps)).total_seconds())


class FunnelMatcher:
    """Evaluates the active funnels of a site against one beacon."""

    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.ctx = ctx
        self.db = db
        self.funnels = FunnelRepository(db, cache=ctx.cache)
        self.progress = FunnelSessionRepository(db)

    async def process(self, site_id: int, session_id: str, user_hash: Optional[str], beacon: Beacon) -> list[int]:
        """
        Try every active funnel of the site.

        Failures of one funnel are logged and rolled back to a savepoint;
        they never affect the beacon that triggered them or other funnels.

        Returns:
            Ids of the funnels that advanced
        """
        advanced: list[int] = []
        definitions = await self.funnels.active_definitions(site_id)

        for funnel in definitions:
            try:
                async with self.db.begin_nested():
                    step = await self.evaluate(funnel, session_id, user_hash, beacon)
            except Exception as e:
                logger.error(
                    "Funnel evaluation failed",
                    funnel_id=funnel["id"],
                    session_id=session_id,
                    error=str(e),
                )
                continue
            if step is not None:
                advanced.append(funnel["id"])
        return advanced

    async def evaluate(
        self,
        funnel: dict[str, Any],
        session_id: str,
        user_hash: Optional[str],
        beacon: Beacon,
    ) -> Optional[int]:
        """Advance one funnel by at most one step. Returns the step reached, if any."""
        steps = compile_steps(funnel)
        if not steps:
            return None

        row = await self.progress.get_pair(funnel["id"], session_id)
        if row is None:
            # Rows are only created once the first step matches
            if not steps[0].condition.matches(beacon):
                return None
            row = await self.progress.start(funnel["id"], session_id, user_hash, self.ctx.now())
        else:
            row = await self.progress.reload(row)

        for _ in range(MAX_CAS_ATTEMPTS):
            if row.is_converted:
                return None

            step = next_step(steps, row.last_step_reached)
            if step is None or not step.condition.matches(beacon):
                return None

            if await self._advance(row, step, steps[-1].order, beacon):
                logger.debug(
                    "Funnel step reached",
                    funnel_id=funnel["id"],
                    session_id=session_id,
                    step=step.order,
                )
                return step.order

            row = await self.progress.reload(row)

        logger.warning(
            "Funnel advance kept conflicting",
            funnel_id=funnel["id"],
            session_id=session_id,
        )
        return None

    async def _advance(
        self,
        row: FunnelUserSession,
        step: CompiledStep,
        final_order: int,
        beacon: Beacon,
    ) -> bool:
        now = self.ctx.now()
        steps_data = dict(row.steps_data or {})
        steps_data[str(step.order)] = {
            "timestamp": now.isoformat(),
            "event_data": beacon.snapshot(),
        }

        is_final = step.order == final_order
        return await self.progress.compare_and_advance(
            row,
            new_step=step.order,
            steps_data=steps_data,
            is_converted=is_final,
            conversion_time=conversion_seconds(steps_data) if is_final else None,
            completed_at=now if is_final else None,
        )
