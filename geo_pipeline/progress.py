"""
Progress tracking for a pipeline run.

Stage lifecycle transitions are folded into one overall percentage:
completed stage weights plus a fraction of each active stage's weight.
The percentage never decreases within a run and reaches 100 only on the
terminal ``complete`` event.
"""

import math
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from .models import EventType, ProgressState, StageError, StageId, StageStatus, StreamEvent

logger = structlog.get_logger()

# Progress weights (total = 100)
STAGE_WEIGHTS: Dict[StageId, int] = {
    StageId.INITIALIZING: 5,
    StageId.DESCRIPTION: 20,
    StageId.USP_EXTRACTION: 10,
    StageId.KEYWORDS: 10,
    StageId.CHAPTERS: 10,
    StageId.FAQ: 15,
    StageId.CASE_STUDIES: 10,
    StageId.HASHTAGS: 5,
    StageId.STEP_BY_STEP: 5,
    StageId.GROUNDING_AGGREGATION: 5,
    StageId.COMPLETE: 5,
}

STAGE_LABELS: Dict[str, Dict[StageId, str]] = {
    "en": {
        StageId.INITIALIZING: "Initializing...",
        StageId.DESCRIPTION: "Generating description...",
        StageId.USP_EXTRACTION: "Extracting USPs...",
        StageId.KEYWORDS: "Analyzing keywords...",
        StageId.CHAPTERS: "Generating chapters...",
        StageId.FAQ: "Generating FAQ...",
        StageId.CASE_STUDIES: "Generating case studies...",
        StageId.HASHTAGS: "Generating hashtags...",
        StageId.STEP_BY_STEP: "Generating step-by-step guide...",
        StageId.GROUNDING_AGGREGATION: "Calculating scores...",
        StageId.COMPLETE: "Complete",
    },
    "ko": {
        StageId.INITIALIZING: "초기화 중...",
        StageId.DESCRIPTION: "설명문 생성 중...",
        StageId.USP_EXTRACTION: "USP 추출 중...",
        StageId.KEYWORDS: "키워드 분석 중...",
        StageId.CHAPTERS: "챕터 생성 중...",
        StageId.FAQ: "FAQ 생성 중...",
        StageId.CASE_STUDIES: "사례 연구 생성 중...",
        StageId.HASHTAGS: "해시태그 생성 중...",
        StageId.STEP_BY_STEP: "단계별 가이드 생성 중...",
        StageId.GROUNDING_AGGREGATION: "점수 계산 중...",
        StageId.COMPLETE: "완료",
    },
}

ERROR_LABELS = {"en": "Error occurred", "ko": "오류 발생"}

Listener = Callable[[StreamEvent], Any]


class TrackerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressTracker:
    """
    Converts stage transitions into monotonic progress events.

    Several stages may be active at once (a parallel group). Calls that
    arrive after the tracker reached ``complete`` or ``error`` are ignored,
    as are progress updates for stages that already completed.
    """

    def __init__(self, language: str = "ko",
                 weights: Optional[Dict[StageId, int]] = None,
                 listener: Optional[Listener] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.language = language if language in STAGE_LABELS else "ko"
        self.weights = dict(weights or STAGE_WEIGHTS)
        self._listeners: List[Listener] = [listener] if listener else []
        self._clock = clock
        self._started = clock()
        self._state = TrackerState.IDLE
        self._active: Dict[StageId, float] = {}
        self._completed: List[StageId] = []
        self._errors: Dict[str, StageError] = {}
        self._current: Optional[StageId] = None
        self._percentage = 0
        self._message = self.label(StageId.INITIALIZING)
        self.events: List[StreamEvent] = []

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event_type: EventType, stage: Optional[StageId], message: str,
              data: Any = None) -> StreamEvent:
        event = StreamEvent(type=event_type, stage=stage, progress=self._percentage,
                            message=message, data=data)
        self._message = message
        self.events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("progress listener failed", event_type=event_type.value, error=str(e))
        return event

    # -- accounting --------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def percentage(self) -> int:
        return self._percentage

    @property
    def is_terminal(self) -> bool:
        return self._state in (TrackerState.COMPLETE, TrackerState.ERROR)

    def label(self, stage: StageId) -> str:
        return STAGE_LABELS[self.language].get(stage, stage.value)

    def _recalculate(self) -> int:
        total = sum(self.weights.get(s, 0) for s in self._completed)
        total += sum(self.weights.get(s, 0) * pct / 100 for s, pct in self._active.items())
        # 100 is reserved for the complete event
        computed = min(99, math.floor(total))
        self._percentage = max(self._percentage, computed)
        return self._percentage

    def _begin(self) -> None:
        if self._state == TrackerState.IDLE:
            self._state = TrackerState.RUNNING
            self._started = self._clock()

    # -- transitions -------------------------------------------------------

    def start_stage(self, stage: StageId, message: Optional[str] = None) -> Optional[StreamEvent]:
        if self.is_terminal or stage in self._completed:
            return None
        self._begin()
        self._active[stage] = 0.0
        self._current = stage
        self._recalculate()
        return self._emit(EventType.STAGE_START, stage, message or self.label(stage))

    def update_progress(self, percent: float, message: Optional[str] = None,
                        stage: Optional[StageId] = None) -> Optional[StreamEvent]:
        """Report intra-stage progress; ignored once the stage has completed."""
        stage = stage or self._current
        if self.is_terminal or stage is None or stage not in self._active:
            return None
        percent = min(100.0, max(0.0, float(percent)))
        self._active[stage] = max(self._active[stage], percent)
        self._recalculate()
        return self._emit(EventType.PROGRESS, stage, message or self.label(stage))

    def complete_stage(self, stage: Optional[StageId] = None, data: Any = None,
                       message: Optional[str] = None) -> Optional[StreamEvent]:
        stage = stage or self._current
        if self.is_terminal or stage is None or stage in self._completed:
            return None
        self._begin()
        self._active.pop(stage, None)
        self._completed.append(stage)
        if self._current == stage:
            self._current = next(reversed(self._active), None) if self._active else stage
        self._recalculate()
        return self._emit(EventType.STAGE_COMPLETE, stage, message or self.label(stage), data)

    def record_stage_error(self, stage: StageId, message: str, error_type: str = "unexpected",
                           retries: int = 0, status: StageStatus = StageStatus.DEGRADED) -> None:
        """Note a contained stage failure; the run carries on."""
        self._errors[stage.value] = StageError(
            stage=stage, message=message, error_type=error_type, retries=retries, status=status,
        )

    def result(self, data: Any, message: Optional[str] = None) -> Optional[StreamEvent]:
        if self.is_terminal:
            return None
        return self._emit(EventType.RESULT, self._current, message or self.label(StageId.COMPLETE), data)

    def complete(self, data: Any = None, message: Optional[str] = None) -> Optional[StreamEvent]:
        if self.is_terminal:
            return None
        self._begin()
        self._active.clear()
        if StageId.COMPLETE not in self._completed:
            self._completed.append(StageId.COMPLETE)
        self._current = StageId.COMPLETE
        self._state = TrackerState.COMPLETE
        self._percentage = 100
        return self._emit(EventType.COMPLETE, StageId.COMPLETE, message or self.label(StageId.COMPLETE), data)

    def error(self, message: str, data: Any = None) -> Optional[StreamEvent]:
        """Terminal failure. Keeps the cumulative percentage reached so far."""
        if self.is_terminal:
            return None
        self._state = TrackerState.ERROR
        text = message or ERROR_LABELS[self.language]
        return self._emit(EventType.ERROR, self._current, text, data)

    # -- snapshots ---------------------------------------------------------

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def estimated_remaining_ms(self) -> int:
        pct = self._percentage
        if pct <= 0 or pct >= 100:
            return 0
        return int(self.elapsed_ms() / pct * (100 - pct))

    def snapshot(self) -> ProgressState:
        return ProgressState(
            current_stage=self._current,
            active_stages=list(self._active),
            completed_stages=list(self._completed),
            percentage=self._percentage,
            message=self._message,
            elapsed_ms=self.elapsed_ms(),
            estimated_remaining_ms=self.estimated_remaining_ms(),
            errors=dict(self._errors),
        )


def render_progress(state: ProgressState, width: int = 30) -> str:
    """One-line text progress bar for terminals."""
    filled = int(width * state.percentage / 100)
    bar = "#" * filled + "-" * (width - filled)
    line = f"[{bar}] {state.percentage:3d}% {state.message}"
    if state.estimated_remaining_ms:
        line += f" (~{state.estimated_remaining_ms / 1000:.0f}s left)"
    if state.errors:
        line += f" [{len(state.errors)} degraded]"
    return line
