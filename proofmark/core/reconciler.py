"""
Suggestion reconciler.

Keeps the marks in a :class:`DocumentSurface` in sync with the current
suggestion set. Every change goes through ``apply_event`` which runs one
serialized update cycle:

- ``SuggestionsUpdated``: diff by id against the materialized marks, unwrap
  what disappeared, re-validate and materialize what is new.
- ``UserApplied`` / ``UserDismissed``: user actions on one suggestion.
- ``DocumentEdited``: a user edit; marks touched by it are invalidated and
  the other suggestions shift.

Per suggestion id the lifecycle is
``absent -> materialized -> (dismissed | applied | invalidated) -> absent``.
"""

import asyncio
import dataclasses
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Protocol

from proofmark.core.document_tree import DocumentSurface, Selection, TextEdit
from proofmark.core.errors import RemoteAnalysisError, StaleSuggestionError, ValidationError
from proofmark.core.logging import get_logger
from proofmark.core.remote_refiner import RemoteRefiner
from proofmark.core.schemas_grammar import (
    SENTENCE_LEVEL_TYPES,
    EditorSuggestion,
    Suggestion,
    TextRange,
)
from proofmark.core.text_metrics import sentence_bounds

logger = get_logger(__name__)

CATEGORY_ORDER = ("correctness", "clarity", "engagement", "delivery")
LOW_CONFIDENCE_THRESHOLD = 0.8


# =============================================================================
# Events and outcomes
# =============================================================================


@dataclass(frozen=True)
class SuggestionsUpdated:
    suggestions: list[Suggestion]


@dataclass(frozen=True)
class UserApplied:
    suggestion_id: str


@dataclass(frozen=True)
class UserDismissed:
    suggestion_id: str


@dataclass(frozen=True)
class DocumentEdited:
    start: int
    end: int
    inserted_length: int

    @classmethod
    def from_edit(cls, edit: TextEdit) -> "DocumentEdited":
        return cls(edit.start, edit.end, edit.inserted_length)


@dataclass(frozen=True)
class SuggestionRefined:
    """Replace one suggestion by its regenerated version."""

    previous_id: str
    suggestion: Suggestion


ReconcileEvent = SuggestionsUpdated | UserApplied | UserDismissed | DocumentEdited | SuggestionRefined


@dataclass
class ReconcileOutcome:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    invalidated: list[str] = field(default_factory=list)
    applied: str | None = None
    dismissed: str | None = None
    refined: str | None = None
    edit: TextEdit | None = None
    deferred: bool = False


@dataclass
class ReconcilerStats:
    inserts: int = 0
    unwraps: int = 0
    stale_dropped: int = 0
    overlap_dropped: int = 0
    invalidated: int = 0
    applied: int = 0
    dismissed: int = 0
    refined_suggestions: int = 0


# =============================================================================
# Matching and overlap policy
# =============================================================================


def locate_suggestion(text: str, suggestion: Suggestion) -> TextRange | None:
    """
    Find where ``suggestion.original`` lives in ``text`` now.

    Tries the suggestion's own range first, then the occurrence of
    ``original`` closest to the old start. None when it no longer occurs.
    """
    current = suggestion.range
    if text[current.start : current.end] == suggestion.original:
        return current

    occurrences = []
    position = text.find(suggestion.original)
    while position != -1:
        occurrences.append(position)
        position = text.find(suggestion.original, position + 1)

    if not occurrences:
        return None

    best = min(occurrences, key=lambda p: (abs(p - current.start), p))
    return TextRange(start=best, end=best + len(suggestion.original))


def needs_refinement(suggestion: Suggestion) -> bool:
    """Whether a suggestion qualifies for automatic regeneration."""
    if suggestion.type == "spelling":
        return suggestion.confidence < LOW_CONFIDENCE_THRESHOLD or not suggestion.proposed
    if suggestion.type in SENTENCE_LEVEL_TYPES:
        return not suggestion.proposed or suggestion.proposed == suggestion.original
    return False


class OverlapPolicy(Protocol):
    def resolve(
        self,
        candidates: list[tuple[EditorSuggestion, list[TextRange]]],
        occupied: list[TextRange],
    ) -> tuple[list[tuple[EditorSuggestion, TextRange]], list[EditorSuggestion]]:
        """Pick a non-overlapping region per candidate; return (accepted, rejected)."""
        ...


class FirstWinsOverlapPolicy:
    """
    Earliest-starting suggestion wins.

    Candidates are taken in ``range.start`` order and each may offer several
    regions in preference order (a widened sentence, then the flagged words);
    the first region clear of everything accepted so far is used.
    """

    def resolve(
        self,
        candidates: list[tuple[EditorSuggestion, list[TextRange]]],
        occupied: list[TextRange],
    ) -> tuple[list[tuple[EditorSuggestion, TextRange]], list[EditorSuggestion]]:
        taken = list(occupied)
        accepted: list[tuple[EditorSuggestion, TextRange]] = []
        rejected: list[EditorSuggestion] = []

        ordered = sorted(candidates, key=lambda c: (c[0].range.start, c[0].range.end))
        for suggestion, regions in ordered:
            region = next((r for r in regions if not any(r.overlaps(t) for t in taken)), None)
            if region is None:
                rejected.append(suggestion)
                continue
            taken.append(region)
            accepted.append((suggestion, region))
        return accepted, rejected


# =============================================================================
# Reconciler
# =============================================================================


class Reconciler:
    """
    State machine that owns suggestion id -> mark node id.

    Args:
        document: Document hosting the marks
        refiner: Remote refiner used for regeneration (optional)
        overlap_policy: Conflict resolution between suggestions
        invalidation_overlap_ratio: Share of a pending suggestion's range an
            edit must cover before the suggestion is dropped
        auto_regenerate_delay: Seconds before automatic regeneration runs
        regenerate_timeout: Seconds to wait on the refiner (None = no limit)
        on_reanalyze: Called when marks were invalidated by a user edit
    """

    def __init__(
        self,
        document: DocumentSurface,
        refiner: RemoteRefiner | None = None,
        overlap_policy: OverlapPolicy | None = None,
        invalidation_overlap_ratio: float = 0.5,
        auto_regenerate_delay: float = 1.0,
        regenerate_timeout: float | None = None,
        on_reanalyze: Callable[[], None] | None = None,
    ):
        self.document = document
        self.refiner = refiner
        self.overlap_policy = overlap_policy or FirstWinsOverlapPolicy()
        self.invalidation_overlap_ratio = invalidation_overlap_ratio
        self.auto_regenerate_delay = auto_regenerate_delay
        self.regenerate_timeout = regenerate_timeout
        self.on_reanalyze = on_reanalyze

        self.stats = ReconcilerStats()
        self._suggestions: dict[str, EditorSuggestion] = {}
        self._materialized: dict[str, int] = {}
        self._regions: dict[str, TextRange] = {}
        self._dismissed: set[str] = set()

        self._applying = False
        self._deferred: deque[ReconcileEvent] = deque()

        self._auto_attempted: set[str] = set()
        self._auto_tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_applying(self) -> bool:
        return self._applying

    def active_suggestions(self) -> list[EditorSuggestion]:
        return sorted(self._suggestions.values(), key=lambda s: (s.range.start, s.range.end))

    def get_suggestion(self, suggestion_id: str) -> EditorSuggestion | None:
        return self._suggestions.get(suggestion_id)

    def materialized_ids(self) -> set[str]:
        return set(self._materialized)

    def mark_region(self, suggestion_id: str) -> TextRange | None:
        return self._regions.get(suggestion_id)

    def categorized(self) -> dict[str, list[EditorSuggestion]]:
        buckets: dict[str, list[EditorSuggestion]] = {category: [] for category in CATEGORY_ORDER}
        for suggestion in self.active_suggestions():
            buckets[suggestion.category].append(suggestion)
        return buckets

    def set_hovered(self, suggestion_id: str, hovered: bool) -> None:
        for sid, suggestion in self._suggestions.items():
            if sid == suggestion_id:
                suggestion.is_hovered = hovered
            elif hovered:
                suggestion.is_hovered = False

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def apply_event(self, event: ReconcileEvent) -> ReconcileOutcome:
        """
        Run one update cycle for ``event``.

        Events arriving while a cycle is running are queued and processed
        once it finishes.
        """
        if self._applying:
            logger.debug(f"Deferring {type(event).__name__} until current cycle completes")
            self._deferred.append(event)
            return ReconcileOutcome(deferred=True)

        try:
            return self._run_cycle(event)
        finally:
            self._drain_deferred()

    def apply_suggestion(self, suggestion_id: str) -> ReconcileOutcome:
        """
        Apply one suggestion.

        Raises StaleSuggestionError when it no longer matches, and
        ValidationError when it carries no replacement text.
        """
        return self.apply_event(UserApplied(suggestion_id))

    def dismiss_suggestion(self, suggestion_id: str) -> ReconcileOutcome:
        return self.apply_event(UserDismissed(suggestion_id))

    def handle_document_change(self, edit: TextEdit) -> ReconcileOutcome | None:
        """Document listener: turns user edits into ``DocumentEdited`` events."""
        if edit.origin == "engine" or self._applying:
            return None
        return self.apply_event(DocumentEdited.from_edit(edit))

    def _run_cycle(self, event: ReconcileEvent) -> ReconcileOutcome:
        self._applying = True
        selection = self.document.get_selection()
        outcome = ReconcileOutcome()
        try:
            if isinstance(event, SuggestionsUpdated):
                self._on_suggestions_updated(event, outcome)
            elif isinstance(event, UserApplied):
                self._on_user_applied(event, outcome)
            elif isinstance(event, UserDismissed):
                self._on_user_dismissed(event, outcome)
            elif isinstance(event, DocumentEdited):
                self._on_document_edited(event, outcome)
            elif isinstance(event, SuggestionRefined):
                self._on_suggestion_refined(event, outcome)
            else:
                raise TypeError(f"Unknown reconcile event: {event!r}")
        finally:
            self._restore_selection(selection, outcome.edit)
            self._applying = False

        if outcome.invalidated and isinstance(event, DocumentEdited) and self.on_reanalyze:
            self.on_reanalyze()
        return outcome

    def _drain_deferred(self) -> None:
        while self._deferred and not self._applying:
            event = self._deferred.popleft()
            try:
                self._run_cycle(event)
            except (StaleSuggestionError, ValidationError) as e:
                logger.info(f"Deferred event skipped: {e}")

    def _restore_selection(self, selection: Selection | None, edit: TextEdit | None) -> None:
        if selection is None:
            return
        anchor, focus = selection.anchor, selection.focus
        if edit is not None:
            anchor, focus = edit.map_offset(anchor), edit.map_offset(focus)
        length = len(self.document.text_content())
        self.document.set_selection(Selection(min(anchor, length), min(focus, length)))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_suggestions_updated(self, event: SuggestionsUpdated, outcome: ReconcileOutcome) -> None:
        incoming: dict[str, EditorSuggestion] = {}
        for suggestion in event.suggestions:
            if suggestion.id in self._dismissed or suggestion.id in incoming:
                continue
            incoming[suggestion.id] = EditorSuggestion.from_suggestion(suggestion)

        previous = set(self._materialized)
        to_remove = [sid for sid in self._materialized if sid not in incoming]
        to_add = [sid for sid in incoming if sid not in previous]

        for sid in to_remove:
            self._remove_mark(sid)
            outcome.removed.append(sid)

        # Materialized survivors keep their tracked state
        self._suggestions = {
            sid: self._suggestions.get(sid, suggestion) if sid in previous else suggestion
            for sid, suggestion in incoming.items()
        }

        self._materialize([incoming[sid] for sid in to_add], outcome)

        if outcome.added or outcome.removed:
            logger.info(
                f"Reconciled suggestions: +{len(outcome.added)} -{len(outcome.removed)} "
                f"dropped={len(outcome.dropped)} active={len(self._suggestions)}"
            )

    def _on_user_applied(self, event: UserApplied, outcome: ReconcileOutcome) -> None:
        sid = event.suggestion_id
        suggestion = self._suggestions.get(sid)
        if suggestion is None:
            raise StaleSuggestionError(sid, "")

        # Advisory findings (passive voice, long sentences) have no rewrite
        if not suggestion.proposed:
            raise ValidationError(
                f"Suggestion {sid} has no replacement to apply",
                details={"suggestionId": sid},
            )

        text = self.document.text_content()
        target = locate_suggestion(text, suggestion)
        if target is None:
            self._drop(sid)
            self.stats.stale_dropped += 1
            outcome.dropped.append(sid)
            logger.info(f"Suggestion {sid} is stale, dropping")
            raise StaleSuggestionError(sid, suggestion.original)

        snapshot = self.document.checkpoint()
        state = self._snapshot_state()
        try:
            self._drop(sid)
            edit = self.document.replace_text(target.start, target.end, suggestion.proposed, origin="engine")
            self._shift_for_edit(edit, outcome)
        except Exception:
            self.document.restore(snapshot)
            self._restore_state(state)
            raise

        outcome.applied = sid
        outcome.edit = edit
        self.stats.applied += 1
        logger.info(f"Applied suggestion {sid}: '{suggestion.original}' -> '{suggestion.proposed}'")

    def _on_user_dismissed(self, event: UserDismissed, outcome: ReconcileOutcome) -> None:
        sid = event.suggestion_id
        self._dismissed.add(sid)
        suggestion = self._suggestions.get(sid)
        if suggestion is None:
            return

        suggestion.is_dismissed = True
        self._drop(sid)
        outcome.dismissed = sid
        self.stats.dismissed += 1
        logger.info(f"Dismissed suggestion {sid}")

    def _on_document_edited(self, event: DocumentEdited, outcome: ReconcileOutcome) -> None:
        edit = TextEdit(event.start, event.end, event.inserted_length)
        self._shift_for_edit(edit, outcome)

    def _on_suggestion_refined(self, event: SuggestionRefined, outcome: ReconcileOutcome) -> None:
        old = self._suggestions.get(event.previous_id)
        if old is None:
            return

        snapshot = self.document.checkpoint()
        state = self._snapshot_state()

        replacement = EditorSuggestion.from_suggestion(event.suggestion)
        was_materialized = event.previous_id in self._materialized
        self._drop(event.previous_id)
        self._suggestions[replacement.id] = replacement

        self._materialize([replacement], outcome)
        placed = replacement.id in self._materialized
        if replacement.id not in self._suggestions or (was_materialized and not placed):
            logger.info(f"Refined suggestion for {event.previous_id} could not be placed, keeping original")
            self.document.restore(snapshot)
            self._restore_state(state)
            outcome.added.clear()
            outcome.dropped.clear()
            return

        outcome.removed.append(event.previous_id)
        outcome.refined = replacement.id
        self.stats.refined_suggestions += 1
        logger.info(f"Replaced suggestion {event.previous_id} with refined {replacement.id}")

    # ------------------------------------------------------------------
    # Mark bookkeeping
    # ------------------------------------------------------------------

    def _materialize(self, candidates: list[EditorSuggestion], outcome: ReconcileOutcome) -> None:
        text = self.document.text_content()

        located: list[tuple[EditorSuggestion, list[TextRange]]] = []
        for suggestion in candidates:
            target = locate_suggestion(text, suggestion)
            if target is None:
                self._suggestions.pop(suggestion.id, None)
                self.stats.stale_dropped += 1
                outcome.dropped.append(suggestion.id)
                logger.debug(f"Stale suggestion {suggestion.id} dropped before materialization")
                continue

            suggestion.range = target
            regions = [target]
            if suggestion.type in SENTENCE_LEVEL_TYPES:
                start, end = sentence_bounds(text, target.start, target.end)
                widened = TextRange(start=start, end=end)
                if widened != target:
                    regions.insert(0, widened)
            located.append((suggestion, regions))

        occupied = list(self._regions.values())
        accepted, rejected = self.overlap_policy.resolve(located, occupied)

        for suggestion in rejected:
            suggestion.is_visible = False
            self.stats.overlap_dropped += 1
            logger.debug(f"Suggestion {suggestion.id} overlaps an accepted one, not materialized this pass")

        for suggestion, region in accepted:
            if self._wrap_region(suggestion, region):
                outcome.added.append(suggestion.id)
            else:
                self._suggestions.pop(suggestion.id, None)
                self.stats.stale_dropped += 1
                outcome.dropped.append(suggestion.id)

    def _wrap_region(self, suggestion: EditorSuggestion, region: TextRange) -> bool:
        """Wrap ``region`` in a mark for ``suggestion``. All-or-nothing."""
        snapshot = self.document.checkpoint()
        try:
            self._ensure_boundary(region.start)
            self._ensure_boundary(region.end)
            node_ids = [
                s.node_id
                for s in self.document.text_segments()
                if s.start >= region.start and s.end <= region.end and s.end > s.start
            ]
            mark_id = self.document.wrap(node_ids, suggestion.id, suggestion.type)

            expected = self.document.text_content()[region.start : region.end]
            if self.document.mark_text(mark_id) != expected:
                raise ValueError("mark text does not match document text")
            if region == suggestion.range and expected != suggestion.original:
                raise ValueError("mark text does not match suggestion")
        except (ValueError, KeyError) as e:
            self.document.restore(snapshot)
            logger.warning(f"Could not materialize suggestion {suggestion.id}: {e}")
            return False

        self._materialized[suggestion.id] = mark_id
        self._regions[suggestion.id] = region
        suggestion.is_visible = True
        self.stats.inserts += 1
        return True

    def _ensure_boundary(self, offset: int) -> None:
        for segment in self.document.text_segments():
            if segment.start < offset < segment.end:
                self.document.split_text(segment.node_id, offset - segment.start)
                return

    def _remove_mark(self, suggestion_id: str) -> None:
        mark_id = self._materialized.pop(suggestion_id, None)
        self._regions.pop(suggestion_id, None)
        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is not None:
            suggestion.is_visible = False
        if mark_id is None:
            return
        try:
            self.document.unwrap(mark_id)
        except KeyError:
            # Mark vanished with the text it covered
            return
        self.stats.unwraps += 1

    def _drop(self, suggestion_id: str) -> None:
        self._remove_mark(suggestion_id)
        self._suggestions.pop(suggestion_id, None)

    def _shift_for_edit(self, edit: TextEdit, outcome: ReconcileOutcome) -> None:
        """Move tracked ranges past ``edit``; invalidate what it touched."""
        for sid in list(self._materialized):
            region = self._regions[sid]
            if self._edit_touches(edit, region):
                self._drop(sid)
                self.stats.invalidated += 1
                outcome.invalidated.append(sid)
                logger.debug(f"Edit inside mark {sid} invalidated it")
                continue
            if region.start >= edit.end:
                self._regions[sid] = region.shifted(edit.delta)
                suggestion = self._suggestions[sid]
                suggestion.range = suggestion.range.shifted(edit.delta)

        for sid, suggestion in list(self._suggestions.items()):
            if sid in self._materialized:
                continue
            current = suggestion.range
            if current.end <= edit.start:
                continue
            if current.start >= edit.end:
                suggestion.range = current.shifted(edit.delta)
                continue

            covered = max(0, min(edit.end, current.end) - max(edit.start, current.start))
            if covered / current.length >= self.invalidation_overlap_ratio:
                self._suggestions.pop(sid)
                self.stats.invalidated += 1
                outcome.invalidated.append(sid)
                continue

            new_start = current.start if current.start < edit.start else edit.start + edit.inserted_length
            new_end = current.end + edit.delta if current.end >= edit.end else edit.start + edit.inserted_length
            if new_end <= new_start:
                self._suggestions.pop(sid)
                self.stats.invalidated += 1
                outcome.invalidated.append(sid)
                continue
            suggestion.range = TextRange(start=new_start, end=new_end)

    @staticmethod
    def _edit_touches(edit: TextEdit, region: TextRange) -> bool:
        if edit.start == edit.end:
            return region.start < edit.start < region.end
        return edit.start < region.end and edit.end > region.start

    def _snapshot_state(self) -> tuple:
        return (
            {sid: s.model_copy() for sid, s in self._suggestions.items()},
            dict(self._materialized),
            dict(self._regions),
            dataclasses.replace(self.stats),
        )

    def _restore_state(self, state: tuple) -> None:
        self._suggestions, self._materialized, self._regions, self.stats = state

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    async def regenerate(self, suggestion_id: str, automatic: bool = False) -> ReconcileOutcome | None:
        """
        Ask the remote refiner for a better version of one suggestion.

        On success the old suggestion and its mark are replaced atomically.
        On failure, timeout or no improvement nothing changes. Manual calls
        re-raise remote errors; automatic ones only log them.
        """
        if self.refiner is None:
            logger.debug("No remote refiner configured, skipping regeneration")
            return None

        if automatic:
            if suggestion_id in self._auto_attempted:
                return None
            self._auto_attempted.add(suggestion_id)

        suggestion = self._suggestions.get(suggestion_id)
        if suggestion is None:
            return None

        text = self.document.text_content()
        try:
            refine = self.refiner.refine(text, suggestion)
            if self.regenerate_timeout is not None:
                result = await asyncio.wait_for(refine, timeout=self.regenerate_timeout)
            else:
                result = await refine
        except asyncio.TimeoutError:
            logger.warning(f"Regeneration of {suggestion_id} timed out")
            if automatic:
                return None
            raise
        except RemoteAnalysisError as e:
            logger.warning(f"Regeneration of {suggestion_id} failed ({e.category}): {e.message}")
            if automatic:
                return None
            raise

        if not result:
            return None

        if suggestion_id not in self._suggestions or self.document.text_content() != text:
            logger.info(f"Document changed while regenerating {suggestion_id}, discarding result")
            return None

        refined = result[0]
        # A refined suggestion is never auto-regenerated again
        self._auto_attempted.add(refined.id)
        outcome = self.apply_event(SuggestionRefined(suggestion_id, refined))
        return outcome if outcome.refined else None

    def schedule_auto_regeneration(self) -> list[str]:
        """Queue automatic regeneration for weak suggestions. Returns the ids queued."""
        if self.refiner is None:
            return []

        scheduled = []
        for suggestion in self.active_suggestions():
            sid = suggestion.id
            if sid in self._auto_attempted or sid in self._auto_tasks or not needs_refinement(suggestion):
                continue
            task = asyncio.get_running_loop().create_task(self._auto_regenerate(sid))
            self._auto_tasks[sid] = task
            task.add_done_callback(lambda _t, sid=sid: self._auto_tasks.pop(sid, None))
            scheduled.append(sid)

        if scheduled:
            logger.debug(f"Scheduled automatic regeneration for {len(scheduled)} suggestions")
        return scheduled

    async def _auto_regenerate(self, suggestion_id: str) -> None:
        await asyncio.sleep(self.auto_regenerate_delay)
        try:
            await self.regenerate(suggestion_id, automatic=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Automatic regeneration of {suggestion_id} failed: {e}")

    async def aclose(self) -> None:
        tasks = list(self._auto_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._auto_tasks.clear()
