"""
TranscriptAssembler: final tokens -> speaker-attributed lines -> speaker names.

Grouping (per batch of final tokens):
- consecutive tokens of one speaker accumulate into one group;
- a speaker change closes the group and opens a new one;
- an endpoint closes the group and forces the *next* group onto a new line,
  even for the same speaker and even if it arrives in a later batch;
- the end of the batch closes whatever is open.
Closed groups go to TranscriptModel.append_or_add, so a speaker who keeps
talking across batches without an endpoint stays on one line.

Speaker resolution (per closed group of a known diarization id):
1. id already mapped to a name -> use it; maybe auto-learn.
2. manual enrolment pending for the id -> enrol once the id has enough audio.
3. otherwise identify against the registry once the id has enough audio; accept
   only a match above threshold whose name is not already taken by another id.
   Identification uses the newest SPEAKER_IDENTIFY_WINDOW_MS of the history, and
   everything heard up to the mapping counts as learned.

Auto-learning: unlearned segments of a mapped id are submitted together once they
reach the minimum duration, through the registry's validation gate. A rejection
means the mapping is probably wrong, so learning stops for that id.

A manual label replaces any earlier identification of the id, and the next group
of that id starts a new line. Identification never sets that boundary.

Embedding work runs as background asyncio tasks (at most one per id unless the
user enrols explicitly). Results are applied on the event loop thread, which is
the only writer of the session state below.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from voicetag.config import get_settings
from voicetag.errors import ValidationRejected, VoiceTagError
from voicetag.speakers.models import TimeRange, recent_ranges, total_duration_ms
from voicetag.speakers.voice_service import VoiceService
from voicetag.transcript.lines import TranscriptLine, TranscriptModel
from voicetag.transcript.tokens import UNKNOWN_SPEAKER, Token

logger = logging.getLogger(__name__)

LineCallback = Callable[[int, TranscriptLine], None]
PartialCallback = Callable[[str], None]
RenameCallback = Callable[[int, str], None]

SegmentKey = tuple[int, int, int]  # (speaker_id, start_ms, end_ms)


@dataclass
class PendingEnrollment:
    """Manual label waiting for the speaker to accumulate enough audio."""

    name: str
    ranges: list[TimeRange] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        return total_duration_ms(self.ranges)


@dataclass
class SpeakerSessionState:
    """Per-session speaker bookkeeping. Mutated only on the event loop thread."""

    names: dict[int, str] = field(default_factory=dict)
    pending: dict[int, PendingEnrollment] = field(default_factory=dict)
    history: dict[int, list[TimeRange]] = field(default_factory=dict)
    learned: set[SegmentKey] = field(default_factory=set)
    learning_disabled: set[int] = field(default_factory=set)
    identify_attempted_ms: dict[int, int] = field(default_factory=dict)
    rename_boundary: set[int] = field(default_factory=set)

    def record(self, speaker_id: int, time_range: TimeRange) -> bool:
        """Add a segment to the id's history (and pending enrolment). Returns False for duplicates."""
        ranges = self.history.setdefault(speaker_id, [])
        if time_range in ranges:
            return False
        ranges.append(time_range)
        pending = self.pending.get(speaker_id)
        if pending is not None and time_range not in pending.ranges:
            pending.ranges.append(time_range)
        return True

    def unlearned(self, speaker_id: int) -> list[TimeRange]:
        return [
            r
            for r in self.history.get(speaker_id, [])
            if (speaker_id, r.start_ms, r.end_ms) not in self.learned
        ]

    def mark_learned(self, speaker_id: int, ranges: Iterable[TimeRange]) -> None:
        self.learned.update((speaker_id, r.start_ms, r.end_ms) for r in ranges)

    def owner_of(self, name: str) -> int | None:
        """Speaker id that already holds name (mapped or pending), if any."""
        for sid, mapped in self.names.items():
            if mapped == name:
                return sid
        for sid, pending in self.pending.items():
            if pending.name == name:
                return sid
        return None


@dataclass
class _Group:
    speaker: int
    text: str
    start_ms: int
    end_ms: int
    new_line: bool


def group_tokens(tokens: Sequence[Token], force_new_line: bool) -> tuple[list[_Group], bool]:
    """
    Split final tokens into same-speaker groups.
    Returns (groups, force_new_line) where the flag carries an unconsumed endpoint to the next batch.
    """
    groups: list[_Group] = []
    current: _Group | None = None

    for tok in tokens:
        if tok.is_endpoint:
            if current is not None and current.text:
                groups.append(current)
            current = None
            force_new_line = True
        elif current is None or tok.speaker != current.speaker:
            if current is not None and current.text:
                groups.append(current)
            current = _Group(tok.speaker, tok.text, tok.start_ms, tok.end_ms, new_line=force_new_line)
            force_new_line = False
        else:
            current.text += tok.text
            current.end_ms = tok.end_ms

    if current is not None and current.text:
        groups.append(current)
    return groups, force_new_line


class TranscriptAssembler:
    """
    One per live session. process_batch() is called once per provider message, in
    arrival order; enrol() when the user labels a speaker.
    """

    def __init__(
        self,
        voice: VoiceService | None = None,
        transcript: TranscriptModel | None = None,
        *,
        min_audio_ms: int | None = None,
        identify_threshold: float | None = None,
        identify_window_ms: int | None = None,
        learn_min_similarity: float | None = None,
        on_line: LineCallback | None = None,
        on_partial: PartialCallback | None = None,
        on_rename: RenameCallback | None = None,
    ) -> None:
        settings = get_settings()
        self.voice = voice
        self.transcript = transcript if transcript is not None else TranscriptModel()
        self.state = SpeakerSessionState()
        self._min_audio_ms = min_audio_ms if min_audio_ms is not None else settings.SPEAKER_MIN_AUDIO_MS
        self._identify_threshold = (
            identify_threshold if identify_threshold is not None else settings.SPEAKER_IDENTIFY_THRESHOLD
        )
        self._learn_min_similarity = (
            learn_min_similarity if learn_min_similarity is not None else settings.SPEAKER_LEARN_MIN_SIMILARITY
        )
        self._identify_window_ms = (
            identify_window_ms if identify_window_ms is not None else settings.SPEAKER_IDENTIFY_WINDOW_MS
        )
        self._on_line = on_line
        self._on_partial = on_partial
        self._on_rename = on_rename

        self._force_new_line = False
        self._partial_line = ""
        self._tasks: set[asyncio.Task] = set()
        self._inflight: dict[int, set[asyncio.Task]] = {}

    # --- token processing ---

    def process_batch(self, finals: Sequence[Token], partials: Sequence[Token] = ()) -> list[TranscriptLine]:
        """
        Merge one batch into the transcript. Returns the lines created or extended,
        in order. Speaker work triggered here runs in the background.
        """
        groups, self._force_new_line = group_tokens(finals, self._force_new_line)
        touched: list[TranscriptLine] = []
        for group in groups:
            line = self._apply_group(group)
            if line is not None and (not touched or touched[-1] is not line):
                touched.append(line)

        partial = self._partial_line
        if finals:
            partial = ""
        if partials:
            partial = "".join(t.text for t in partials)
        if partial != self._partial_line:
            self._partial_line = partial
            if self._on_partial:
                self._on_partial(partial)
        return touched

    def _apply_group(self, group: _Group) -> TranscriptLine | None:
        sid = group.speaker
        force = group.new_line
        if sid in self.state.rename_boundary:
            self.state.rename_boundary.discard(sid)
            force = True
        time_range = TimeRange(group.start_ms, group.end_ms)

        result = self.transcript.append_or_add(
            group.text,
            sid,
            time_range,
            force_new_line=force,
            speaker_name=self.display_name(sid),
        )
        if result is None:
            return None
        index, line = result
        if self._on_line:
            self._on_line(index, line)

        if sid != UNKNOWN_SPEAKER:
            self.state.record(sid, time_range)
            self._resolve(sid)
        return line

    # --- speaker resolution ---

    def display_name(self, speaker_id: int) -> str | None:
        """Resolved or user-given name for an id; None while it is still anonymous."""
        if speaker_id in self.state.names:
            return self.state.names[speaker_id]
        pending = self.state.pending.get(speaker_id)
        return pending.name if pending is not None else None

    def _resolve(self, sid: int) -> None:
        if self.voice is None:
            return
        if sid in self.state.names:
            self._maybe_auto_learn(sid)
            return
        pending = self.state.pending.get(sid)
        if pending is not None:
            if pending.duration_ms >= self._min_audio_ms and not self._busy(sid):
                self._spawn(sid, self._complete_enrolment(sid))
            return
        self._maybe_identify(sid)

    def _maybe_identify(self, sid: int) -> None:
        ranges = list(self.state.history.get(sid, []))
        total = total_duration_ms(ranges)
        if total < self._min_audio_ms or self._busy(sid):
            return
        if self.state.identify_attempted_ms.get(sid) == total:
            return  # nothing new since the last attempt
        self.state.identify_attempted_ms[sid] = total
        self._spawn(sid, self._identify(sid, ranges))

    async def _identify(self, sid: int, ranges: list[TimeRange]) -> None:
        try:
            window = recent_ranges(ranges, self._identify_window_ms)
            match = await self.voice.identify_ranges(window, self._identify_threshold)
        except VoiceTagError as e:
            logger.warning("Identification skipped for speaker %d: %s", sid, e)
            return
        if match is None:
            logger.debug("Speaker %d not recognised (%d ms of audio)", sid, total_duration_ms(ranges))
            return
        if sid in self.state.names or sid in self.state.pending:
            return  # labelled while we were busy
        owner = self.state.owner_of(match.name)
        if owner is not None and owner != sid:
            logger.info(
                "Speaker %d matched %r (%.3f) but that name belongs to speaker %d; ignoring",
                sid,
                match.name,
                match.score,
                owner,
            )
            return
        logger.info("Speaker %d identified as %r (score %.3f)", sid, match.name, match.score)
        # Audio heard before the mapping is not fed back into the voiceprint
        self.state.mark_learned(sid, ranges)
        self._assign(sid, match.name)

    def _maybe_auto_learn(self, sid: int) -> None:
        if sid in self.state.learning_disabled or self._busy(sid):
            return
        segments = self.state.unlearned(sid)
        if total_duration_ms(segments) < self._min_audio_ms:
            return
        self._spawn(sid, self._auto_learn(sid, self.state.names[sid], segments))

    async def _auto_learn(self, sid: int, name: str, segments: list[TimeRange]) -> None:
        try:
            await self.voice.enroll_ranges_with_validation(name, segments, self._learn_min_similarity)
            logger.info("Auto-learned %d ms for %r from speaker %d", total_duration_ms(segments), name, sid)
        except ValidationRejected as e:
            self.state.learning_disabled.add(sid)
            logger.warning("Auto-learning disabled for speaker %d: %s", sid, e)
        except VoiceTagError as e:
            logger.warning("Auto-learning skipped for speaker %d: %s", sid, e)
        finally:
            # Never submit the same audio twice, whatever the outcome
            self.state.mark_learned(sid, segments)

    def enrol(self, name: str, speaker_id: int, time_range: TimeRange | None = None) -> None:
        """
        Label a diarized speaker. With enough audio for the id the voiceprint is
        enrolled right away; otherwise the label waits until enough audio arrives.
        Lines of that speaker show the new name immediately.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("name must not be empty")
        if speaker_id == UNKNOWN_SPEAKER:
            raise ValueError("cannot enrol the unknown speaker")
        if time_range is not None and time_range.duration_ms > 0:
            self.state.record(speaker_id, time_range)

        ranges = list(self.state.history.get(speaker_id, []))
        # The new label replaces any earlier identification until its enrolment completes
        self.state.names.pop(speaker_id, None)
        self.state.pending[speaker_id] = PendingEnrollment(name=name, ranges=ranges)
        self.state.rename_boundary.add(speaker_id)
        self._rename_lines(speaker_id, name)
        logger.info("Enrolment requested: speaker %d as %r (%d ms so far)", speaker_id, name, total_duration_ms(ranges))

        if self.voice is not None and total_duration_ms(ranges) >= self._min_audio_ms:
            self._spawn(speaker_id, self._complete_enrolment(speaker_id))

    async def _complete_enrolment(self, sid: int) -> None:
        pending = self.state.pending.get(sid)
        if pending is None:
            return
        ranges = list(pending.ranges)
        try:
            await self.voice.enroll_ranges(pending.name, ranges)
        except VoiceTagError as e:
            logger.warning("Enrolment of %r for speaker %d failed, will retry: %s", pending.name, sid, e)
            return
        if self.state.pending.get(sid) is not pending:
            return  # relabelled meanwhile; the newer label wins
        del self.state.pending[sid]
        self.state.mark_learned(sid, ranges)
        self.state.learning_disabled.discard(sid)
        logger.info("Speaker %d enrolled as %r (%d ms)", sid, pending.name, total_duration_ms(ranges))
        self._assign(sid, pending.name)

    def _assign(self, sid: int, name: str) -> None:
        self.state.names[sid] = name
        self._rename_lines(sid, name)

    def _rename_lines(self, sid: int, name: str) -> None:
        changed = self.transcript.update_name(name, sid)
        if changed and self._on_rename:
            self._on_rename(sid, name)

    # --- background work ---

    def _busy(self, sid: int) -> bool:
        return bool(self._inflight.get(sid))

    def _spawn(self, sid: int, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No event loop; speaker work for %d skipped", sid)
            return
        task = loop.create_task(coro, name=f"speaker-{sid}")
        self._tasks.add(task)
        self._inflight.setdefault(sid, set()).add(task)
        task.add_done_callback(lambda t, sid=sid: self._on_task_done(sid, t))

    def _on_task_done(self, sid: int, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        tasks = self._inflight.get(sid)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._inflight[sid]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Speaker task for %d crashed", sid, exc_info=exc)

    async def drain(self) -> None:
        """Wait for all in-flight speaker work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel(self) -> None:
        """Cancel in-flight speaker work (session stop) and wait for it to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- views ---

    @property
    def lines(self) -> list[TranscriptLine]:
        return self.transcript.lines

    @property
    def partial_line(self) -> str:
        return self._partial_line

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)
