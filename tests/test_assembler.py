"""TranscriptAssembler: grouping, identification, manual enrolment, auto-learning."""
import pytest

from voicetag.errors import AudioUnavailable, ValidationRejected
from voicetag.speakers import IdentifyResult, TimeRange
from voicetag.transcript import Token, TranscriptAssembler


class _FakeVoice:
    """Stands in for VoiceService; records every request."""

    def __init__(self) -> None:
        self.identify_result: IdentifyResult | None = None
        self.identify_calls: list[list[TimeRange]] = []
        self.enroll_calls: list[tuple[str, list[TimeRange]]] = []
        self.learn_calls: list[tuple[str, list[TimeRange]]] = []
        self.reject_learning = False
        self.fail_enrol = False

    async def identify_ranges(self, ranges, threshold=None):
        self.identify_calls.append(list(ranges))
        return self.identify_result

    async def enroll_ranges(self, name, ranges):
        if self.fail_enrol:
            raise AudioUnavailable(ranges[0].start_ms, ranges[-1].end_ms, "evicted")
        self.enroll_calls.append((name, list(ranges)))

    async def enroll_ranges_with_validation(self, name, ranges, min_similarity=None):
        self.learn_calls.append((name, list(ranges)))
        if self.reject_learning:
            raise ValidationRejected(name, 0.31, 0.12)


def tok(text: str, speaker: int, start_ms: int = 0, end_ms: int = 0) -> Token:
    return Token(text=text, is_final=True, speaker=speaker, start_ms=start_ms, end_ms=end_ms)


END = Token.endpoint()


def _texts(assembler: TranscriptAssembler) -> list[str]:
    return [line.text for line in assembler.lines]


def _assembler(voice=None, **kwargs) -> TranscriptAssembler:
    return TranscriptAssembler(voice, min_audio_ms=5000, **kwargs)


# --- grouping ---


def test_endpoint_splits_same_speaker_into_two_lines():
    assembler = _assembler()

    assembler.process_batch([tok("Hi", 1, 0, 300), tok(" there", 1, 300, 600), END, tok("ok", 1, 900, 1100)])

    assert _texts(assembler) == ["Hi there", "ok"]
    assert [line.speaker_id for line in assembler.lines] == [1, 1]


def test_endpoint_at_end_of_batch_applies_to_next_batch():
    assembler = _assembler()

    assembler.process_batch([tok("Hi", 1, 0, 300), END])
    assembler.process_batch([tok("ok", 1, 900, 1100)])

    assert _texts(assembler) == ["Hi", "ok"]


def test_same_speaker_continues_line_across_batches():
    assembler = _assembler()

    assembler.process_batch([tok("Hi", 1, 0, 300)])
    assembler.process_batch([tok(" there", 1, 300, 600)])

    assert _texts(assembler) == ["Hi there"]
    assert (assembler.lines[0].start_ms, assembler.lines[0].end_ms) == (0, 600)


def test_speaker_change_starts_new_line():
    assembler = _assembler()

    assembler.process_batch([tok("a", 1, 0, 100), tok("b", 2, 100, 200), tok("c", 1, 200, 300)])

    assert _texts(assembler) == ["a", "b", "c"]
    assert [line.speaker_name for line in assembler.lines] == ["Speaker 1", "Speaker 2", "Speaker 1"]


def test_unknown_speaker_lines_are_not_tracked():
    assembler = _assembler()

    assembler.process_batch([tok("hm", -1, 0, 8000)])

    assert assembler.lines[0].speaker_name == "Unknown"
    assert assembler.state.history == {}


def test_partial_line_and_callbacks():
    lines, partials = [], []
    assembler = _assembler(on_line=lambda i, line: lines.append((i, line.text)), on_partial=partials.append)

    assembler.process_batch([], [Token("how", False, 1), Token(" are", False, 1)])
    assert assembler.partial_line == "how are"

    assembler.process_batch([tok("how", 1, 0, 200), tok(" are", 1, 200, 400)])
    assembler.process_batch([tok(" you", 1, 400, 600)], [Token(" to", False, 1)])

    assert lines == [(0, "how are"), (0, "how are you")]
    assert partials == ["how are", "", " to"]


# --- identification ---


@pytest.mark.asyncio
async def test_identification_waits_for_enough_audio_then_renames():
    voice = _FakeVoice()
    voice.identify_result = IdentifyResult("Alice", 0.91)
    renames = []
    assembler = _assembler(voice, on_rename=lambda sid, name: renames.append((sid, name)))

    assembler.process_batch([tok("Hello", 1, 0, 3000)])
    await assembler.drain()
    assert voice.identify_calls == []

    assembler.process_batch([tok(" again", 1, 3000, 5200)])
    await assembler.drain()

    assert voice.identify_calls == [[TimeRange(0, 3000), TimeRange(3000, 5200)]]
    assert assembler.lines[0].speaker_name == "Alice"
    assert assembler.state.names == {1: "Alice"}
    assert renames == [(1, "Alice")]


@pytest.mark.asyncio
async def test_no_match_retries_only_after_history_grows():
    voice = _FakeVoice()
    assembler = _assembler(voice)

    assembler.process_batch([tok("a", 1, 0, 5200)])
    await assembler.drain()
    assembler.process_batch([tok("b", 1, 5200, 5200)])
    await assembler.drain()
    assert len(voice.identify_calls) == 1

    assembler.process_batch([tok("c", 1, 5200, 6000)])
    await assembler.drain()
    assert len(voice.identify_calls) == 2
    assert assembler.lines[0].speaker_name == "Speaker 1"


@pytest.mark.asyncio
async def test_name_already_used_by_another_speaker_is_not_reassigned():
    voice = _FakeVoice()
    voice.identify_result = IdentifyResult("Alice", 0.88)
    assembler = _assembler(voice)

    assembler.process_batch([tok("one", 1, 0, 5200), tok("two", 2, 5200, 10400)])
    await assembler.drain()

    assert assembler.state.names == {1: "Alice"}
    assert [line.speaker_name for line in assembler.lines] == ["Alice", "Speaker 2"]


@pytest.mark.asyncio
async def test_identification_uses_newest_audio_only():
    voice = _FakeVoice()
    assembler = _assembler(voice, identify_window_ms=6000)

    for start in (0, 4000, 8000):
        assembler.process_batch([tok("x", 1, start, start + 4000)])
        await assembler.drain()

    assert voice.identify_calls == [
        [TimeRange(0, 4000), TimeRange(4000, 8000)],
        [TimeRange(4000, 8000), TimeRange(8000, 12000)],
    ]


def test_without_event_loop_speaker_work_is_skipped():
    voice = _FakeVoice()
    assembler = _assembler(voice)

    assembler.process_batch([tok("long", 1, 0, 9000)])

    assert voice.identify_calls == []
    assert assembler.pending_tasks == 0


# --- auto-learning ---


async def _identified_as_alice(voice: _FakeVoice) -> TranscriptAssembler:
    voice.identify_result = IdentifyResult("Alice", 0.9)
    assembler = _assembler(voice)
    assembler.process_batch([tok("a", 1, 0, 5200)])
    await assembler.drain()
    assert assembler.state.names == {1: "Alice"}
    return assembler


@pytest.mark.asyncio
async def test_auto_learn_submits_each_segment_once():
    voice = _FakeVoice()
    assembler = await _identified_as_alice(voice)

    assembler.process_batch([tok("b", 1, 5200, 5500)])
    await assembler.drain()
    assembler.process_batch([tok("c", 1, 5500, 8000)])
    await assembler.drain()
    assert voice.learn_calls == []

    assembler.process_batch([tok("d", 1, 8000, 11000)])
    await assembler.drain()
    assert voice.learn_calls == [("Alice", [TimeRange(5200, 5500), TimeRange(5500, 8000), TimeRange(8000, 11000)])]

    assembler.process_batch([tok("e", 1, 11000, 13000)])
    await assembler.drain()
    assert len(voice.learn_calls) == 1


@pytest.mark.asyncio
async def test_validation_rejection_disables_learning_for_speaker():
    voice = _FakeVoice()
    voice.reject_learning = True
    assembler = await _identified_as_alice(voice)

    assembler.process_batch([tok("b", 1, 5200, 5300)])
    await assembler.drain()
    assembler.process_batch([tok("c", 1, 5300, 12000)])
    await assembler.drain()
    assembler.process_batch([tok("d", 1, 12000, 18000)])
    await assembler.drain()

    assert len(voice.learn_calls) == 1
    assert 1 in assembler.state.learning_disabled
    assert assembler.state.names == {1: "Alice"}


# --- manual enrolment ---


@pytest.mark.asyncio
async def test_enrol_with_little_audio_waits_then_completes():
    voice = _FakeVoice()
    renames = []
    assembler = _assembler(voice, on_rename=lambda sid, name: renames.append((sid, name)))
    assembler.process_batch([tok("hey", 2, 0, 1000)])

    assembler.enrol("Bob", 2)

    assert 2 in assembler.state.pending
    assert assembler.lines[0].speaker_name == "Bob"
    assert renames == [(2, "Bob")]
    assert voice.enroll_calls == []

    assembler.process_batch([tok("still me", 2, 1000, 6000)])
    await assembler.drain()

    assert _texts(assembler) == ["hey", "still me"]
    assert assembler.lines[1].speaker_name == "Bob"
    assert voice.enroll_calls == [("Bob", [TimeRange(0, 1000), TimeRange(1000, 6000)])]
    assert assembler.state.names == {2: "Bob"}
    assert assembler.state.pending == {}
    assert voice.identify_calls == []


@pytest.mark.asyncio
async def test_enrol_with_enough_audio_is_immediate_and_marks_learned():
    voice = _FakeVoice()
    assembler = _assembler(voice)
    assembler.process_batch([tok("a", 3, 0, 6000)])

    assembler.enrol("Carol", 3)
    await assembler.drain()

    assert voice.enroll_calls == [("Carol", [TimeRange(0, 6000)])]
    assert assembler.state.names == {3: "Carol"}

    assembler.process_batch([tok("b", 3, 6000, 12000)])
    await assembler.drain()

    assert voice.learn_calls == [("Carol", [TimeRange(6000, 12000)])]


@pytest.mark.asyncio
async def test_enrol_time_range_counts_towards_audio():
    voice = _FakeVoice()
    assembler = _assembler(voice)
    assembler.process_batch([tok("a", 4, 0, 1000)])

    assembler.enrol("Dan", 4, TimeRange(2000, 7000))
    await assembler.drain()

    assert voice.enroll_calls == [("Dan", [TimeRange(0, 1000), TimeRange(2000, 7000)])]


@pytest.mark.asyncio
async def test_failed_enrolment_stays_pending_and_retries():
    voice = _FakeVoice()
    voice.fail_enrol = True
    assembler = _assembler(voice)
    assembler.process_batch([tok("a", 5, 0, 6000)])

    assembler.enrol("Eve", 5)
    await assembler.drain()
    assert 5 in assembler.state.pending

    voice.fail_enrol = False
    assembler.process_batch([tok("b", 5, 6000, 6500)])
    await assembler.drain()

    assert assembler.state.names == {5: "Eve"}
    assert voice.enroll_calls == [("Eve", [TimeRange(0, 6000), TimeRange(6000, 6500)])]


def test_enrol_rejects_blank_name_and_unknown_speaker():
    assembler = _assembler()

    with pytest.raises(ValueError):
        assembler.enrol("  ", 1)
    with pytest.raises(ValueError):
        assembler.enrol("Zed", -1)


@pytest.mark.asyncio
async def test_relabelling_identified_speaker_replaces_name_and_retries():
    voice = _FakeVoice()
    assembler = await _identified_as_alice(voice)
    voice.fail_enrol = True

    assembler.enrol("Bob", 1)
    await assembler.drain()

    assert assembler.state.names == {}
    assert assembler.state.pending[1].name == "Bob"

    voice.fail_enrol = False
    assembler.process_batch([tok("later", 1, 5200, 9000)])
    assert [line.speaker_name for line in assembler.lines] == ["Bob", "Bob"]
    await assembler.drain()

    assert assembler.state.names == {1: "Bob"}
    assert assembler.state.pending == {}
    assert voice.enroll_calls == [("Bob", [TimeRange(0, 5200), TimeRange(5200, 9000)])]
