import asyncio
import os

import pytest

from callscribe.errors import (
    AlreadyConnected,
    AlreadyRecording,
    NotConnected,
    NotRecording,
    SegmentNotFound,
    VoiceConnectionError,
)
from callscribe.models import (
    CONVERSION_FAILED,
    NO_TEXT_TO_SUMMARIZE,
    NO_USABLE_AUDIO,
    RecordingState,
    SegmentResult,
)

from fakes import (
    FRAME,
    BrokenConvertGateway,
    FakeSummarizer,
    FakeTranscriber,
    FakeVoiceSource,
    assert_invariants,
    make_exploding_recorder,
    make_recorder,
    settle,
)


def test_join_start_stop_without_speech_yields_no_usable_audio(tmp_path):
    transcriber = FakeTranscriber()
    summarizer = FakeSummarizer()
    recorder = make_recorder(tmp_path, transcriber=transcriber, summarizer=summarizer)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        assert_invariants(session)
        segment_id = await recorder.start_recording("guild-1")
        assert segment_id == 1
        assert_invariants(session)
        result = await recorder.stop_recording("guild-1")
        assert_invariants(session)
        return session, result

    session, result = asyncio.run(scenario())

    assert result == SegmentResult(NO_USABLE_AUDIO, NO_TEXT_TO_SUMMARIZE)
    assert session.archive == {1: result}
    assert transcriber.calls == []
    assert summarizer.calls == []
    assert session.state is RecordingState.IDLE
    assert len(session.pipelines) == 0
    assert session.inactivity_monitor is None


def test_recorded_speech_is_transcribed_and_archived(tmp_path):
    transcriber = FakeTranscriber(text="  hello world ")
    summarizer = FakeSummarizer(summary="greeting")
    source = FakeVoiceSource()
    recorder = make_recorder(
        tmp_path, transcriber=transcriber, summarizer=summarizer, voice_source=source
    )

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        connection = source.connections[0]
        connection.start_speaking("alice")
        connection.send("alice", count=10)
        connection.stop_speaking("alice")
        result = await recorder.stop_recording("guild-1")
        return session, result

    session, result = asyncio.run(scenario())

    assert result == SegmentResult("hello world", "greeting")
    assert summarizer.calls == ["hello world"]
    assert len(transcriber.calls) == 1
    assert transcriber.calls[0].endswith(".compressed.wav")
    raw_path = os.path.join(str(tmp_path), "session_guild-1_1.pcm")
    assert os.path.getsize(raw_path) == len(FRAME) * 10
    assert recorder.get_segment("guild-1", 1) == result
    assert recorder.get_segment("guild-1", "recent") == result
    assert recorder.get_segment("guild-1") == result
    assert recorder.get_segment("guild-1", "1") == result


def test_conversion_failure_is_archived_and_keeps_connection(tmp_path):
    transcriber = FakeTranscriber()
    source = FakeVoiceSource()
    recorder = make_recorder(
        tmp_path,
        gateway=BrokenConvertGateway(),
        transcriber=transcriber,
        voice_source=source,
    )

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        connection = source.connections[0]
        connection.start_speaking("alice")
        connection.send("alice", count=3)
        connection.stop_speaking("alice")
        result = await recorder.stop_recording("guild-1")
        return session, result

    session, result = asyncio.run(scenario())

    assert result.transcript == CONVERSION_FAILED
    assert result.summary == NO_TEXT_TO_SUMMARIZE
    assert session.archive[1] == result
    assert session.state is RecordingState.IDLE
    assert session.connection is source.connections[0]
    assert not session.connection.destroyed
    assert transcriber.calls == []


def test_state_errors(tmp_path):
    recorder = make_recorder(tmp_path)

    async def scenario():
        with pytest.raises(NotConnected):
            await recorder.start_recording("guild-1")
        with pytest.raises(NotConnected):
            await recorder.leave("guild-1")
        with pytest.raises(NotRecording):
            await recorder.stop_recording("guild-1")

        await recorder.join("guild-1", "general")
        with pytest.raises(AlreadyConnected):
            await recorder.join("guild-1", "general")
        with pytest.raises(NotRecording):
            await recorder.stop_recording("guild-1")

        await recorder.start_recording("guild-1")
        with pytest.raises(AlreadyRecording):
            await recorder.start_recording("guild-1")
        await recorder.stop_recording("guild-1")

        await recorder.leave("guild-1")
        with pytest.raises(NotConnected):
            await recorder.leave("guild-1")

    asyncio.run(scenario())


def test_get_segment_not_found(tmp_path):
    recorder = make_recorder(tmp_path)

    async def scenario():
        with pytest.raises(SegmentNotFound):
            recorder.get_segment("guild-1")
        await recorder.join("guild-1", "general")
        with pytest.raises(SegmentNotFound):
            recorder.get_segment("guild-1", "recent")
        await recorder.start_recording("guild-1")
        await recorder.stop_recording("guild-1")
        with pytest.raises(SegmentNotFound):
            recorder.get_segment("guild-1", 2)
        with pytest.raises(SegmentNotFound):
            recorder.get_segment("guild-1", "abc")

    asyncio.run(scenario())


def test_join_failure_leaves_session_disconnected(tmp_path):
    recorder = make_recorder(tmp_path, voice_source=FakeVoiceSource(fail=True))

    async def scenario():
        with pytest.raises(VoiceConnectionError):
            await recorder.join("guild-1", "general")
        session = recorder.sessions.get("guild-1")
        assert session.connection is None
        assert not session.listeners_attached
        with pytest.raises(NotConnected):
            await recorder.start_recording("guild-1")

    asyncio.run(scenario())


def test_leave_while_recording_discards_segment(tmp_path):
    transcriber = FakeTranscriber()
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, transcriber=transcriber, voice_source=source)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        connection = source.connections[0]
        connection.start_speaking("alice")
        connection.send("alice", count=5)
        await settle()
        connection.send("alice", count=5)
        await recorder.leave("guild-1")
        await settle()
        return session, connection

    session, connection = asyncio.run(scenario())

    assert transcriber.calls == []
    assert recorder.orchestrator.processed == []
    assert session.archive == {}
    assert session.connection is None
    assert connection.destroyed
    assert session.state is RecordingState.IDLE
    assert len(session.pipelines) == 0
    assert session.inactivity_monitor is None
    assert_invariants(session)
    raw_path = os.path.join(str(tmp_path), "session_guild-1_1.pcm")
    # Frames written before the leave survive; queued ones are dropped whole.
    assert os.path.getsize(raw_path) % len(FRAME) == 0
    assert os.path.getsize(raw_path) <= len(FRAME) * 10


def test_speaking_while_idle_is_ignored(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        connection = source.connections[0]
        connection.start_speaking("alice")
        await settle()
        return session, connection

    session, connection = asyncio.run(scenario())

    assert len(session.pipelines) == 0
    assert connection.streams == {}


def test_speaking_after_stop_is_noop(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        connection = source.connections[0]
        stop = asyncio.create_task(recorder.stop_recording("guild-1"))
        await settle(2)
        assert session.state is RecordingState.IDLE
        connection.start_speaking("bob")
        await stop
        return session, connection

    session, connection = asyncio.run(scenario())

    assert "bob" not in connection.streams
    assert len(session.pipelines) == 0


def test_rejoin_attaches_listeners_once_per_connection(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.leave("guild-1")
        await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        old, new = source.connections
        old.start_speaking("alice")
        new.start_speaking("bob")
        await settle()
        participants = session.pipelines.participants()
        await recorder.stop_recording("guild-1")
        return participants

    participants = asyncio.run(scenario())

    old, new = source.connections
    assert len(old.listeners) == 1
    assert len(new.listeners) == 1
    assert participants == ["bob"]


def test_segment_counter_increments_across_segments(tmp_path):
    recorder = make_recorder(tmp_path)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        for expected in (1, 2, 3):
            assert await recorder.start_recording("guild-1") == expected
            await recorder.stop_recording("guild-1")
            assert_invariants(session)
        return session

    session = asyncio.run(scenario())

    assert sorted(session.archive) == [1, 2, 3]
    for segment_id in (1, 2, 3):
        assert os.path.exists(
            os.path.join(str(tmp_path), f"session_guild-1_{segment_id}.pcm")
        )


def test_independent_sessions_do_not_share_state(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        one = await recorder.join("guild-1", "room-a")
        two = await recorder.join("guild-2", "room-b")
        await asyncio.gather(
            recorder.start_recording("guild-1"), recorder.start_recording("guild-2")
        )
        await recorder.stop_recording("guild-1")
        await recorder.start_recording("guild-1")
        conn_one = source.connections[0]
        conn_one.start_speaking("alice")
        await settle()
        assert one.segment_counter == 2
        assert two.segment_counter == 1
        assert one.pipelines.participants() == ["alice"]
        assert two.pipelines.participants() == []
        await asyncio.gather(
            recorder.stop_recording("guild-1"), recorder.stop_recording("guild-2")
        )
        return one, two

    one, two = asyncio.run(scenario())

    assert sorted(one.archive) == [1, 2]
    assert sorted(two.archive) == [1]
    assert one.pipelines is not two.pipelines


def test_finish_stops_archives_and_leaves(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        await recorder.start_recording("guild-1")
        outcome = await recorder.finish("guild-1")
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome == (1, SegmentResult(NO_USABLE_AUDIO, NO_TEXT_TO_SUMMARIZE))
    assert session.archive[1] == outcome[1]
    assert session.connection is None
    assert source.connections[0].destroyed


def test_finish_when_idle_only_leaves(tmp_path):
    recorder = make_recorder(tmp_path)

    async def scenario():
        session = await recorder.join("guild-1", "general")
        outcome = await recorder.finish("guild-1")
        return session, outcome

    session, outcome = asyncio.run(scenario())

    assert outcome is None
    assert session.connection is None
    assert session.archive == {}


def test_channel_empty_auto_stop(tmp_path):
    recorder = make_recorder(tmp_path)

    async def scenario():
        assert await recorder.on_channel_empty("guild-1") is None
        assert await recorder.join_and_record("guild-1", "general") == 1
        outcome = await recorder.on_channel_empty("guild-1")
        again = await recorder.on_channel_empty("guild-1")
        return outcome, again

    outcome, again = asyncio.run(scenario())

    assert outcome[0] == 1
    assert again is None
    assert recorder.sessions.get("guild-1").connection is None


def test_reset_drops_session(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        await recorder.join_and_record("guild-1", "general")
        await recorder.reset("guild-1")

    asyncio.run(scenario())

    assert "guild-1" not in recorder.sessions
    assert source.connections[0].destroyed


def test_sessions_with_similar_ids_use_separate_files(tmp_path):
    source = FakeVoiceSource()
    recorder = make_recorder(tmp_path, voice_source=source)

    async def scenario():
        one = await recorder.join("team room", "general")
        two = await recorder.join("team-room", "general")
        await recorder.start_recording("team room")
        await recorder.start_recording("team-room")
        paths = (one.active_file_path, two.active_file_path)
        connection = source.connections[0]
        connection.start_speaking("alice")
        connection.send("alice", count=5)
        connection.stop_speaking("alice")
        await one.pipelines.close_all()
        sizes = (os.path.getsize(paths[0]), os.path.getsize(paths[1]))
        await recorder.stop_recording("team room")
        await recorder.stop_recording("team-room")
        return paths, sizes

    paths, sizes = asyncio.run(scenario())

    assert paths[0] != paths[1]
    assert sizes == (5 * len(FRAME), 0)


def test_finish_leaves_even_when_processing_crashes(tmp_path):
    source = FakeVoiceSource()
    recorder = make_exploding_recorder(tmp_path, voice_source=source)

    async def scenario():
        await recorder.join_and_record("guild-1", "general")
        with pytest.raises(RuntimeError):
            await recorder.finish("guild-1")
        return recorder.sessions.get("guild-1")

    session = asyncio.run(scenario())

    assert session.connection is None
    assert source.connections[0].destroyed
    assert session.state is RecordingState.IDLE
    assert session.archive == {}
    assert_invariants(session)


def test_channel_empty_leaves_and_logs_when_processing_crashes(tmp_path, caplog):
    source = FakeVoiceSource()
    recorder = make_exploding_recorder(tmp_path, voice_source=source)

    async def scenario():
        await recorder.join_and_record("guild-1", "general")
        return await recorder.on_channel_empty("guild-1")

    outcome = asyncio.run(scenario())

    assert outcome is None
    assert recorder.sessions.get("guild-1").connection is None
    assert source.connections[0].destroyed
    assert "Auto-stop failed" in caplog.text
