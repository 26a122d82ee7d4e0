# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

import pytest

import observability.logger as logger
import session.asr_session as asr_session
from errors import (
    AsrConnectionError,
    AsrSessionError,
    AudioSourceError,
    CancellationError,
    ConfigurationError,
    ServerReportedError,
    TransportError,
)
from fakes import (
    FakeConnection,
    FakeDialer,
    echo_server,
    make_config,
    make_wav,
    server_error,
    server_response,
)
from orchestrator.enums.stage import Stage
from orchestrator.enums.state import SessionState
from protocol.binary import ProtocolDecodeError
from session.asr_session import StreamingAsrSession
from session.response_channel import ResponseChannel


# 2400-byte file at 8 kHz mono PCM16 with 50 ms segments -> 800-byte segments -> 3 segments
WAV_3_SEGMENTS = make_wav(total_bytes=2400)


@pytest.fixture
def events(monkeypatch):
    lines = []
    monkeypatch.setattr(logger, "_print", lines.append)
    return lines


def _event_types(lines):
    return [json.loads(line)["event_type"] for line in lines]


def _session(connection=None, *, dialer=None, wav=WAV_3_SEGMENTS, **config_overrides):
    dialer = dialer or FakeDialer(connection)
    session = StreamingAsrSession(
        make_config(**config_overrides),
        dial=dialer,
        read_audio=lambda path: wav,
        backoff_unit_s=0.01,
        session_id="test-session",
    )
    return session, dialer


async def _run(session, path="audio.wav", cancel=None):
    sink = ResponseChannel()
    collector = asyncio.create_task(sink.collect())
    error = None
    try:
        await session.execute(path, sink, cancel=cancel)
    except Exception as e:  # pylint: disable=broad-exception-caught
        error = e
    responses = await collector
    return responses, sink, error


# ---------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------

def test_streams_all_segments_and_delivers_every_response(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    responses, sink, error = asyncio.run(_run(session))

    assert error is None
    assert conn.frames[0].is_handshake
    assert conn.frames[0].sequence == 1
    assert [f.sequence for f in conn.audio_frames] == [2, 3, -4]
    assert [len(f.payload) for f in conn.audio_frames] == [800, 800, 800]
    assert [r.text for r in responses] == ["partial 2", "partial 3", "partial 4", "final text"]
    assert responses[-1].is_last_package
    assert session.segments_sent == 3
    assert session.state is SessionState.CLOSED
    assert session.error is None
    assert sink.closed
    assert conn.closed


def test_audio_frames_carry_terminal_flag_only_on_last_segment(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    asyncio.run(_run(session))

    assert [f.header.is_last for f in conn.audio_frames] == [False, False, True]


def test_segments_concatenate_to_the_whole_file(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    asyncio.run(_run(session))

    assert b"".join(f.payload for f in conn.audio_frames) == WAV_3_SEGMENTS


def test_single_segment_file_sends_only_the_terminal_segment(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn, wav=make_wav(total_bytes=600))

    responses, _, error = asyncio.run(_run(session))

    assert error is None
    assert [f.sequence for f in conn.audio_frames] == [-2]
    assert responses[-1].text == "final text"


def test_segments_are_paced_by_segment_duration(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn, segment_duration_ms=50)

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()
        await _run(session)
        return loop.time() - started

    elapsed = asyncio.run(scenario())

    # three ticks of 50 ms, first tick one interval after start
    assert elapsed >= 0.14


def test_handshake_uses_auth_headers_and_request_options(events):
    conn = FakeConnection(echo_server)
    session, dialer = _session(conn, context='{"hotwords":[]}', result_type="single", enable_nonstream=True)

    asyncio.run(_run(session))

    headers = dialer.calls[0]
    assert headers["X-Api-Resource-Id"] == "volc.seedasr.sauc.duration"
    assert headers["X-Api-App-Key"] == "app-key"
    assert headers["X-Api-Access-Key"] == "access-key"
    body = conn.frames[0].json()
    assert body["request"]["corpus"]["context"] == '{"hotwords":[]}'
    assert body["request"]["result_type"] == "single"


def test_session_can_be_reused_sequentially(events):
    first = FakeConnection(echo_server)
    second = FakeConnection(echo_server)
    dialer = FakeDialer(first)
    session, _ = _session(dialer=dialer)

    asyncio.run(_run(session))
    dialer.connection = second
    responses, _, error = asyncio.run(_run(session))

    assert error is None
    assert [f.sequence for f in second.audio_frames] == [2, 3, -4]
    assert len(responses) == 4


def test_logs_state_transitions_and_server_logid(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    asyncio.run(_run(session))

    parsed = [json.loads(line) for line in events]
    states = [(e["from"], e["to"]) for e in parsed if e["event_type"] == "ASR_SESSION_STATE"]
    assert states == [
        ("IDLE", "CONNECTING"),
        ("CONNECTING", "HANDSHAKING"),
        ("HANDSHAKING", "STREAMING"),
        ("STREAMING", "DRAINING"),
        ("DRAINING", "CLOSED"),
    ]
    connected = next(e for e in parsed if e["event_type"] == "ASR_CONNECTED")
    assert connected["logid"] == "log-123"
    assert "access-key" not in "".join(events)


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_empty_path_is_a_configuration_error(events):
    session, dialer = _session(FakeConnection(echo_server))

    _, sink, error = asyncio.run(_run(session, path=""))

    assert isinstance(error, ConfigurationError)
    assert error.stage is Stage.VALIDATE
    assert dialer.calls == []
    assert sink.closed
    assert session.state is SessionState.CLOSED


def test_empty_url_is_a_configuration_error(events):
    session, dialer = _session(FakeConnection(echo_server), url="")

    _, _, error = asyncio.run(_run(session))

    assert isinstance(error, ConfigurationError)
    assert dialer.calls == []
    assert session.error is error


def test_unreadable_audio_fails_before_connecting(events):
    session, dialer = _session(FakeConnection(echo_server), wav=b"not a wav file at all")

    _, _, error = asyncio.run(_run(session))

    assert isinstance(error, AudioSourceError)
    assert error.stage is Stage.SEGMENT
    assert dialer.calls == []


def test_connect_failure_after_retries(events):
    dialer = FakeDialer(FakeConnection(echo_server), failures=3)
    session, _ = _session(dialer=dialer)

    _, sink, error = asyncio.run(_run(session))

    assert isinstance(error, AsrConnectionError)
    assert error.stage is Stage.CONNECT
    assert error.attempts == 3
    assert len(dialer.calls) == 3
    assert sink.closed
    assert session.state is SessionState.CLOSED


def test_connect_recovers_after_transient_failures(events):
    conn = FakeConnection(echo_server)
    dialer = FakeDialer(conn, failures=2)
    session, _ = _session(dialer=dialer)

    _, _, error = asyncio.run(_run(session))

    assert error is None
    assert len(dialer.calls) == 3
    assert len(conn.audio_frames) == 3


def test_cancel_during_backoff(events):
    dialer = FakeDialer(FakeConnection(echo_server), failures=5)
    session = StreamingAsrSession(
        make_config(),
        dial=dialer,
        read_audio=lambda path: WAV_3_SEGMENTS,
        backoff_unit_s=1.0,
    )

    async def scenario():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        return await _run(session, cancel=cancel)

    _, _, error = asyncio.run(scenario())

    assert isinstance(error, CancellationError)
    assert error.stage is Stage.CONNECT
    assert len(dialer.calls) == 1


def test_handshake_error_response(events):
    def handler(frame):
        if frame.is_handshake:
            return [server_error(45000001, "invalid request")]
        return []

    conn = FakeConnection(handler)
    session, _ = _session(conn)

    _, _, error = asyncio.run(_run(session))

    assert isinstance(error, ServerReportedError)
    assert error.code == 45000001
    assert error.stage is Stage.HANDSHAKE
    assert conn.audio_frames == []
    assert conn.closed


def test_server_error_mid_stream_stops_sending(events):
    def handler(frame):
        if frame.is_handshake:
            return [server_response("", sequence=1)]
        if frame.sequence == 2:
            return [server_error(5, "audio decode failed")]
        return [server_response("late", sequence=abs(frame.sequence))]

    conn = FakeConnection(handler)
    # 100 ms segments of 1600 bytes -> 2 segments
    session, _ = _session(conn, segment_duration_ms=100)

    responses, sink, error = asyncio.run(_run(session))

    assert isinstance(error, ServerReportedError)
    assert error.code == 5
    assert error.stage is Stage.STREAM
    assert len(conn.audio_frames) == 1
    assert [r.code for r in responses] == [5]
    assert sink.closed
    assert session.state is SessionState.CLOSED
    assert str(error).startswith("stream: ")


def test_malformed_server_frame_is_a_decode_error(events):
    def handler(frame):
        if frame.is_handshake:
            return [server_response("", sequence=1)]
        return [b"\x11\x91"]

    conn = FakeConnection(handler)
    session, _ = _session(conn)

    _, _, error = asyncio.run(_run(session))

    assert isinstance(error, ProtocolDecodeError)
    assert error.stage is Stage.STREAM
    assert conn.closed


def test_send_failure_is_a_transport_error(events):
    conn = FakeConnection(echo_server, fail_send_on=lambda frame: frame.sequence == 3)
    session, _ = _session(conn)

    responses, _, error = asyncio.run(_run(session))

    assert isinstance(error, TransportError)
    assert error.stage is Stage.STREAM
    assert isinstance(error.__cause__, Exception)
    assert [f.sequence for f in conn.audio_frames] == [2]
    assert [r.text for r in responses] == ["partial 2"]


def test_connection_closed_while_receiving_is_a_transport_error(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    async def scenario():
        sink = ResponseChannel()
        collector = asyncio.create_task(sink.collect())
        asyncio.get_running_loop().call_later(0.07, lambda: asyncio.ensure_future(conn.close()))
        try:
            await session.execute("audio.wav", sink)
        except TransportError as e:
            await collector
            return e
        return None

    error = asyncio.run(scenario())

    assert isinstance(error, TransportError)
    assert error.stage is Stage.STREAM


def test_concurrent_execute_on_same_session_is_rejected(events):
    conn = FakeConnection(echo_server)
    session, _ = _session(conn)

    async def scenario():
        first = asyncio.create_task(_run(session))
        await asyncio.sleep(0.01)
        rejected_sink = ResponseChannel()
        with pytest.raises(RuntimeError):
            await session.execute("other.wav", rejected_sink)
        return rejected_sink, await first

    rejected_sink, (_, _, error) = asyncio.run(scenario())

    assert error is None
    assert rejected_sink.closed


def test_failed_session_logs_failed_state(events):
    session, _ = _session(FakeConnection(echo_server), url="")

    asyncio.run(_run(session))

    parsed = [json.loads(line) for line in events]
    failed = [e for e in parsed if e["event_type"] == "ASR_SESSION_STATE" and e["to"] == "FAILED"]
    assert len(failed) == 1
    assert failed[0]["stage"] == "validate"
    assert _event_types(events)[-3:] == ["METRIC_TIMER", "ASR_SESSION_STATE", "ASR_SESSION_STATE"]


def test_cancel_while_dialing_never_streams(events):
    conn = FakeConnection(echo_server)
    holder = {}

    async def dial(url, headers):
        holder["cancel"].set()
        await asyncio.sleep(0.05)
        return conn

    session, _ = _session(dialer=dial)

    async def scenario():
        cancel = asyncio.Event()
        holder["cancel"] = cancel
        return await _run(session, cancel=cancel)

    _, sink, error = asyncio.run(scenario())

    assert isinstance(error, CancellationError)
    assert error.stage is Stage.CONNECT
    assert conn.frames == []
    assert sink.closed
    assert session.state is SessionState.CLOSED


def test_early_last_package_stops_sending(events):
    def handler(frame):
        if frame.is_handshake:
            return [server_response("", sequence=1)]
        if frame.sequence == 2:
            return [server_response("done early", sequence=2, last=True)]
        return [server_response("late", sequence=abs(frame.sequence))]

    conn = FakeConnection(handler)
    session, _ = _session(conn, segment_duration_ms=50)

    responses, _, error = asyncio.run(_run(session))

    assert error is None
    assert [f.sequence for f in conn.audio_frames] == [2]
    assert [r.text for r in responses] == ["done early"]
    assert session.segments_sent == 1
    assert session.state is SessionState.CLOSED


def test_unexpected_reader_error_is_wrapped_with_stage(events):
    def read_audio(path):
        raise ValueError("unsupported sample width")

    dialer = FakeDialer(FakeConnection(echo_server))
    session = StreamingAsrSession(
        make_config(),
        dial=dialer,
        read_audio=read_audio,
        backoff_unit_s=0.01,
        session_id="test-session",
    )

    _, sink, error = asyncio.run(_run(session))

    assert isinstance(error, AsrSessionError)
    assert error.stage is Stage.AUDIO
    assert isinstance(error.__cause__, ValueError)
    assert str(error) == "read_audio: ValueError: unsupported sample width"
    assert session.error is error
    assert dialer.calls == []
    assert sink.closed
    parsed = [json.loads(line) for line in events]
    failed = [e for e in parsed if e["event_type"] == "ASR_SESSION_STATE" and e["to"] == "FAILED"]
    assert [e["stage"] for e in failed] == ["read_audio"]


def test_module_docstring_is_plain_text():
    assert "\\" not in asr_session.__doc__
    assert "Any failure before CLOSED goes through FAILED, then CLOSED." in asr_session.__doc__
