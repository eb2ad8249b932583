import asyncio
import logging
import threading

import janus
from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from speech_stream.errors import ProtocolError, TransportError
from speech_stream.ports.transcription_channel import RecognitionModel, StreamOptions, TranscriptEvent

logger = logging.getLogger(__name__)

DEEPGRAM_MODELS: dict[RecognitionModel, str] = {
    RecognitionModel.VIDEO: "nova-2-video",
    RecognitionModel.PHONE_CALL: "nova-2-phonecall",
    RecognitionModel.COMMAND_AND_SEARCH: "nova-2-conversationalai",
    RecognitionModel.DEFAULT: "nova-2",
}

RECEIVE_POLL_SECONDS = 0.25


def split_frame(pcm: bytes, chunk_bytes: int) -> list[bytes]:
    return [pcm[i : i + chunk_bytes] for i in range(0, len(pcm), chunk_bytes)]


def join_alternatives(alternatives: list[str]) -> str:
    if len(alternatives) == 1:
        return alternatives[0]
    return ";".join(alt[1:] if alt.startswith(" ") else alt for alt in alternatives)


def parse_results(message) -> TranscriptEvent | None:
    try:
        alternatives = [alt.transcript or "" for alt in message.channel.alternatives]
        is_final = bool(message.is_final or message.speech_final)
    except (AttributeError, TypeError) as exc:
        raise ProtocolError(f"Malformed results message: {exc}") from exc

    alternatives = [alt for alt in alternatives if alt]
    if not alternatives:
        return None
    return TranscriptEvent(text=join_alternatives(alternatives), is_final=is_final)


class DeepgramStreamingChannel:
    """Deepgram live transcription behind the blocking ``TranscriptionChannel`` port.

    The SDK client is async, so it runs on a private event loop in a daemon
    thread. Two janus queues cross between that loop and the calling threads:
    audio goes out through ``_outbound``, results come back through ``_inbound``.
    Items on ``_inbound`` are ``TranscriptEvent``, an exception to raise from
    ``receive()``, or ``None`` for end of stream.
    """

    def __init__(
        self,
        api_key: str,
        chunk_bytes: int = 1024,
        outbound_queue_size: int = 256,
        connect_timeout: float = 10.0,
        close_timeout: float = 2.0,
        client_factory=AsyncDeepgramClient,
    ) -> None:
        self._api_key = api_key
        self._chunk_bytes = chunk_bytes
        self._outbound_queue_size = outbound_queue_size
        self._connect_timeout = connect_timeout
        self._close_timeout = close_timeout
        self._client_factory = client_factory

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._context_manager = None
        self._socket = None
        self._outbound: janus.Queue[bytes] | None = None
        self._inbound: janus.Queue[TranscriptEvent | Exception | None] | None = None
        self._listener_task: asyncio.Task | None = None
        self._sender_task: asyncio.Task | None = None
        self._send_failure: Exception | None = None
        self._closed = False

    def open(self, options: StreamOptions) -> None:
        if self._loop is not None:
            raise TransportError("Deepgram channel is already open")

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="deepgram-channel", daemon=True
        )
        self._thread.start()

        future = asyncio.run_coroutine_threadsafe(self._connect(options), self._loop)
        try:
            future.result(timeout=self._connect_timeout)
        except Exception as exc:
            future.cancel()
            self.close()
            raise TransportError(f"Could not open Deepgram stream: {exc}") from exc
        logger.info("Deepgram stream opened (model=%s)", DEEPGRAM_MODELS[options.model])

    def send_audio(self, pcm: bytes) -> None:
        if self._closed or self._outbound is None:
            raise TransportError("Deepgram stream is closed")
        if self._send_failure is not None:
            raise TransportError(f"Could not send audio: {self._send_failure}")
        try:
            self._outbound.sync_q.put_nowait(pcm)
        except janus.SyncQueueFull:
            raise TransportError("Outbound audio queue is full") from None
        except janus.SyncQueueShutDown:
            raise TransportError("Deepgram stream is closed") from None

    def receive(self) -> TranscriptEvent | None:
        if self._inbound is None:
            return None
        while True:
            try:
                item = self._inbound.sync_q.get(timeout=RECEIVE_POLL_SECONDS)
            except janus.SyncQueueEmpty:
                if self._closed:
                    return None
                continue
            except janus.SyncQueueShutDown:
                return None
            if isinstance(item, Exception):
                raise item
            return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return

        future = asyncio.run_coroutine_threadsafe(self._disconnect(), loop)
        try:
            future.result(timeout=self._close_timeout)
        except Exception:
            logger.warning("Deepgram stream did not close within %.1fs", self._close_timeout)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            if thread is not threading.current_thread():
                thread.join(timeout=self._close_timeout)
            if not thread.is_alive():
                loop.close()
        logger.info("Deepgram stream closed")

    async def _connect(self, options: StreamOptions) -> None:
        self._outbound = janus.Queue(maxsize=self._outbound_queue_size)
        self._inbound = janus.Queue()

        client = self._client_factory(api_key=self._api_key)
        self._context_manager = client.listen.v1.connect(
            model=DEEPGRAM_MODELS[options.model],
            language=options.language,
            encoding="linear16",
            sample_rate=str(options.sample_rate),
            channels="1",
            interim_results="false",
            alternatives=str(max(options.max_alternatives, 1)),
        )
        self._socket = await self._context_manager.__aenter__()
        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._listener_task = asyncio.create_task(self._listen())
        self._sender_task = asyncio.create_task(self._send_loop())

    async def _disconnect(self) -> None:
        for task in (self._sender_task, self._listener_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
        self._sender_task = None
        self._listener_task = None

        if self._context_manager:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception:
                logger.debug("Error while closing Deepgram socket", exc_info=True)
        self._context_manager = None
        self._socket = None

        for queue in (self._outbound, self._inbound):
            if queue is not None:
                queue.close()
                await queue.wait_closed()

    async def _listen(self) -> None:
        try:
            await self._socket.start_listening()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._publish(TransportError(f"Deepgram connection failed: {exc}"))
            return
        await self._publish(None)

    async def _send_loop(self) -> None:
        while True:
            try:
                frame = await self._outbound.async_q.get()
            except janus.AsyncQueueShutDown:
                break
            for chunk in split_frame(frame, self._chunk_bytes):
                try:
                    await self._socket._send(chunk)
                except Exception as exc:
                    logger.warning("Failed to send audio to Deepgram: %s", exc)
                    self._send_failure = exc
                    await self._publish(TransportError(f"Could not send audio: {exc}"))
                    return

    async def _publish(self, item: TranscriptEvent | Exception | None) -> None:
        if self._inbound is None:
            return
        try:
            await self._inbound.async_q.put(item)
        except janus.AsyncQueueShutDown:
            pass

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            event = parse_results(message)
        except ProtocolError as exc:
            await self._publish(exc)
            return
        if event is not None:
            await self._publish(event)

    async def _on_error(self, error) -> None:
        logger.error("Deepgram error: %s", error)
        await self._publish(TransportError(f"Deepgram error: {error}"))
