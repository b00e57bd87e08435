"""Mock headset: streams synthetic EEG chunks to the ingestion WebSocket.

    python -m protocol.protocol_stream_mock
    URI=ws://localhost:8080/ws TOKEN=dev-token-subject-1 SUBJECT=1 python -m protocol.protocol_stream_mock
"""
import asyncio
import json
import logging
import math
import os
import time
from typing import Optional

import numpy as np
import websockets

DEFAULT_URI     = os.getenv("URI", "ws://localhost:8080/ws")
DEFAULT_TOKEN   = os.getenv("TOKEN", "dev-token-subject-1")
DEFAULT_SUBJECT = int(os.getenv("SUBJECT", 1))
DEFAULT_RATE    = int(os.getenv("RATE", 256))     # Hz
CHUNK           = int(os.getenv("CHUNK", 64))     # samples per message
CHANNELS        = os.getenv("CHANNELS", "AF7,AF8").split(",")
WAVEFORM        = os.getenv("WAVE", "mixed")      # sine|noise|mixed

logger = logging.getLogger("mock_headset")


class MockHeadset:
    """Per-channel 10 Hz alpha sine plus gaussian noise, offset in phase per channel."""

    def __init__(self, subject_id: int, channels: list[str], rate: int, waveform: str = "mixed",
                 alpha_hz: float = 10.0, seed: Optional[int] = None):
        self.subject_id = subject_id
        self.channels = channels
        self.rate = rate
        self.waveform = waveform
        self.alpha_hz = alpha_hz
        self.rng = np.random.default_rng(seed)
        self.sample_index = 0

    def _chunk(self, channel_no: int, n: int) -> np.ndarray:
        t = (self.sample_index + np.arange(n)) / self.rate
        sine = 50.0 * np.sin(2 * math.pi * self.alpha_hz * t + channel_no * math.pi / 4)
        noise = 20.0 * self.rng.standard_normal(n)
        if self.waveform == "sine":
            return sine
        if self.waveform == "noise":
            return noise
        return sine + noise

    def next_messages(self, n: int, timestamp_ms: Optional[float] = None) -> list[dict]:
        """One ingestion message per channel covering the next ``n`` samples."""
        timestamp_ms = time.time() * 1000.0 if timestamp_ms is None else timestamp_ms
        messages = [
            build_message(self.subject_id, channel, self._chunk(i, n), self.rate, timestamp_ms)
            for i, channel in enumerate(self.channels)
        ]
        self.sample_index += n
        return messages


def build_message(subject_id: int, channel: str, samples, sample_rate: float, timestamp_ms: float) -> dict:
    return {
        "subjectId": subject_id,
        "channel": channel,
        "samples": [float(s) for s in samples],
        "sampleRate": sample_rate,
        "clientTimestamp": timestamp_ms,
    }


async def _drain_acks(ws) -> None:
    async for reply in ws:
        ack = json.loads(reply)
        if ack.get("status") == "success":
            logger.info("ack %s %s fwb=%.2f", ack.get("channel"), ack.get("windowStartTime"),
                        ack.get("frequencyWeightedBandpower", 0.0))
        else:
            logger.warning("rejected: %s", ack.get("message"))


async def stream_to(uri: str, token: str, headset: MockHeadset, chunk: int = CHUNK) -> None:
    retry = 0
    while True:
        try:
            async with websockets.connect(f"{uri}?token={token}") as ws:
                retry = 0
                reader = asyncio.create_task(_drain_acks(ws))
                try:
                    while True:
                        for message in headset.next_messages(chunk):
                            await ws.send(json.dumps(message))
                        await asyncio.sleep(chunk / headset.rate)
                finally:
                    reader.cancel()
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            wait = min(2 ** retry, 30)
            logger.warning("WebSocket error (%s) – reconnecting in %ss", exc, wait)
            await asyncio.sleep(wait)
            retry += 1


async def main():
    headset = MockHeadset(DEFAULT_SUBJECT, CHANNELS, DEFAULT_RATE, WAVEFORM)
    print(f"🧠 Mock headset  •  subject {DEFAULT_SUBJECT}  •  {','.join(CHANNELS)} @ {DEFAULT_RATE} Hz  •  {DEFAULT_URI}")
    await stream_to(DEFAULT_URI, DEFAULT_TOKEN, headset)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
