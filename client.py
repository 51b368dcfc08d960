"""HTTP client for the AMICA backend plus the single audio playback handle."""

from __future__ import annotations

import base64
import contextlib
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from typing import Any, Dict, List, Optional

import httpx

from config import AMICA_AUDIO_PLAYER, API_URL
from conversations import Conversation, ConversationStore, Message

logger = logging.getLogger("amica.client")

APOLOGY = "Mi dispiace, si è verificato un errore nella comunicazione. Riprova tra qualche istante."


class ChatFailed(RuntimeError):
    pass


class AmicaClient:
    """Drives a ConversationStore against /api/chat and /api/tts."""

    def __init__(
        self,
        store: ConversationStore,
        base_url: str = API_URL,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.store = store
        self.http = client or httpx.Client(base_url=base_url, timeout=None)
        self.last_web_access = False

    def close(self) -> None:
        self.http.close()

    def _call_chat(self, conv: Conversation) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"messages": conv.api_messages()}
        if conv.conversation_summary:
            payload["conversationSummary"] = conv.conversation_summary
        resp = self.http.post("/api/chat", json=payload)
        try:
            data = resp.json()
        except ValueError as e:
            raise ChatFailed(f"HTTP {resp.status_code}: unreadable body") from e
        if resp.status_code != 200:
            raise ChatFailed(data.get("error") if isinstance(data, dict) else f"HTTP {resp.status_code}")
        if not isinstance(data, dict) or not isinstance(data.get("message"), str):
            raise ChatFailed("response without message")
        return data

    def send(self, text: str) -> Message:
        """
        Append ``text`` as a user turn and the reply as an assistant turn.
        Any failure is turned into the fixed apology reply.
        """
        text = text.strip()
        if not text:
            raise ValueError("empty message")
        conv = self.store.current or self.store.create()
        self.store.append(conv.id, "user", text)
        try:
            data = self._call_chat(conv)
        except (httpx.HTTPError, ChatFailed) as e:
            logger.error("chat call failed: %s", e)
            self.last_web_access = False
            return self.store.append(conv.id, "assistant", APOLOGY)
        except Exception:
            logger.exception("unexpected error talking to %s", self.http.base_url)
            self.last_web_access = False
            return self.store.append(conv.id, "assistant", APOLOGY)
        reply = self.store.append(conv.id, "assistant", data["message"])
        if data.get("conversationSummary"):
            self.store.set_summary(conv.id, data["conversationSummary"])
        self.last_web_access = bool(data.get("webAccess"))
        return reply

    def speak(self, text: str) -> bytes:
        resp = self.http.post("/api/tts", json={"text": text})
        if resp.status_code != 200:
            raise ChatFailed(f"TTS error (HTTP {resp.status_code})")
        return base64.b64decode(resp.json()["audio"])


class AudioPlayer:
    """
    Exclusive owner of the "currently playing" audio.
    A new play() always stops the previous one first.
    """

    def __init__(self, command: str = AMICA_AUDIO_PLAYER) -> None:
        self.command: List[str] = shlex.split(command)
        self._proc: Optional[subprocess.Popen] = None
        self._path: Optional[str] = None

    @property
    def available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    @property
    def playing(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def play(self, data: bytes) -> None:
        self.stop()
        fd, path = tempfile.mkstemp(suffix=".mp3", prefix="amica-")
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        self._path = path
        try:
            self._proc = subprocess.Popen(
                [*self.command, path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            self._cleanup()
            raise

    def wait(self) -> None:
        if self._proc is not None:
            self._proc.wait()
        self._cleanup()

    def stop(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            with contextlib.suppress(ProcessLookupError):
                self._proc.terminate()
            with contextlib.suppress(subprocess.TimeoutExpired):
                self._proc.wait(timeout=2)
        self._cleanup()

    def _cleanup(self) -> None:
        self._proc = None
        if self._path:
            with contextlib.suppress(OSError):
                os.unlink(self._path)
            self._path = None


__all__ = ["APOLOGY", "AmicaClient", "AudioPlayer", "ChatFailed"]
