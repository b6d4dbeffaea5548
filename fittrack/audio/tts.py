from __future__ import annotations
import logging
import os
import queue
import subprocess
import threading

logger = logging.getLogger(__name__)


class TTSEngine:
    """Background speech queue for rep counts and state changes.

    Uses macOS `say` when available, otherwise pyttsx3 (imported lazily).
    Phrases queued while one is being spoken are coalesced so the worker
    never falls behind a fast set.
    """

    def __init__(self, prefer_mac_say: bool = True):
        self.prefer_mac_say = prefer_mac_say and (os.uname().sysname == "Darwin")
        self.q: "queue.Queue[str]" = queue.Queue()
        self._stop = threading.Event()
        self._pyttsx3 = None
        self.worker = threading.Thread(target=self._run, daemon=True)
        self.worker.start()

    def _ensure_pyttsx3(self):
        if self._pyttsx3 is None:
            import pyttsx3  # lazy import
            self._pyttsx3 = pyttsx3.init()

    def _speak(self, text: str):
        if self.prefer_mac_say:
            subprocess.run(["say", text], check=False)
            return
        self._ensure_pyttsx3()
        self._pyttsx3.say(text)
        self._pyttsx3.runAndWait()

    def _run(self):
        while not self._stop.is_set():
            try:
                text = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                # only the newest pending phrase matters
                while not self.q.empty():
                    self.q.task_done()
                    text = self.q.get_nowait()
                if text:
                    self._speak(text)
            except Exception as e:
                logger.warning("tts failed for %r: %s", text, e)
            finally:
                self.q.task_done()

    def say(self, text: str):
        if not text or self._stop.is_set():
            return
        self.q.put(text)

    def announce_rep(self, count: int):
        self.say(str(count))

    def shutdown(self):
        self._stop.set()
        try:
            self.q.put_nowait("")
        except queue.Full:
            pass
