# src/sealenv/prompt.py
"""Passphrase prompting, injectable so flows can run headless."""

import signal
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

from .errors import AuthenticationError, PromptTimeout, ValidationError


@contextmanager
def _deadline(seconds: Optional[float]) -> Iterator[None]:
    """Raise PromptTimeout if the block runs longer than `seconds` (POSIX main thread only)."""
    usable = (
        seconds
        and hasattr(signal, "SIGALRM")
        and threading.current_thread() is threading.main_thread()
    )
    if not usable:
        yield
        return

    def _expire(signum, frame):
        raise PromptTimeout(f"No answer within {seconds:g} seconds.")

    previous = signal.signal(signal.SIGALRM, _expire)
    signal.setitimer(signal.ITIMER_REAL, seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, previous)


class PassphrasePrompter(ABC):
    """Source of vault master passphrases and yes/no answers."""

    @abstractmethod
    def ask_passphrase(self, message: str, confirm: bool = False) -> str:
        """Return a passphrase; with `confirm`, ask twice and require a match."""

    @abstractmethod
    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question."""


class RichPrompter(PassphrasePrompter):
    """Interactive prompts on the terminal, with a timeout."""

    def __init__(self, timeout: Optional[float] = 120.0, console: Optional[Console] = None):
        self.timeout = timeout
        self.console = console or Console(stderr=True)

    def _ask_hidden(self, message: str) -> str:
        while True:
            try:
                with _deadline(self.timeout):
                    value = Prompt.ask(message, password=True, console=self.console)
            except EOFError:
                raise AuthenticationError("No passphrase was entered.")
            if value:
                return value
            self.console.print("[red]Error: Passphrase cannot be empty.[/red]")

    def ask_passphrase(self, message: str, confirm: bool = False) -> str:
        passphrase = self._ask_hidden(message)
        if confirm and self._ask_hidden("Repeat to confirm") != passphrase:
            raise ValidationError("Passphrases do not match.")
        return passphrase

    def confirm(self, message: str, default: bool = False) -> bool:
        try:
            with _deadline(self.timeout):
                return Confirm.ask(message, default=default, console=self.console)
        except EOFError:
            return default


class StaticPrompter(PassphrasePrompter):
    """Returns a fixed passphrase and answer; for automation and tests."""

    def __init__(self, passphrase: str, answer: bool = False):
        self._passphrase = passphrase
        self.answer = answer
        self.asked: List[str] = []

    def ask_passphrase(self, message: str, confirm: bool = False) -> str:
        self.asked.append(message)
        return self._passphrase

    def confirm(self, message: str, default: bool = False) -> bool:
        self.asked.append(message)
        return self.answer
