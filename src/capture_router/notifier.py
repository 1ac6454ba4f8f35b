"""User-visible notices for capture outcomes."""

from abc import ABC, abstractmethod


class Notifier(ABC):
    @abstractmethod
    def notify_filed(self, message: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def notify_info(self, message: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def notify_error(self, message: str) -> None:
        raise NotImplementedError


class ConsoleNotifier(Notifier):
    def notify_filed(self, message: str) -> None:
        print(message)

    def notify_info(self, message: str) -> None:
        print(message)

    def notify_error(self, message: str) -> None:
        print(f"Error: {message}")


class RecordingNotifier(Notifier):
    """Keeps every notice in memory as (kind, message) pairs."""

    def __init__(self) -> None:
        self.notices: list[tuple[str, str]] = []

    def notify_filed(self, message: str) -> None:
        self.notices.append(("filed", message))

    def notify_info(self, message: str) -> None:
        self.notices.append(("info", message))

    def notify_error(self, message: str) -> None:
        self.notices.append(("error", message))

    def messages(self, kind: str | None = None) -> list[str]:
        return [message for k, message in self.notices if kind is None or k == kind]
