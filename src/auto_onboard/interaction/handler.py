"""User interaction handlers: the decision source for every question the run asks."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Union

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt

logger = logging.getLogger(__name__)


class InputType(str, Enum):
    """Type of user input expected."""
    CHOICE = "choice"       # 从 options 中选择
    TEXT = "text"           # 自由文本输入
    CONFIRM = "confirm"     # 是/否确认
    SECRET = "secret"       # 敏感信息（密码等），不回显、不记录


class QuestionCategory(str, Enum):
    """Category of questions for context."""
    DECISION = "decision"
    CONFIRMATION = "confirmation"
    INFORMATION = "information"
    CREDENTIAL = "credential"


@dataclass
class InteractionRequest:
    """A question asked during provisioning."""

    question: str
    input_type: InputType = InputType.CHOICE
    options: List[str] = field(default_factory=list)  # CHOICE 类型的可选项
    category: QuestionCategory = QuestionCategory.DECISION
    context: Optional[str] = None
    default: Optional[str] = None
    allow_custom: bool = True    # CHOICE 类型是否允许手动输入（选项 0）
    custom_label: str = "Enter a different value"


@dataclass
class InteractionResponse:
    """User's response to an interaction request."""

    value: str
    selected_option: Optional[int] = None  # 1-based；0 表示手动输入
    is_custom: bool = False
    cancelled: bool = False

    @property
    def confirmed(self) -> bool:
        return self.value.strip().lower() in ("y", "yes", "true")

    @classmethod
    def from_choice(cls, option_index: int, options: List[str]) -> "InteractionResponse":
        """Create response from a choice selection."""
        if option_index == 0:
            return cls(value="", selected_option=0, is_custom=True)
        if 1 <= option_index <= len(options):
            return cls(value=options[option_index - 1], selected_option=option_index)
        raise ValueError(f"Invalid option index: {option_index}")

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)

    def __repr__(self) -> str:
        # 响应里可能是密码
        return (
            f"InteractionResponse(selected_option={self.selected_option!r}, "
            f"is_custom={self.is_custom!r}, cancelled={self.cancelled!r})"
        )


class UserInteractionHandler(ABC):
    """Abstract base class for handling user interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """
        Present a request to the user and get their response.

        Args:
            request: The interaction request to present

        Returns:
            The user's response
        """

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Send a notification to the user (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, success, warning, error)
        """


class CLIInteractionHandler(UserInteractionHandler):
    """Console handler built on rich prompts."""

    _STYLES = {
        "info": ("ℹ", "blue"),
        "success": ("✓", "green"),
        "warning": ("⚠", "yellow"),
        "error": ("✗", "red"),
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        self.console.print()
        self.console.print(f"[bold cyan]{request.question}[/bold cyan]")
        if request.context:
            self.console.print(f"  {request.context}")

        try:
            if request.input_type == InputType.CHOICE:
                return self._handle_choice(request)
            if request.input_type == InputType.CONFIRM:
                return self._handle_confirm(request)
            if request.input_type == InputType.SECRET:
                return self._handle_secret(request)
            return self._handle_text(request)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n  (cancelled)")
            return InteractionResponse.cancelled_response()

    def _handle_choice(self, request: InteractionRequest) -> InteractionResponse:
        for i, option in enumerate(request.options, 1):
            self.console.print(f"  {i}) {option}")
        if request.allow_custom:
            self.console.print(f"  0) {request.custom_label}")

        lowest = 0 if request.allow_custom else 1
        default_idx: Optional[int] = None
        if request.default in request.options:
            default_idx = request.options.index(request.default) + 1

        while True:
            choice = IntPrompt.ask(
                f"  Select option ({lowest}-{len(request.options)})",
                console=self.console,
                default=default_idx,
            )
            if choice == 0 and request.allow_custom:
                value = Prompt.ask("  Enter value", console=self.console).strip()
                if not value:
                    self.console.print("  [red]Value cannot be empty[/red]")
                    continue
                return InteractionResponse(value=value, selected_option=0, is_custom=True)
            if choice is not None and 1 <= choice <= len(request.options):
                return InteractionResponse.from_choice(choice, request.options)
            self.console.print(f"  [red]Invalid option, enter {lowest}-{len(request.options)}[/red]")

    def _handle_confirm(self, request: InteractionRequest) -> InteractionResponse:
        default = (request.default or "n").lower().startswith("y")
        answer = Confirm.ask("  Continue?", console=self.console, default=default)
        return InteractionResponse(value="yes" if answer else "no")

    def _handle_text(self, request: InteractionRequest) -> InteractionResponse:
        value = Prompt.ask("  Value", console=self.console, default=request.default or "")
        return InteractionResponse(value=value.strip())

    def _handle_secret(self, request: InteractionRequest) -> InteractionResponse:
        value = Prompt.ask("  Password", console=self.console, password=True)
        return InteractionResponse(value=value)

    def notify(self, message: str, level: str = "info") -> None:
        icon, style = self._STYLES.get(level, ("•", "white"))
        self.console.print(f"[{style}]{icon}[/{style}] {message}")


class AutoResponseHandler(UserInteractionHandler):
    """
    Non-interactive handler.
    Takes defaults, confirms, picks the first option; cannot supply secrets.
    """

    def __init__(self, always_confirm: bool = True) -> None:
        self.always_confirm = always_confirm

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        logger.info("Auto-responding to: %s", request.question[:60])

        if request.input_type == InputType.SECRET:
            # 非交互模式下不存在可用的密码来源
            return InteractionResponse.cancelled_response()
        if request.input_type == InputType.CONFIRM:
            if request.default:
                return InteractionResponse(value=request.default)
            return InteractionResponse(value="yes" if self.always_confirm else "no")
        if request.input_type == InputType.CHOICE and request.options:
            if request.default in request.options:
                return InteractionResponse.from_choice(
                    request.options.index(request.default) + 1, request.options
                )
            return InteractionResponse.from_choice(1, request.options)
        if request.default:
            return InteractionResponse(value=request.default)
        return InteractionResponse.cancelled_response()

    def notify(self, message: str, level: str = "info") -> None:
        logger.info("[%s] %s", level, message)


Answer = Union[str, int, bool, None]


class ScriptedInteractionHandler(UserInteractionHandler):
    """
    Replays a fixed list of answers, in order.

    Each answer maps onto the request type: an ``int`` selects a CHOICE option
    (0 means manual entry, followed by the next answer as the value), a
    ``bool`` answers a CONFIRM, a ``str`` is taken verbatim and ``None``
    cancels. Running out of answers cancels as well.
    """

    def __init__(self, answers: Iterable[Answer] = ()) -> None:
        self._answers = deque(answers)
        self.requests: List[InteractionRequest] = []
        self.notifications: List[tuple] = []

    @property
    def remaining(self) -> int:
        return len(self._answers)

    def _next(self) -> Answer:
        if not self._answers:
            return None
        return self._answers.popleft()

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        self.requests.append(request)
        answer = self._next()
        if answer is None:
            return InteractionResponse.cancelled_response()

        if request.input_type == InputType.CONFIRM:
            if isinstance(answer, bool):
                return InteractionResponse(value="yes" if answer else "no")
            return InteractionResponse(value=str(answer))

        if request.input_type == InputType.CHOICE and isinstance(answer, int) and not isinstance(answer, bool):
            if answer == 0:
                custom = self._next()
                if custom is None:
                    return InteractionResponse.cancelled_response()
                return InteractionResponse(value=str(custom), selected_option=0, is_custom=True)
            return InteractionResponse.from_choice(answer, request.options)

        if request.input_type == InputType.CHOICE:
            return InteractionResponse(value=str(answer), selected_option=0, is_custom=True)

        return InteractionResponse(value=str(answer))

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))
