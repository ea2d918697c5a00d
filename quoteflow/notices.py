"""User-facing notices."""

from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from quoteflow.config import settings

logger = structlog.get_logger()


class NoticeLevel(str, Enum):
    """Severity of a notice."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """A message shown to the user."""

    level: NoticeLevel = Field(..., description="Notice severity")
    message: str = Field(..., description="Message text")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="When it was posted"
    )
    context: Dict[str, Any] = Field(default_factory=dict, description="Additional context")

    model_config = ConfigDict(from_attributes=True)


class NoticeBoard:
    """Collects notices for the host UI, newest last."""

    def __init__(
        self,
        limit: Optional[int] = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ):
        self._notices: Deque[Notice] = deque(maxlen=limit or settings.notice_history_limit)
        self.on_notice = on_notice
        self.logger = logger.bind(component="notice_board")

    def __len__(self) -> int:
        return len(self._notices)

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    @property
    def latest(self) -> Optional[Notice]:
        return self._notices[-1] if self._notices else None

    def post(self, level: NoticeLevel, message: str, **context: Any) -> Notice:
        notice = Notice(level=level, message=message, context=context)
        self._notices.append(notice)
        self.logger.info("Notice posted", level=level.value, message=message)
        if self.on_notice is not None:
            self.on_notice(notice)
        return notice

    def info(self, message: str, **context: Any) -> Notice:
        return self.post(NoticeLevel.INFO, message, **context)

    def success(self, message: str, **context: Any) -> Notice:
        return self.post(NoticeLevel.SUCCESS, message, **context)

    def warning(self, message: str, **context: Any) -> Notice:
        return self.post(NoticeLevel.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> Notice:
        return self.post(NoticeLevel.ERROR, message, **context)

    def messages(self, level: Optional[NoticeLevel] = None) -> List[str]:
        return [n.message for n in self._notices if level is None or n.level == level]

    def clear(self) -> None:
        self._notices.clear()
