"""操作人上下文"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ActorContext:
    """每次变更库存时由调用方显式传入的操作人信息

    user_id 可为空（例如系统任务），source 标记调用来源，
    写入审计流水。
    """

    user_id: Optional[int] = None
    source: str = "pos"

    @classmethod
    def system(cls, source: str = "system") -> "ActorContext":
        return cls(user_id=None, source=source)
