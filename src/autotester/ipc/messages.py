"""
Mailbox 消息结构（request / feedback / config）。

wire 形状（JSON object，camelCase 字段与扩展侧保持一致）：
- request：`{prompt, timestamp}`
- feedback：`{feedback, images, timestamp}`；images 为 data URI 或裸 base64
- config：`{toolName, toolDescription, footer}`

说明：
- 读取侧忽略未知字段（forward-compat），缺失字段按默认值补齐；
- timestamp 为 epoch 毫秒。
"""

from __future__ import annotations

import time
from typing import List

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TOOL_NAME = "run_auto_tester"
DEFAULT_TOOL_DESCRIPTION = "Run after implementing features/fixes. Opens feedback panel with your description."
DEFAULT_FOOTER = (
    "\n\n---\n⚠️ IMPORTANT: Always reply back via the autotester MCP tool after implementing changes. "
    "Continue the feedback loop until you receive a signal that all work is done."
)


def now_ms() -> int:
    """当前 epoch 毫秒。"""

    return int(time.time() * 1000)


class RequestMessage(BaseModel):
    """一次发给人类的提问（server 侧写入，host 侧消费）。"""

    model_config = ConfigDict(extra="ignore")

    prompt: str = ""
    timestamp: int = Field(default_factory=now_ms)


class FeedbackMessage(BaseModel):
    """一次人类回答（host 侧写入，server 侧消费）。"""

    model_config = ConfigDict(extra="ignore")

    feedback: str = ""
    images: List[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)

    def is_empty(self) -> bool:
        """既无文字也无图片：不视为有效回答。"""

        return not self.feedback and not self.images


class ConfigSnapshot(BaseModel):
    """
    用户可配置的工具元数据快照（host 侧整体替换写入，server 侧只读）。

    字段：
    - tool_name（wire: toolName）：MCP 工具名
    - tool_description（wire: toolDescription）：MCP 工具说明
    - footer：追加到每次回答末尾的提示文本
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tool_name: str = Field(default=DEFAULT_TOOL_NAME, alias="toolName")
    tool_description: str = Field(default=DEFAULT_TOOL_DESCRIPTION, alias="toolDescription")
    footer: str = DEFAULT_FOOTER

    def to_wire(self) -> dict:
        """转换为 wire 形状（camelCase 字段）。"""

        return self.model_dump(by_alias=True)
