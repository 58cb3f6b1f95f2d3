"""
终端面板：用 stdin/stdout 实现 `PanelView`（`autotester host` 使用）。

输入约定：
- 普通一行：作为回答提交（附带之前 `/image` 登记的图片）
- `/image <path>`：登记一张图片（以 data URI 形式随下一次回答提交）
- `/clear`：清空对话记录
- `/quit` 或 EOF：结束
"""

from __future__ import annotations

import logging
import mimetypes
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from autotester.host.panel import PanelController
from autotester.ipc.images import DEFAULT_IMAGE_MIME, encode_data_uri

logger = logging.getLogger(__name__)


class ConsolePanel:
    """基于 stdin/stdout 的面板实现（一行输入即一次提交）。"""

    def __init__(self, *, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        """创建终端面板（默认使用进程的 stdin/stdout）。"""

        self._in = stdin or sys.stdin
        self._out = stdout or sys.stdout
        self._write_lock = threading.Lock()
        self._controller: Optional[PanelController] = None
        self._images: List[str] = []

    def _print(self, text: str) -> None:
        """线程安全地输出一行。"""

        with self._write_lock:
            self._out.write(text + "\n")
            self._out.flush()

    def post_message(self, message: Dict[str, Any]) -> None:
        """渲染控制器发来的面板消息。"""

        command = message.get("command")
        if command == "showPrompt":
            if not message.get("skipAddMessage"):
                self._print(f"[agent] {message.get('message', '')}")
            self._print("> (type your answer)")
        elif command == "restoreMessages":
            for m in message.get("messages") or []:
                self._print(f"[{m.get('type')}] {m.get('text')}")
        elif command == "submitted":
            self._print("(sent)")
        elif command == "config":
            key = "Ctrl+Enter" if message.get("ctrlEnterToSubmit") else "Enter"
            self._print(f"(submit with {key})")

    def reveal(self) -> None:
        """终端没有“前台”概念：用响铃提示有新的提问。"""

        with self._write_lock:
            self._out.write("\a")
            self._out.flush()

    def bind(self, controller: PanelController) -> None:
        """与控制器互相绑定。"""

        self._controller = controller
        controller.attach(self)

    def _attach_image(self, raw_path: str) -> None:
        """读取图片文件并登记为下一次提交的附件。"""

        p = Path(raw_path).expanduser()
        try:
            data = p.read_bytes()
        except OSError as e:
            self._print(f"(cannot read image: {e})")
            return
        mime = mimetypes.guess_type(p.name)[0] or DEFAULT_IMAGE_MIME
        self._images.append(encode_data_uri(data, mime))
        self._print(f"(image attached: {p.name})")

    def run(self) -> None:
        """读取输入直到 `/quit` 或 EOF。"""

        controller = self._controller
        if controller is None:
            raise RuntimeError("ConsolePanel.bind() must be called before run()")
        controller.handle_message({"command": "ready"})
        for raw in self._in:
            line = raw.rstrip("\n")
            if line.strip() == "/quit":
                break
            if line.strip() == "/clear":
                controller.handle_message({"command": "clear"})
                continue
            if line.startswith("/image "):
                self._attach_image(line[len("/image "):].strip())
                continue
            images, self._images = self._images, []
            controller.handle_message({"command": "submit", "text": line, "images": images})
