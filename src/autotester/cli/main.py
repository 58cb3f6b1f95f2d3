"""
autotester CLI（serve / host / send-feedback / status）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- 机器可读命令（send-feedback / status / host 启动信息）向 stdout 输出 JSON；失败时也输出 JSON
"""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from autotester.config.mirror import ConfigMirror
from autotester.core.errors import FrameworkError, FrameworkIssue
from autotester.host.console import ConsolePanel
from autotester.host.extension import BridgeHost
from autotester.host.responder import Responder
from autotester.ipc.images import DEFAULT_IMAGE_MIME, encode_data_uri
from autotester.ipc.session import ChannelSession


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool = False) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text, flush=True)


def _issue_to_dict(issue: FrameworkIssue) -> Dict[str, Any]:
    """FrameworkIssue 转为 JSON 可输出的 dict。"""

    return {"code": issue.code, "message": issue.message, "details": issue.details}


def _configure_logging(level: str) -> None:
    """配置 stderr 日志（stdout 保留给 JSON 输出）。"""

    logging.basicConfig(
        stream=sys.stderr,
        level=str(level or "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_images(paths: List[str]) -> List[str]:
    """把图片文件编码为 data URI（读取失败抛 FrameworkError）。"""

    out: List[str] = []
    for raw in paths:
        p = Path(raw).expanduser()
        try:
            data = p.read_bytes()
        except OSError as exc:
            raise FrameworkError(
                code="CLI_IMAGE_READ_FAILED",
                message="Image file cannot be read.",
                details={"path": str(p), "reason": str(exc)},
            ) from exc
        out.append(encode_data_uri(data, mimetypes.guess_type(p.name)[0] or DEFAULT_IMAGE_MIME))
    return out


def _cmd_serve(args: argparse.Namespace) -> int:
    """子命令 serve：运行 stdio JSON-RPC server。"""

    from autotester.server.stdio import main as serve_main

    argv: List[str] = []
    if args.feedback_dir:
        argv += ["--feedback-dir", args.feedback_dir]
    if args.timeout_ms is not None:
        argv += ["--timeout-ms", str(args.timeout_ms)]
    return serve_main(argv)


def _cmd_host(args: argparse.Namespace) -> int:
    """子命令 host：以终端面板运行一个 host 会话，直到 `/quit` 或 EOF。"""

    panel = ConsolePanel()
    host = BridgeHost(
        view=panel,
        settings_path=Path(args.config).expanduser() if args.config else None,
        channel_root=Path(args.root).expanduser() if args.root else None,
    )
    try:
        host.activate()
    except FrameworkError as exc:
        _dump_json_to_stdout({"ok": False, "errors": [_issue_to_dict(exc.to_issue())]})
        return 2
    except ValidationError as exc:
        _dump_json_to_stdout({"ok": False, "errors": [{"code": "CONFIG_INVALID", "message": "Settings are invalid.", "details": {"reason": str(exc)}}]})
        return 2
    try:
        if host.controller is None:
            raise RuntimeError("host controller missing after activate")
        panel.bind(host.controller)
        _dump_json_to_stdout({"ok": True, "server": host.server_definition().to_dict()})
        panel.run()
    except KeyboardInterrupt:
        pass
    finally:
        host.deactivate()
    return 0


def _cmd_send_feedback(args: argparse.Namespace) -> int:
    """子命令 send-feedback：以 Responder 身份向 channel 写入一条回答。"""

    session = ChannelSession.attach(Path(args.feedback_dir))
    try:
        images = _read_images(list(args.image or []))
    except FrameworkError as exc:
        _dump_json_to_stdout({"ok": False, "errors": [_issue_to_dict(exc.to_issue())]})
        return 2
    written = Responder(session).submit(args.text, images)
    _dump_json_to_stdout({"ok": written, "channel_dir": str(session.paths.channel_dir), "images": len(images)})
    return 0 if written else 1


def _cmd_status(args: argparse.Namespace) -> int:
    """子命令 status：输出 channel 当前状态（JSON）。"""

    session = ChannelSession.attach(Path(args.feedback_dir))
    mailbox = session.mailbox
    _dump_json_to_stdout(
        {
            "ok": True,
            "channel_dir": str(session.paths.channel_dir),
            "exists": session.paths.channel_dir.exists(),
            "request_pending": mailbox.exists("request"),
            "feedback_pending": mailbox.exists("feedback"),
            "config": ConfigMirror(session).read().to_wire(),
        },
        pretty=bool(args.pretty),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """构造 argparse 解析器（含全部子命令）。"""

    p = argparse.ArgumentParser(prog="autotester", description="Ask-the-human bridge for coding agents")
    p.add_argument("--log-level", default="WARNING", help="stderr log level")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("serve", help="run the stdio JSON-RPC server")
    s.add_argument("--feedback-dir", default=None)
    s.add_argument("--timeout-ms", type=int, default=None)
    s.set_defaults(func=_cmd_serve)

    h = sub.add_parser("host", help="run a host session with a terminal panel")
    h.add_argument("--config", default=None, help="YAML settings file (watched for changes)")
    h.add_argument("--root", default=None, help="parent directory for session channels")
    h.set_defaults(func=_cmd_host)

    f = sub.add_parser("send-feedback", help="write a feedback message into a channel")
    f.add_argument("--feedback-dir", required=True)
    f.add_argument("--image", action="append", default=[], help="image file to attach (repeatable)")
    f.add_argument("text")
    f.set_defaults(func=_cmd_send_feedback)

    st = sub.add_parser("status", help="report channel state as JSON")
    st.add_argument("--feedback-dir", required=True)
    st.add_argument("--pretty", action="store_true")
    st.set_defaults(func=_cmd_status)
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI 入口：解析参数并分发到子命令，返回退出码。"""

    args = build_parser().parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    return int(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
