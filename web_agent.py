"""
Remote Browser Agent - 基于 Browserbase + Playwright + OpenAI 的远程浏览器自动化

架构说明：
  1. 意图检测 (intent)      - 判断消息是不是浏览器命令
  2. 命令解析 (planner)     - LLM 输出动作计划，失败时退回规则匹配
  3. 会话管理 (session)     - 创建 / 复用 / 销毁唯一的远程浏览器会话
  4. 动作执行 (controller)  - 逐个执行动作，单个失败不影响后续动作
  5. 结果汇总 (aggregator)  - 刷新实时画面 URL，生成统一响应

依赖安装：
    pip install -e .

运行示例：
    python web_agent.py "go to openai.com" "search for playwright"
    python web_agent.py --serve
"""

import argparse
import asyncio
import json
from typing import List

from browser_agent.config import Settings
from browser_agent.core import BrowserAgent
from browser_agent.logging_config import setup_logging
from browser_agent.server import main as serve


async def run_commands(commands: List[str]) -> None:
    """在同一个远程会话里依次执行多条命令，结束后关闭会话"""
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    settings.log_missing()

    agent = BrowserAgent.from_settings(settings)
    agent.session_manager.register_exit_cleanup()
    try:
        for command in commands:
            print(f"\n{'='*60}")
            print(f"[Agent] 命令：{command}")
            print(f"{'='*60}")

            response = await agent.handle_message(f"> {command}")
            print(response.message)
            for result in response.results:
                mark = "✓" if result.success else "❌"
                print(f"  {mark} {result.description}" + (f": {result.error}" if result.error else ""))
            if response.live_view_url:
                print(f"[Agent] 实时画面：{response.live_view_url}")

            payload = response.to_dict()
            for item in payload["results"]:
                if item["screenshot"]:
                    item["screenshot"] = f"<{len(item['screenshot'])} bytes base64>"
            print(json.dumps(payload, ensure_ascii=False, indent=2))
    finally:
        await agent.shutdown()
        print("\n[Agent] 会话已关闭。")


def main():
    parser = argparse.ArgumentParser(description="Drive a remote Browserbase session with natural language commands")
    parser.add_argument("commands", nargs="*", help="natural language browser commands, run in order")
    parser.add_argument("--serve", action="store_true", help="start the HTTP API instead")
    args = parser.parse_args()

    if args.serve:
        serve()
        return
    if not args.commands:
        parser.error("no commands given (or use --serve)")
    asyncio.run(run_commands(args.commands))


if __name__ == "__main__":
    main()
