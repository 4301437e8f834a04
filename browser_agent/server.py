"""HTTP 接口：接收浏览器命令、结束会话"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .core import BrowserAgent
from .errors import ConfigurationError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


class CommandRequest(BaseModel):
    message: Optional[str] = None
    chatId: Optional[str] = None


def _agent(request: Request) -> BrowserAgent:
    return request.app.state.agent


async def _read_json_body(request: Request) -> dict:
    """兼容 application/json 与 sendBeacon 发来的 text/plain"""
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid request body: {e}")
    return data if isinstance(data, dict) else {}


def create_app(agent: Optional[BrowserAgent] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    agent = agent or BrowserAgent.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.log_missing()
        agent.session_manager.register_exit_cleanup()
        logger.info("🌐 浏览器自动化服务已启动")
        yield
        logger.info("🧹 服务关闭，清理会话")
        await agent.shutdown()

    app = FastAPI(title="Remote Browser Agent", lifespan=lifespan)
    app.state.agent = agent
    app.state.settings = settings

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/browser")
    async def run_command(body: CommandRequest, request: Request):
        if not body.message or not body.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        try:
            response = await _agent(request).handle_message(body.message, body.chatId)
        except Exception as e:
            logger.exception("❌ 浏览器自动化出错")
            return JSONResponse(
                {
                    "success": False,
                    "isBrowserCommand": True,
                    "message": "Browser automation error occurred.",
                    "error": str(e),
                },
                status_code=500,
            )
        return response.to_dict()

    @app.delete("/api/browser")
    async def delete_session(request: Request):
        data = await _read_json_body(request)
        session_id = data.get("sessionId")
        if not session_id:
            raise HTTPException(status_code=400, detail="sessionId is required in DELETE request body")
        try:
            result = await _agent(request).end_session(session_id)
        except ConfigurationError as e:
            logger.error("❌ %s", e)
            return JSONResponse({"success": False, "error": "Server configuration error for Browserbase API."}, status_code=500)
        if not result["success"]:
            # 透传服务商返回的状态码
            return JSONResponse(result, status_code=result.get("statusCode", 500))
        return result

    @app.post("/api/browser/stop")
    async def stop_command(request: Request):
        stopped = _agent(request).stop()
        return {"success": True, "stopped": stopped}

    @app.post("/api/browser/unload", status_code=202)
    async def unload(request: Request):
        released = _agent(request).release_on_unload()
        return {"success": True, "sessionId": released}

    @app.get("/api/browser/session")
    async def session_status(request: Request):
        return _agent(request).status()

    return app


def main():
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
