"""异常定义"""

from typing import Any, Dict, List, Optional


class BrowserAgentError(Exception):
    """所有自定义异常的基类"""


class ConfigurationError(BrowserAgentError):
    """缺少凭证等配置问题"""


class RemoteAPIError(BrowserAgentError):
    """会话服务返回了非 2xx 响应"""

    def __init__(self, status_code: int, body: str, method: str = "", path: str = ""):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        super().__init__(f"Browserbase API error: {status_code} - {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class SessionError(BrowserAgentError):
    """会话无法创建或连接"""


class ActionError(BrowserAgentError):
    """单个动作执行失败，由执行器记录为失败结果"""

    def __init__(self, message: str, retryable: bool = True, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.retryable = retryable
        self.details = details


class InvalidActionError(ActionError):
    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class ElementNotFoundError(ActionError):
    def __init__(self, target: str, attempted: List[str]):
        self.target = target
        self.attempted = attempted
        super().__init__(
            f"Could not find clickable element: {target} (tried: {', '.join(attempted)})",
            details={"target": target, "attemptedSelectors": attempted},
        )


class SearchInputNotFoundError(ActionError):
    """找不到搜索框；错误信息里带上尝试过的选择器和页面上实际的 input 列表"""

    def __init__(self, page_url: str, attempts: List[Dict[str, Any]], inputs: List[Dict[str, Any]]):
        self.page_url = page_url
        self.attempts = attempts
        self.inputs = inputs
        super().__init__(
            self._format(page_url, attempts, inputs),
            retryable=False,
            details={"pageUrl": page_url, "attemptedSelectors": attempts, "inputs": inputs},
        )

    @staticmethod
    def _format(page_url: str, attempts: List[Dict[str, Any]], inputs: List[Dict[str, Any]]) -> str:
        lines = [
            f"No search input found on the current page ({page_url}). "
            f"Checked {len(attempts)} selectors.",
            "Attempted selectors:",
        ]
        for attempt in attempts:
            if attempt.get("error"):
                lines.append(f"  - {attempt['selector']}: error={attempt['error']}")
            else:
                lines.append(
                    f"  - {attempt['selector']}: count={attempt.get('count', 0)}, "
                    f"visible={attempt.get('visible', False)}, enabled={attempt.get('enabled', False)}, "
                    f"editable={attempt.get('editable', False)}"
                )
        if inputs:
            lines.append(f"Inputs on page ({len(inputs)}):")
            for item in inputs:
                lines.append(
                    f"  - [{item['index']}] {item['selector']} name=\"{item.get('name') or ''}\" "
                    f"type=\"{item.get('type') or ''}\" placeholder=\"{item.get('placeholder') or ''}\" "
                    f"aria-label=\"{item.get('ariaLabel') or ''}\" visible={item.get('visible')}"
                )
        else:
            lines.append("Inputs on page (0): none")
        return "\n".join(lines)
