from __future__ import annotations

from typing import Any

# key -> (English, Chinese); indexed by ProxyConfig.language.
MESSAGES: dict[str, tuple[str, str]] = {
    "server_started": ("Server started. Port: {port}, Threads: {threads}", "服务已启动，端口：{port}，并发线程数：{threads}"),
    "server_stopped": ("Server stopped", "服务已停止"),
    "request_received": ("Request received: {text}", "收到请求: {text}"),
    "err_key": ("Error: Invalid API Key", "错误：API 密钥无效"),
    "err_format": ("Error: Invalid Response Format", "错误：响应格式无效"),
    "err_json": ("Error: JSON Parse Error", "错误：JSON 解析失败"),
    "err_timeout": ("Request Timeout", "请求超时"),
    "err_network": ("Network Error: {detail}", "网络错误: {detail}"),
    "new_term": ("New Term Discovered: {source} = {target}", "发现新术语: {source} = {target}"),
    "retry_attempt": ("Retry translation ({attempt}/{max_attempts})", "重试翻译 ({attempt}/{max_attempts})"),
    "retry_success": ("Retry successful", "重试成功"),
    "retry_failed": ("Retry failed, skipping text", "重试失败，跳过文本"),
    "aborted": ("Translation Aborted", "翻译已终止"),
    "contexts_cleared": ("Context memory cleared.", "上下文记忆已清空。"),
    "result": ("  -> {text}", "  -> {text}"),
}


def message(key: str, language: int, **kwargs: Any) -> str:
    en, zh = MESSAGES[key]
    template = zh if int(language) == 1 else en
    return template.format(**kwargs) if kwargs else template


def one_line(text: str) -> str:
    """Render line breaks visibly so a request fits on one log line."""
    return text.replace("\r\n", "[LF]").replace("\n", "[LF]")
