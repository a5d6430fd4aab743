"""错误分类 — 单次分析事件的失败原因。"""

from __future__ import annotations

import httpx

_MODEL_DETAILS = "The AI model is currently unavailable. Please try again later."
_CONNECTIVITY_DETAILS = (
    "There was an issue connecting to the AI service. Please check your internet connection."
)
_UNKNOWN_DETAILS = "Unknown error"


class ConfigError(Exception):
    """启动时配置缺失或非法。"""


class AnalysisError(Exception):
    """分析事件失败的基类。fatal=True 时整个事件以 error 结束。"""

    fatal: bool = True
    default_message: str = "Failed to analyze drawing"

    def __init__(self, message: str = "", details: str | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class InvalidImageData(AnalysisError):
    default_message = "Invalid image data"


class ModelUnavailable(AnalysisError):
    default_message = "Failed to get vision response"


class EmptyCritique(AnalysisError):
    default_message = "No feedback received from the model"


class SpeechSynthesisFailed(AnalysisError):
    default_message = "Failed to convert text to speech"


class SearchDegraded(AnalysisError):
    """关键词提取或图片搜索失败，只会让 images 变为空列表。"""

    fatal = False
    default_message = "Reference search unavailable"


def describe_failure(exc: BaseException) -> str:
    """按异常链判断是模型问题还是网络问题，给客户端一个粗略说明。"""
    if isinstance(exc, AnalysisError) and exc.details:
        return exc.details
    if isinstance(exc, EmptyCritique):
        return _MODEL_DETAILS

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, httpx.HTTPStatusError):
            return _MODEL_DETAILS
        if isinstance(current, httpx.TransportError):
            return _CONNECTIVITY_DETAILS
        current = current.__cause__ or current.__context__
    return _UNKNOWN_DETAILS
