"""worker 异常类型：区分作业级硬错误与订阅级终止错误。"""

from __future__ import annotations


class WorkerError(RuntimeError):
    """worker 内部异常基类。"""


class ConfigurationError(WorkerError):
    """运行配置缺失或不一致，例如作业引用了未配置的包存储。"""


class StagingError(WorkerError):
    """远端包文件无法暂存到本地。"""


class ResolutionError(WorkerError):
    """无法解析包版本（例如查询 latest 失败）。"""


class SandboxError(WorkerError):
    """沙箱无法执行命令，区别于分析阶段的非成功状态。"""


class ResultUploadError(WorkerError):
    """分析结果写入对象存储失败。"""


class SubscriptionError(WorkerError):
    """订阅连接报告终止错误，当前订阅实例不可再接收消息。"""


class UnsupportedEcosystemError(KeyError):
    """生态名称未注册。"""
