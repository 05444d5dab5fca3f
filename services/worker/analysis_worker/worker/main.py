"""worker 进程入口：加载配置、初始化日志并在重试监督器下运行订阅循环。"""

from __future__ import annotations

import logging
import sys

from analysis_worker.application.container import get_message_handler, shutdown_container_resources
from analysis_worker.config import Settings, get_settings
from analysis_worker.infra.logging.setup import configure_logging, shutdown_logging
from analysis_worker.infra.queue.base import open_subscription
from analysis_worker.worker.loop import message_loop
from analysis_worker.worker.supervisor import RetryPolicy, supervise

logger = logging.getLogger(__name__)


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.max_retries,
        interval=settings.retry_interval,
        exp_rate=settings.retry_exp_rate,
    )


def run_message_loop(settings: Settings) -> None:
    """单次订阅循环；处理器构建失败同样计入订阅循环失败。"""
    handler = get_message_handler()
    message_loop(lambda: open_subscription(settings.subscription, settings), handler.handle)


def main() -> None:
    settings = get_settings()
    configure_logging(settings, process_role="worker")

    # 启动时记录配置，便于排查部署问题；定位串中的凭据由日志格式化器脱敏。
    logger.info(
        "Starting worker",
        extra={
            "event": "worker.startup",
            "payload_preview": {
                "subscription": settings.subscription,
                "package_bucket": settings.packages_bucket,
                "results_bucket": settings.results_bucket,
                "image_tag": settings.image_tag,
            },
        },
    )
    try:
        supervise(lambda: run_message_loop(settings), build_retry_policy(settings))
    finally:
        shutdown_container_resources()
        shutdown_logging()
    sys.exit(1)


if __name__ == "__main__":
    main()
