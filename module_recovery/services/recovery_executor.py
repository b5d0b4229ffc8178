"""恢复策略执行"""

import asyncio
import itertools
from typing import List, Optional

from ..models.health import ModuleHealthRecord, ModuleStatus, DEGRADED_SCORE
from ..models.recovery import RecoverySession, RecoveryStrategy, SessionOutcome, Severity
from ..recovery.base import BaseStrategyRunner, StepResult
from .severity_classifier import SeverityClassifier
from ..utils.exceptions import StrategyExecutionError, ErrorCode
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now

_session_counter = itertools.count(1)


def new_session_id() -> str:
    return f"RS-{int(utc_now().timestamp() * 1000)}-{next(_session_counter)}"


class RecoveryStrategyExecutor:
    """
    按严重级别执行对应的恢复策略

    execute 从调用方看是一个整体的阻塞操作，受 recovery.timeout 约束。
    任何异常都会转换为失败的会话，计数器由调度器负责更新。
    """

    def __init__(self, runner: BaseStrategyRunner, timeout: Optional[float] = None):
        """
        初始化策略执行器

        Args:
            runner: 恢复步骤执行者
            timeout: 整个策略的超时时间（秒），默认取执行者配置
        """
        self.runner = runner
        self.timeout = timeout if timeout is not None else runner.get_timeout()
        self.logger = get_logger(__name__)

    async def execute(self, severity: Severity,
                      records: List[ModuleHealthRecord]) -> RecoverySession:
        """
        执行严重级别对应的恢复策略

        Args:
            severity: 严重级别
            records: 本次检查的模块健康记录

        Returns:
            RecoverySession: 已完成的恢复会话
        """
        strategy = SeverityClassifier.strategy_for(severity)
        session = RecoverySession(id=new_session_id(), strategy=strategy, severity=severity)
        self.logger.info(f"开始执行恢复策略 {strategy.value} (严重级别: {severity.value}, "
                         f"会话: {session.id})")

        try:
            await asyncio.wait_for(self._run_strategy(session, records), timeout=self.timeout)
        except asyncio.TimeoutError:
            session.error = StrategyExecutionError(
                f"恢复策略执行超时 ({self.timeout}秒)", ErrorCode.STRATEGY_TIMEOUT,
                strategy=strategy.value
            ).format_error()
        except Exception as e:
            self.logger.error(f"恢复策略 {strategy.value} 执行异常: {e}", exc_info=True)
            session.error = StrategyExecutionError(
                f"恢复策略执行异常: {e}", strategy=strategy.value, cause=e
            ).format_error()

        session.finished_at = utc_now()
        if session.error is None and not session.failed_modules:
            session.outcome = SessionOutcome.SUCCESS
            self.logger.info(f"恢复策略 {strategy.value} 执行成功")
        else:
            session.outcome = SessionOutcome.FAILURE
            self.logger.error(f"恢复策略 {strategy.value} 执行失败: {session.error}")
        return session

    async def _run_strategy(self, session: RecoverySession,
                            records: List[ModuleHealthRecord]) -> None:
        if session.strategy == RecoveryStrategy.DEPENDENCY_CHECK:
            self._apply(session, await self.runner.validate_dependencies())
        elif session.strategy == RecoveryStrategy.INCREMENTAL_REBUILD:
            await self._incremental_rebuild(session, records)
        elif session.strategy == RecoveryStrategy.FULL_RECOVERY:
            self._apply(session, await self.runner.full_recovery(force=False))
        elif session.strategy == RecoveryStrategy.EMERGENCY_RESET:
            self.logger.warning("执行紧急重置：清除恢复状态后强制完整恢复")
            if self._apply(session, await self.runner.clear_recovery_state()):
                self._apply(session, await self.runner.full_recovery(force=True))

    @staticmethod
    def _apply(session: RecoverySession, result: StepResult) -> bool:
        if not result.succeeded:
            session.error = result.detail or "recovery step failed"
        return result.succeeded

    async def _incremental_rebuild(self, session: RecoverySession,
                                   records: List[ModuleHealthRecord]) -> None:
        targets = []
        for record in records:
            if record.score >= DEGRADED_SCORE:
                continue
            if record.status == ModuleStatus.MISSING:
                self.logger.warning(f"模块 {record.module_id} 不存在，跳过重建")
                continue
            targets.append(record.module_id)

        session.affected_modules = set(targets)
        if not targets:
            self.logger.info("没有需要重建的模块")
            return

        self.logger.info(f"并发重建 {len(targets)} 个模块: {', '.join(targets)}")
        results = await asyncio.gather(
            *(self.runner.rebuild_module(module_id) for module_id in targets),
            return_exceptions=True
        )
        for module_id, result in zip(targets, results):
            if isinstance(result, BaseException):
                self.logger.error(f"模块 {module_id} 重建异常: {result}")
                session.failed_modules.add(module_id)
            elif not result.succeeded:
                self.logger.error(f"模块 {module_id} 重建失败: {result.detail}")
                session.failed_modules.add(module_id)

        if session.failed_modules:
            session.error = f"rebuild failed for: {', '.join(sorted(session.failed_modules))}"
