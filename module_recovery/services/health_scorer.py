"""模块健康评分"""

import asyncio
import json
import os
import time
from typing import Dict, Any, List, Optional, Awaitable

from ..models.health import (
    CheckResult, ModuleHealthRecord, ModuleStatus, ProbeResult, status_for_score,
    CRITICAL_SCORE
)
from ..probes.base import BaseModuleProber
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now

# 检查项失败时扣除的分数
CHECK_WEIGHTS: Dict[str, int] = {
    'manifest_present': 30,
    'manifest_valid': 25,
    'build_config_present': 15,
    'source_present': 20,
    'source_not_empty': 15,
    'build_output_present': 10,
    'build_output_not_empty': 8,
    'dependencies_installed': 15,
    'lock_file_present': 5,
    'type_check': 12,
    'build': 10,
    'manifest_readable': 5,
    'dependency_footprint': 3
}

RECOMMENDATIONS: Dict[str, str] = {
    'manifest_present': "Restore the module manifest",
    'manifest_valid': "Fix the module manifest syntax",
    'build_config_present': "Add TypeScript configuration",
    'source_present': "Create source directory structure",
    'build_output_present': "Run build process",
    'build_output_not_empty': "Run build process",
    'dependencies_installed': "Run npm install",
    'lock_file_present': "Commit a dependency lock file",
    'type_check': "Fix TypeScript errors",
    'build': "Fix build errors",
    'dependency_footprint': "Consider dependency cleanup"
}

MAX_SCORE = 100


def _is_empty_dir(path: str) -> bool:
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except OSError:
        return True


def _directory_size_mb(path: str) -> float:
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total / (1024 * 1024)


class HealthScorer:
    """
    对单个模块执行文件系统检查和探测器检查，得出0-100的健康评分

    评分从100开始，每个失败的检查项扣除对应权重。评分过程只读，
    任何探测失败都只计为失败的检查项，不会向调用方抛出异常。
    """

    def __init__(self, prober: BaseModuleProber, workspace_config: Dict[str, Any],
                 max_concurrent_checks: int = 5):
        """
        初始化评分器

        Args:
            prober: 模块探测器
            workspace_config: 工作区配置
            max_concurrent_checks: 同时评分的模块数上限
        """
        self.prober = prober
        self.config = workspace_config
        self.max_concurrent_checks = max_concurrent_checks
        self.check_build = workspace_config.get('probe', {}).get('check_build', False)
        self.measure_tests = workspace_config.get('probe', {}).get('measure_tests', False)
        self.logger = get_logger(__name__)

    async def _probe(self, name: str, call: Awaitable[ProbeResult]) -> ProbeResult:
        try:
            return await call
        except Exception as e:
            self.logger.warning(f"探测 {name} 执行失败: {e}")
            return ProbeResult(False, f"{name} probe failed: {e}")

    def _check(self, checks: List[CheckResult], name: str, passed: bool,
               detail: Optional[str] = None) -> bool:
        checks.append(CheckResult(name, passed, CHECK_WEIGHTS[name], None if passed else detail))
        return passed

    async def score(self, module_id: str) -> ModuleHealthRecord:
        """
        计算单个模块的健康评分

        Args:
            module_id: 模块标识

        Returns:
            ModuleHealthRecord: 模块健康记录
        """
        start_time = time.monotonic()
        exists = await self._probe('exists', self.prober.exists(module_id))
        if not exists.passed:
            self.logger.error(f"模块不存在: {module_id}")
            return ModuleHealthRecord(
                module_id=module_id,
                score=0,
                status=ModuleStatus.MISSING,
                checks=[CheckResult('module_exists', False, MAX_SCORE, exists.detail)],
                recommendations=["Restore the module directory"],
                duration=time.monotonic() - start_time
            )

        path = self.prober.module_path(module_id)
        checks: List[CheckResult] = []
        timings: Dict[str, float] = {}

        manifest = os.path.join(path, self.config.get('manifest_file', 'package.json'))
        if self._check(checks, 'manifest_present', os.path.isfile(manifest),
                       f"Missing {os.path.basename(manifest)}"):
            try:
                with open(manifest, 'r', encoding='utf-8') as file:
                    json.load(file)
                valid = True
            except (OSError, ValueError):
                valid = False
            self._check(checks, 'manifest_valid', valid,
                        f"Invalid {os.path.basename(manifest)} format")

        build_config = os.path.join(path, self.config.get('build_config_file', 'tsconfig.json'))
        has_build_config = self._check(checks, 'build_config_present',
                                       os.path.isfile(build_config),
                                       f"Missing {os.path.basename(build_config)}")

        source_dir = os.path.join(path, self.config.get('source_dir', 'src'))
        has_sources = self._check(checks, 'source_present', os.path.isdir(source_dir),
                                  "Missing source directory")
        if has_sources:
            self._check(checks, 'source_not_empty', not _is_empty_dir(source_dir),
                        "Empty source directory")

        output_dir = os.path.join(path, self.config.get('output_dir', 'dist'))
        if self._check(checks, 'build_output_present', os.path.isdir(output_dir),
                       "Missing build artifacts"):
            self._check(checks, 'build_output_not_empty', not _is_empty_dir(output_dir),
                        "Empty build output directory")

        deps_dir = os.path.join(path, self.config.get('dependencies_dir', 'node_modules'))
        has_deps = self._check(checks, 'dependencies_installed', os.path.isdir(deps_dir),
                               "Missing installed dependencies")

        lock_files = self.config.get('lock_files', [])
        self._check(checks, 'lock_file_present',
                    any(os.path.isfile(os.path.join(path, name)) for name in lock_files),
                    "Missing lock file")

        if has_build_config and has_sources:
            result = await self._probe('type_check', self.prober.type_checks(module_id))
            timings['type_check'] = result.duration
            self._check(checks, 'type_check', result.passed,
                        result.detail or "Type check failed")

        if self.check_build:
            result = await self._probe('build', self.prober.builds(module_id))
            timings['build'] = result.duration
            self._check(checks, 'build', result.passed, result.detail or "Build failed")

        if self.measure_tests:
            result = await self._probe('test', self.prober.runs_tests(module_id))
            timings['test'] = result.duration
            if not result.passed:
                self.logger.warning(f"模块 {module_id} 测试未通过: {result.detail}")

        self._check(checks, 'manifest_readable', os.access(manifest, os.R_OK),
                    f"{os.path.basename(manifest)} not readable")

        if has_deps:
            limit = self.config.get('dependency_size_limit_mb', 500)
            size_mb = await asyncio.get_running_loop().run_in_executor(
                None, _directory_size_mb, deps_dir
            )
            self._check(checks, 'dependency_footprint', size_mb <= limit,
                        f"Large dependency directory ({int(size_mb)} MB)")

        deductions = sum(check.weight for check in checks if not check.passed)
        score = max(0, min(MAX_SCORE, MAX_SCORE - deductions))
        recommendations = []
        for check in checks:
            advice = RECOMMENDATIONS.get(check.name)
            if not check.passed and advice and advice not in recommendations:
                recommendations.append(advice)

        record = ModuleHealthRecord(
            module_id=module_id,
            score=score,
            status=status_for_score(score),
            checks=checks,
            recommendations=recommendations,
            duration=time.monotonic() - start_time,
            timings=timings
        )
        self.logger.debug(f"模块 {module_id} 评分 {score} ({record.status.value})")
        return record

    def _failed_record(self, module_id: str, check_name: str, detail: str,
                       duration: float) -> ModuleHealthRecord:
        return ModuleHealthRecord(
            module_id=module_id,
            score=CRITICAL_SCORE,
            status=status_for_score(CRITICAL_SCORE),
            checks=[CheckResult(check_name, False, MAX_SCORE - CRITICAL_SCORE, detail)],
            recommendations=["Investigate module health checks"],
            timestamp=utc_now(),
            duration=duration
        )

    async def score_all(self, module_ids: List[str]) -> List[ModuleHealthRecord]:
        """
        并发评分所有模块，结果顺序与输入一致

        超过单模块超时的模块记为 critical（评分30）。

        Args:
            module_ids: 模块标识列表

        Returns:
            List[ModuleHealthRecord]: 模块健康记录列表
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_checks)
        timeout = self.prober.get_module_timeout()

        async def score_with_limit(module_id: str) -> ModuleHealthRecord:
            async with semaphore:
                start_time = time.monotonic()
                try:
                    return await asyncio.wait_for(self.score(module_id), timeout=timeout)
                except asyncio.TimeoutError:
                    self.logger.warning(f"模块 {module_id} 评分超时 ({timeout}秒)")
                    return self._failed_record(module_id, 'probe_timeout',
                                               f"health checks timed out after {timeout}s",
                                               time.monotonic() - start_time)
                except Exception as e:
                    self.logger.error(f"模块 {module_id} 评分异常: {e}", exc_info=True)
                    return self._failed_record(module_id, 'probe_error', str(e),
                                               time.monotonic() - start_time)

        self.logger.info(f"开始评分 {len(module_ids)} 个模块")
        return list(await asyncio.gather(*(score_with_limit(m) for m in module_ids)))
