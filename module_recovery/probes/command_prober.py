"""基于外部命令的模块探测器"""

from typing import Dict, Any, List, Optional

from .base import BaseModuleProber
from .factory import register_prober
from ..models.health import ProbeResult
from ..utils.process import run_command


@register_prober('command')
class CommandProber(BaseModuleProber):
    """在模块目录中执行构建和类型检查命令"""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.build_command: Optional[List[str]] = self.probe_config.get('build_command')
        self.type_check_command: Optional[List[str]] = self.probe_config.get('type_check_command')
        self.test_command: Optional[List[str]] = self.probe_config.get('test_command')

    def validate_config(self) -> bool:
        for command in (self.build_command, self.type_check_command, self.test_command):
            if command is None:
                continue
            if not isinstance(command, list) or not command:
                self.logger.error(f"探测命令配置无效: {command!r}")
                return False
        timeout = self.get_timeout()
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            self.logger.error(f"探测超时配置无效: {timeout!r}")
            return False
        return True

    async def builds(self, module_id: str) -> ProbeResult:
        return await self._run(module_id, self.build_command, 'build')

    async def type_checks(self, module_id: str) -> ProbeResult:
        return await self._run(module_id, self.type_check_command, 'type check')

    async def runs_tests(self, module_id: str) -> ProbeResult:
        return await self._run(module_id, self.test_command, 'test')

    async def _run(self, module_id: str, command: Optional[List[str]],
                   label: str) -> ProbeResult:
        if not command:
            return ProbeResult(True, f"{label} command not configured")

        result = await run_command(command, cwd=self.module_path(module_id),
                                   timeout=self.get_timeout())
        if not result.succeeded:
            self.logger.debug(f"模块 {module_id} {label} 失败: {result.detail}")
        return ProbeResult(result.succeeded, result.detail, result.duration)
