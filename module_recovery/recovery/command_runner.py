"""基于外部脚本的恢复步骤执行器"""

import os
from typing import Dict, Any, List, Optional

from .base import BaseStrategyRunner, StepResult
from ..utils.process import run_command


class CommandStrategyRunner(BaseStrategyRunner):
    """调用配置中的恢复脚本，找不到脚本视为步骤失败"""

    def __init__(self, config: Dict[str, Any], workspace_config: Dict[str, Any]):
        super().__init__(config, workspace_config)
        self.validate_command: Optional[List[str]] = config.get('validate_command')
        self.rebuild_command: Optional[List[str]] = config.get('rebuild_command')
        self.full_recovery_command: Optional[List[str]] = config.get('full_recovery_command')
        self.force_flag: str = config.get('force_flag', '--force')

    def _resolve(self, command: List[str]) -> List[str]:
        # 相对路径的脚本按工作区根目录解析
        program = command[0]
        if os.sep in program and not os.path.isabs(program):
            program = os.path.join(self.workspace_root, program)
        return [program] + list(command[1:])

    async def _run(self, command: Optional[List[str]], label: str,
                   cwd: Optional[str] = None) -> StepResult:
        if not command:
            return StepResult(False, f"{label} command not configured")

        result = await run_command(self._resolve(command), cwd=cwd or self.workspace_root,
                                   timeout=self.get_timeout())
        if result.succeeded:
            self.logger.info(f"{label} 完成，耗时 {result.duration:.1f}秒")
        else:
            self.logger.error(f"{label} 失败: {result.detail}")
        return StepResult(result.succeeded, result.detail, result.duration)

    async def validate_dependencies(self) -> StepResult:
        return await self._run(self.validate_command, 'dependency validation')

    async def rebuild_module(self, module_id: str) -> StepResult:
        return await self._run(self.rebuild_command, f'rebuild {module_id}',
                               cwd=self.module_path(module_id))

    async def full_recovery(self, force: bool = False) -> StepResult:
        command = self.full_recovery_command
        if command and force:
            command = list(command) + [self.force_flag]
        return await self._run(command, 'full recovery')
