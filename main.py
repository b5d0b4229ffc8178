#!/usr/bin/env python3
"""
模块健康自动恢复系统主程序入口

周期性检查工作区内各模块的健康状况，在健康状况恶化时自动执行逐级升级的恢复策略，
并通过配置的渠道发送通知。
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Dict, Any, List

import psutil

from module_recovery import __version__
from module_recovery.alerts.integrator import AlertIntegrator
from module_recovery.alerts.manager import NotificationDispatcher
from module_recovery.models.recovery import TickReport
from module_recovery.probes import prober_factory
from module_recovery.recovery import CommandStrategyRunner
from module_recovery.services.audit_trail import AuditTrail
from module_recovery.services.config_manager import ConfigManager
from module_recovery.services.config_watcher import ConfigWatcher
from module_recovery.services.health_history import HealthHistory
from module_recovery.services.health_scorer import HealthScorer
from module_recovery.services.monitor_scheduler import MonitorScheduler
from module_recovery.services.performance_sampler import PerformanceSampler
from module_recovery.services.pid_file import PidFile
from module_recovery.services.recovery_executor import RecoveryStrategyExecutor
from module_recovery.services.state_store import TriggerStateStore
from module_recovery.utils.exceptions import (
    RecoveryOrchestratorError, ConfigError, DaemonAlreadyRunningError, DaemonNotRunningError,
    DaemonRunningError
)
from module_recovery.utils.log_manager import log_manager, get_logger

# 恢复超时之外，留给通知投递和保存状态的时间（秒）
STOP_GRACE_PERIOD = 90


class RecoveryTriggerApp:
    """自动恢复系统主应用程序类"""

    def __init__(self, config_path: Optional[str] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径，为空时使用默认配置
        """
        self.config_path = config_path
        self.logger: Optional[logging.Logger] = None

        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.integrator: Optional[AlertIntegrator] = None
        self.scheduler: Optional[MonitorScheduler] = None

    def initialize(self, log_level: Optional[str] = None, log_file: Optional[str] = None,
                   thresholds: Optional[Dict[str, Any]] = None,
                   webhooks: Optional[List[str]] = None,
                   alert_dir: Optional[str] = None,
                   email_recipients: Optional[List[str]] = None,
                   enable_email: bool = False) -> None:
        """
        加载配置并创建所有组件

        Args:
            log_level: 覆盖配置文件中的日志级别
            log_file: 覆盖配置文件中的日志文件
            thresholds: 命令行阈值覆盖
            webhooks: 命令行追加的 webhook 地址
            alert_dir: 命令行追加的告警目录
            email_recipients: 命令行指定的邮件接收人
            enable_email: 是否启用邮件通知

        Raises:
            ConfigError: 配置无效
        """
        self.config_manager = ConfigManager(self.config_path)
        config = self.config_manager.load_config()
        if thresholds or webhooks or alert_dir or email_recipients or enable_email:
            config = self.config_manager.apply_overrides(
                thresholds, webhooks, alert_dir,
                email_recipients=email_recipients, enable_email=enable_email
            )

        global_config = config['global']
        self._configure_logging(global_config, log_level, log_file)
        self.logger = get_logger('main')
        self.logger.debug("开始初始化自动恢复系统")

        workspace_config = self.config_manager.get_workspace_config()
        prober = prober_factory.create_prober(workspace_config)
        scorer = HealthScorer(prober, workspace_config,
                              global_config.get('max_concurrent_checks', 5))
        executor = RecoveryStrategyExecutor(
            CommandStrategyRunner(self.config_manager.get_recovery_config(), workspace_config)
        )

        history = HealthHistory(self._prepare_path(global_config.get('history_file')))
        audit_trail = AuditTrail(self._prepare_path(global_config.get('audit_file')))
        self.dispatcher = NotificationDispatcher(self.config_manager.get_alerts_config())
        self.integrator = AlertIntegrator(self.dispatcher, history, audit_trail)

        trigger_thresholds = self.config_manager.get_thresholds()
        store = TriggerStateStore(self._prepare_path(global_config.get('state_file')),
                                  trigger_thresholds)
        sampler = PerformanceSampler.from_config(
            config.get('performance', {}), workspace_config.get('root', '.'),
            self._prepare_path(global_config.get('performance_file'))
        )
        self.scheduler = MonitorScheduler(
            scorer, self.config_manager.get_modules(), store, executor, self.integrator,
            thresholds=trigger_thresholds,
            history=history,
            pid_file=PidFile(self._prepare_path(global_config.get('pid_file'))),
            sampler=sampler
        )

        if self.config_path:
            self.config_watcher = ConfigWatcher(self.config_manager)
            self.config_watcher.add_change_callback(self._on_config_changed_callback)

        self.logger.debug("应用程序组件初始化完成")

    def _configure_logging(self, global_config: Dict[str, Any],
                           log_level: Optional[str] = None,
                           log_file: Optional[str] = None) -> None:
        log_config = {
            'log_level': log_level or global_config.get('log_level', 'INFO'),
            'log_file': log_file or global_config.get('log_file'),
            'enable_console': True
        }
        if 'max_log_size' in global_config:
            log_config['max_file_size'] = global_config['max_log_size']
        if 'log_backup_count' in global_config:
            log_config['backup_count'] = global_config['log_backup_count']
        if log_config['log_file']:
            self._prepare_path(log_config['log_file'])
        log_manager.configure(log_config)

    @staticmethod
    def _prepare_path(path: Optional[str]) -> Optional[str]:
        """确保文件所在目录存在"""
        if path:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return path

    def _on_config_changed_callback(self, old_config: Dict[str, Any],
                                    new_config: Dict[str, Any]) -> None:
        self.logger.info("检测到配置文件变更，重新应用配置")
        self._configure_logging(new_config.get('global', {}))
        self.scheduler.on_config_changed(old_config, new_config)

    async def start(self) -> None:
        """
        启动监控，直到收到停止信号

        Raises:
            DaemonAlreadyRunningError: 守护进程已在运行
        """
        if self.config_watcher:
            self.config_watcher.loop = asyncio.get_running_loop()
            try:
                self.config_watcher.start_watching()
            except ConfigError as e:
                self.logger.warning(f"配置热加载不可用: {e.format_error()}")

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.shutdown)

        try:
            await self.scheduler.start()
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
            if self.config_watcher:
                self.config_watcher.stop_watching()
            log_manager.cleanup()

    def shutdown(self) -> None:
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        if self.scheduler:
            self.scheduler.request_stop()

    def get_status(self) -> Dict[str, Any]:
        status = self.scheduler.status()
        status['config_path'] = self.config_path
        status['alerters'] = self.dispatcher.get_alerter_names()
        return status

    async def test_once(self) -> TickReport:
        return await self.scheduler.test_once()

    def reset(self) -> None:
        self.scheduler.reset()


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='module-recovery',
        description='模块健康自动恢复系统 - 监控工作区模块健康状况并自动执行恢复',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s start                          # 前台启动监控
  %(prog)s start --daemon                 # 以守护进程模式启动
  %(prog)s --config config.yaml start     # 使用指定配置文件启动
  %(prog)s start --webhook https://hooks.slack.com/services/XXX
  %(prog)s status                         # 查看当前状态
  %(prog)s test                           # 执行一次试运行检查
  %(prog)s stop                           # 停止守护进程
  %(prog)s reset                          # 重置触发器状态

严重级别与恢复策略:
  minor    -> dependency_check
  moderate -> incremental_rebuild
  severe   -> full_recovery
  critical -> emergency_reset
        """
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument('--config', '-c', help='YAML配置文件路径')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    subparsers = parser.add_subparsers(dest='command', metavar='command')

    start_parser = subparsers.add_parser('start', help='启动监控')
    start_parser.add_argument('--daemon', '-d', action='store_true', help='以守护进程模式运行')
    start_parser.add_argument('--health-threshold', type=int, metavar='N',
                              help='平均健康分低于该值时触发恢复')
    start_parser.add_argument('--critical-count', type=int, metavar='N',
                              help='严重模块数达到该值时触发恢复')
    start_parser.add_argument('--interval', type=int, metavar='SECONDS',
                              help='检查间隔（秒）')
    start_parser.add_argument('--cooldown', type=int, metavar='SECONDS',
                              help='恢复冷却期（秒）')
    start_parser.add_argument('--webhook', action='append', default=[], metavar='URL',
                              help='追加 webhook 通知地址，可重复指定')
    start_parser.add_argument('--alert-dir', metavar='DIR', help='把告警写入该目录')
    start_parser.add_argument('--email-recipients', type=_email_list, metavar='ADDRS',
                              help='邮件接收人，逗号分隔，同时启用邮件通知')
    start_parser.add_argument('--enable-email', action='store_true',
                              help='启用配置文件中的邮件告警')

    stop_parser = subparsers.add_parser('stop', help='停止守护进程')
    stop_parser.add_argument('--timeout', type=float, metavar='SECONDS',
                             help=f'等待退出的秒数（默认: 恢复超时加 {STOP_GRACE_PERIOD} 秒）')

    status_parser = subparsers.add_parser('status', help='查看当前状态')
    status_parser.add_argument('--json', action='store_true', help='以JSON格式输出')

    test_parser = subparsers.add_parser('test', help='执行一次试运行检查')
    test_parser.add_argument('--json', action='store_true', help='以JSON格式输出')

    subparsers.add_parser('reset', help='重置触发器状态')

    return parser


def setup_daemon_mode() -> None:
    """以双重fork方式脱离终端

    工作区路径相对于当前目录解析，因此守护进程不切换工作目录。
    """
    try:
        pid = os.fork()
        if pid > 0:
            os._exit(0)
    except OSError as e:
        print(f"第一次fork失败: {e}", file=sys.stderr)
        sys.exit(1)

    os.setsid()
    os.umask(0o022)

    try:
        pid = os.fork()
        if pid > 0:
            os._exit(0)
    except OSError as e:
        print(f"第二次fork失败: {e}", file=sys.stderr)
        sys.exit(1)

    sys.stdout.flush()
    sys.stderr.flush()
    with open(os.devnull, 'rb') as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())


def _email_list(value: str) -> List[str]:
    recipients = [item.strip() for item in value.split(',') if item.strip()]
    if not recipients:
        raise argparse.ArgumentTypeError('至少需要一个邮件接收人')
    return recipients


def _threshold_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        'health_threshold': args.health_threshold,
        'critical_module_count': args.critical_count,
        'monitoring_interval': args.interval,
        'cooldown_period': args.cooldown
    }


def print_status(status: Dict[str, Any]) -> None:
    trigger = status['triggerState']
    stats = status['statistics']
    thresholds = status['thresholds']
    health = status['health']['workspace_health']

    running = f"运行中 (PID: {status['pid']})" if status['running'] else "未运行"
    print(f"自动恢复系统状态: {running}")
    if status.get('uptime_seconds') is not None:
        print(f"   - 运行时间: {int(status['uptime_seconds'])} 秒")
    print(f"   - 上次检查: {trigger['lastCheck'] or '从未'}")
    print(f"   - 上次恢复: {trigger['lastRecoveryAttempt'] or '从未'}")
    print(f"   - 当前严重级别: {trigger['currentSeverity']}")
    print(f"   - 连续失败次数: {trigger['consecutiveFailures']}")
    if status['cooldown_remaining'] > 0:
        print(f"   - 冷却期剩余: {int(status['cooldown_remaining'])} 秒")
    print(f"   - 阈值: 健康分 < {thresholds['healthThreshold']}，"
          f"严重模块数 >= {thresholds['criticalModuleCount']}，"
          f"间隔 {thresholds['monitoringInterval']}秒，"
          f"冷却期 {thresholds['cooldownPeriod']}秒")
    print(f"   - 统计: 检查 {stats['totalChecks']} 次，触发恢复 {stats['triggeredRecoveries']} 次，"
          f"成功 {stats['successfulRecoveries']} 次，失败 {stats['failedRecoveries']} 次")
    print(f"   - 工作区: {health['workspaceStatus']} (平均分 {health['averageHealth']})")
    for detail in status['health']['module_details']:
        print(f"     * {detail['module']}: {detail['score']} {detail['status']} "
              f"({detail['trend']})")
    print_performance(status.get('performance'))
    if status.get('state_error'):
        print(f"⚠️  状态文件损坏: {status['state_error']}")


def print_performance(performance: Optional[Dict[str, Any]]) -> None:
    if not performance:
        return
    system = performance.get('system')
    if system:
        print(f"   - 系统资源: CPU {system['cpu_percent']}%，内存 {system['memory_percent']}%，"
              f"磁盘 {system['disk_percent']}%，负载 {system['load_average']}")
    if performance.get('slowest_module'):
        slowest = performance['slowest_module']
        print(f"   - 最慢模块: {slowest} "
              f"({performance['modules'][slowest]['latest']['probe']}秒)")
    for breach in performance.get('active_breaches', []):
        print(f"   ⚠️  性能指标超限: {breach}")


def print_report(report: TickReport) -> None:
    snapshot = report.snapshot
    print(f"试运行结果: {report.decision.value}")
    print(f"   - 平均健康分: {snapshot.average_score}")
    print(f"   - 严重模块数: {snapshot.critical_module_count}/{snapshot.total_modules}")
    print(f"   - 严重级别: {report.severity.value}")
    print(f"   - 需要恢复: {'是' if report.should_trigger else '否'}")
    print(f"   - 冷却期中: {'是' if report.in_cooldown else '否'}")
    if report.strategy:
        print(f"   - 恢复策略: {report.strategy.value}")
    for record in report.records:
        mark = "✅" if record.score >= 70 else "❌"
        print(f"   {mark} {record.module_id}: {record.score} ({record.status.value})")
        for issue in record.issues:
            print(f"       - {issue}")


def stop_daemon(pid_file: PidFile, timeout: float) -> int:
    """
    向守护进程发送 SIGTERM 并等待其退出

    守护进程会先完成正在执行的恢复，超时后只提示仍在退出中。

    Args:
        pid_file: 守护进程的PID文件
        timeout: 等待退出的秒数

    Returns:
        int: 退出码

    Raises:
        DaemonNotRunningError: PID文件不存在或指向的进程已退出
    """
    pid = pid_file.running_pid()
    if pid is None:
        raise DaemonNotRunningError("守护进程未运行")

    print(f"正在停止守护进程 (PID: {pid})...")
    try:
        os.kill(pid, signal.SIGTERM)
        psutil.Process(pid).wait(timeout=timeout)
    except (ProcessLookupError, psutil.NoSuchProcess):
        pass
    except PermissionError:
        print(f"没有权限停止守护进程 (PID: {pid})", file=sys.stderr)
        return 1
    except psutil.TimeoutExpired:
        print(f"⏳ 已发送停止信号，守护进程仍在完成当前恢复 (已等待 {timeout:g} 秒)")
        return 0
    print("✅ 守护进程已停止")
    return 0


async def run_start(app: RecoveryTriggerApp, daemon: bool) -> int:
    if not daemon:
        print(f"模块健康自动恢复系统 v{__version__} 已启动")
        print("按 Ctrl+C 停止程序")
    try:
        await app.start()
    except DaemonAlreadyRunningError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """主函数

    Returns:
        int: 进程退出码
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    app = RecoveryTriggerApp(args.config)
    try:
        if args.command == 'start':
            app.initialize(args.log_level, args.log_file,
                           thresholds=_threshold_overrides(args),
                           webhooks=args.webhook, alert_dir=args.alert_dir,
                           email_recipients=args.email_recipients,
                           enable_email=args.enable_email)
        else:
            app.initialize(args.log_level, args.log_file)
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        return 1

    try:
        if args.command == 'start':
            running_pid = app.scheduler.pid_file.running_pid()
            if running_pid is not None:
                print(f"❌ 守护进程已在运行 (PID: {running_pid})", file=sys.stderr)
                return 1
            if args.daemon:
                setup_daemon_mode()
            return asyncio.run(run_start(app, args.daemon))

        if args.command == 'stop':
            try:
                timeout = args.timeout
                if timeout is None:
                    timeout = app.scheduler.executor.timeout + STOP_GRACE_PERIOD
                return stop_daemon(app.scheduler.pid_file, timeout)
            except DaemonNotRunningError as e:
                print(f"❌ {e.message}", file=sys.stderr)
                return 1

        if args.command == 'status':
            status = app.get_status()
            if args.json:
                print(json.dumps(status, indent=2, ensure_ascii=False))
            else:
                print_status(status)
            return 0

        if args.command == 'test':
            report = asyncio.run(app.test_once())
            if args.json:
                print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
            else:
                print_report(report)
            return 0

        if args.command == 'reset':
            try:
                app.reset()
            except DaemonRunningError as e:
                print(f"❌ {e.message}", file=sys.stderr)
                return 1
            print("✅ 触发器状态已重置")
            return 0

    except KeyboardInterrupt:
        print("\n用户中断程序")
        return 0
    except RecoveryOrchestratorError as e:
        print(f"自动恢复系统错误: {e.format_error()}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
