"""告警与恢复会话审计记录（JSON Lines）"""

import json
import os
from collections import deque
from typing import Dict, Any, List, Optional, Deque

from ..models.recovery import Alert, RecoverySession
from ..utils.log_manager import get_logger
from ..utils.timestamps import utc_now, format_timestamp

# 内存中保留的最近记录数
RECENT_ENTRIES = 100


class AuditTrail:
    """只追加的审计记录，写入失败只记录日志"""

    def __init__(self, audit_file: Optional[str] = None):
        self.audit_file = audit_file
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=RECENT_ENTRIES)
        self.logger = get_logger(__name__)

    def record_alert(self, alert: Alert) -> Dict[str, Any]:
        return self._append('alert', alert.to_dict())

    def record_session(self, session: RecoverySession,
                       incident_id: Optional[str] = None) -> Dict[str, Any]:
        payload = session.to_dict()
        if incident_id:
            payload['incidentId'] = incident_id
        return self._append('session', payload)

    def _append(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        entry = {'kind': kind, 'recordedAt': format_timestamp(utc_now()), **payload}
        self._recent.append(entry)

        if self.audit_file:
            try:
                directory = os.path.dirname(os.path.abspath(self.audit_file))
                os.makedirs(directory, exist_ok=True)
                with open(self.audit_file, 'a', encoding='utf-8') as file:
                    file.write(json.dumps(entry, ensure_ascii=False) + "\n")
            except OSError as e:
                self.logger.error(f"写入审计记录失败: {e}")
        return entry

    def recent(self, limit: int = 20, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        最近的审计记录，内存为空时从文件末尾读取

        Args:
            limit: 最多返回的条数
            kind: 只返回指定类型（alert 或 session）

        Returns:
            List[Dict[str, Any]]: 按时间先后排列的记录
        """
        entries = list(self._recent) or self._read_file()
        if kind:
            entries = [entry for entry in entries if entry.get('kind') == kind]
        return entries[-limit:] if limit else entries

    def _read_file(self) -> List[Dict[str, Any]]:
        if not self.audit_file or not os.path.exists(self.audit_file):
            return []
        entries: Deque[Dict[str, Any]] = deque(maxlen=RECENT_ENTRIES)
        try:
            with open(self.audit_file, 'r', encoding='utf-8') as file:
                for line in file:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except ValueError:
                        self.logger.debug(f"忽略无效的审计记录: {line[:80]}")
        except OSError as e:
            self.logger.error(f"读取审计记录失败: {e}")
        return list(entries)
