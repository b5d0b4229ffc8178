"""JSON 文件读写测试"""

import json
import os

import pytest
from unittest.mock import patch

from module_recovery.utils.fileio import dump_json, write_json_atomic


class TestFileIO:
    """原子写入测试类"""

    def test_dump_json_is_stable(self):
        """测试相同内容序列化结果一致"""
        payload = {'module': '认证', 'score': 85}

        assert dump_json(payload) == dump_json(dict(payload))
        assert dump_json(payload).endswith('\n')
        assert '认证' in dump_json(payload)

    def test_write_creates_directories(self, tmp_path):
        """测试写入时创建上级目录"""
        path = tmp_path / 'logs' / 'recovery' / 'state.json'

        write_json_atomic(str(path), {'isActive': True})

        assert json.loads(path.read_text(encoding='utf-8')) == {'isActive': True}

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        """测试覆盖写入后不残留临时文件"""
        path = tmp_path / 'state.json'

        write_json_atomic(str(path), {'version': 1})
        write_json_atomic(str(path), {'version': 2})

        assert json.loads(path.read_text(encoding='utf-8')) == {'version': 2}
        assert os.listdir(tmp_path) == ['state.json']

    def test_failed_write_keeps_previous_content(self, tmp_path):
        """测试写入失败时保留原文件并清理临时文件"""
        path = tmp_path / 'state.json'
        write_json_atomic(str(path), {'version': 1})

        with patch('module_recovery.utils.fileio.os.replace',
                   side_effect=OSError('read-only')), \
                patch('module_recovery.utils.error_handler.time.sleep'):
            with pytest.raises(OSError):
                write_json_atomic(str(path), {'version': 2})

        assert json.loads(path.read_text(encoding='utf-8')) == {'version': 1}
        assert os.listdir(tmp_path) == ['state.json']

    def test_unserializable_payload(self, tmp_path):
        """测试无法序列化的内容不重试"""
        path = tmp_path / 'state.json'

        with pytest.raises(TypeError):
            write_json_atomic(str(path), {'value': object()})

        assert os.listdir(tmp_path) == []
