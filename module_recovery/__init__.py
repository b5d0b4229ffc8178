"""模块健康自动恢复编排器"""

__version__ = "1.0.0"
