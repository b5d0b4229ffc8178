"""模块探测器"""

from .base import BaseModuleProber
from .factory import ProberFactory, prober_factory, register_prober
from .command_prober import CommandProber

__all__ = ['BaseModuleProber', 'ProberFactory', 'prober_factory', 'register_prober',
           'CommandProber']
