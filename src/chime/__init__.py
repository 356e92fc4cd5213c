"""Chime: 周期提醒的调度与投递引擎"""

__version__ = "0.3.0"
