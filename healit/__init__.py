"""
HealIT 루틴 & 후속조치 엔진
"""
__version__ = "1.0.0"
