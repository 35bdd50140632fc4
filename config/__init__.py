"""
Configuration Package

This package contains the persistence layer configuration:
- Settings: Environment variables and settings (Config class and config instance)
- Database: Engine and session factory construction for the remote backend

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

from .settings import Config, config

__all__ = [
    'Config',
    'config',
]
