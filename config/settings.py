"""Workspace Persistence Configuration Module.

This module provides centralized configuration management for the diagram
workspace persistence layer. It handles environment variable loading and
provides a clean interface for accessing configuration values.

Features:
- Dynamic environment variable loading with .env support
- Property-based configuration access for real-time updates
- Explicit overrides for injected configuration (tests, embedding apps)
- Default values for all configuration options

Environment Variables:
- DATABASE_URL: remote backend; empty runs local-only
- LOCAL_STORE_BACKEND: memory, file or redis
- See env.example for the complete configuration options

Usage:
    from config.settings import Config
    cfg = Config({'LOCAL_STORE_BACKEND': 'memory'})
    timeout = cfg.REMOTE_TIMEOUT_SECONDS

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
import logging

from dotenv import load_dotenv

from config.base_config import BaseConfig
from config.persistence_config import PersistenceConfigMixin

logger = logging.getLogger(__name__)

load_dotenv()  # Load environment variables from .env file


class Config(BaseConfig, PersistenceConfigMixin):
    """
    Centralized configuration for the persistence layer.

    Combines the base settings and the persistence mixin into one interface.
    """


# Default configuration instance, read from the environment
config = Config()
