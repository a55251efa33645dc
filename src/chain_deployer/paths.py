"""Unified path constants for chain-deployer.

- state.json                   # Recovery state
- .chain-deployer/logs/        # Per-run JSON logs
- config/default_config.json   # Optional JSON config
"""

from pathlib import Path

# 基础目录（在当前工作目录下）
BASE_DIR = Path(".chain-deployer")

DEFAULT_STATE_PATH = Path("state.json")
LOGS_DIR = BASE_DIR / "logs"
DEFAULT_CONFIG_PATH = Path("config/default_config.json")
