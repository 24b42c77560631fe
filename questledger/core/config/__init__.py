"""
Configuration subsystem.

- `config.Config`: static, environment-driven settings (python-dotenv).
- `manager.ConfigManager`: YAML-backed gameplay tunables with dot-notation
  access. Import it from `questledger.core.config.manager`; it depends on the
  logging subsystem, which itself depends on `Config`.
"""

from questledger.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
