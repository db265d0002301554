"""
NodeSwitch: fnm / nvm 的 Node.js 版本管理前端。
"""

__version__ = "0.1.0"
