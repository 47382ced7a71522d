"""modkit - 源码模块依赖管理器"""

__version__ = "0.1.0"
