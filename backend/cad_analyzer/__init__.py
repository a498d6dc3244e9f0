"""
CAD 文件接入与分析系统 - 后端核心模块

模块结构：
- config/     运行期配置与日志
- models/     数据模型定义（会话/任务/分析结果）
- cad/        CAD 处理（格式校验/DXF解析/DWG转换/几何内核桥接）
- pipeline/   流水线编排、任务队列、会话管理、结果组装
- api/        FastAPI 接口层
"""

__version__ = "0.1.0"
