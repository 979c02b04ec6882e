"""全局测试配置：确保所有测试在测试模式下运行。"""

import os

# 在任何模块导入之前设置 TESTING 环境变量，
# app.main 启动时据此跳过引擎配置的启动日志。
os.environ["TESTING"] = "1"
